from __future__ import annotations

from decimal import Decimal

from ..calculators.rounding import ZERO, percent_of
from .base import DiscountStrategy, StrategyContext, register, to_decimal

D = Decimal


@register
class BuyXGetYStrategy(DiscountStrategy):
    """
    Packages in a shipment: for every `buy_quantity` packages, `get_quantity`
    are discounted by `discount_percent` (default 100 = free).
    """

    type_name = "buy_x_get_y"

    def __init__(self, params=None):
        super().__init__(params)
        self.buy_quantity = int(self.params.get("buy_quantity", 1))
        self.get_quantity = int(self.params.get("get_quantity", 1))
        self.discount_percent = to_decimal(self.params.get("discount_percent"), "100")
        if self.buy_quantity < 1 or self.get_quantity < 1:
            raise self._config_error("buy_quantity and get_quantity must be >= 1")

    def apply(self, ctx: StrategyContext) -> D:
        qty = max(ctx.package_count, 1)
        free = min((qty // self.buy_quantity) * self.get_quantity, qty)
        if free <= 0:
            return ZERO
        unit_price = ctx.base_price / D(qty)
        return percent_of(unit_price * D(free), self.discount_percent)
