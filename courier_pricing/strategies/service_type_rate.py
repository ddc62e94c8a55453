from __future__ import annotations

from decimal import Decimal

from ..calculators.rounding import ZERO, percent_of
from .base import DiscountStrategy, StrategyContext, register, to_decimal

D = Decimal


@register
class ServiceTypeRateStrategy(DiscountStrategy):
    """
    Contract rate per service type, e.g. {"rates": {"express": 12, "standard": 5}, "default": 0}.
    """

    type_name = "service_type_rate"

    def __init__(self, params=None):
        super().__init__(params)
        rates = self.params.get("rates") or {}
        if not isinstance(rates, dict) or not rates:
            raise self._config_error("rates must be a non-empty mapping")
        self.rates = {str(k).lower(): to_decimal(v) for k, v in rates.items()}
        self.default = to_decimal(self.params.get("default"))

    def apply(self, ctx: StrategyContext) -> D:
        pct = self.rates.get((ctx.service_type or "").lower(), self.default)
        if pct <= 0:
            return ZERO
        return percent_of(ctx.subtotal, pct)
