from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List

from ..calculators.rounding import ZERO, percent_of
from .base import DiscountStrategy, StrategyContext, register, to_decimal

D = Decimal


@register
class TierDiscountStrategy(DiscountStrategy):
    """
    params:
      tiers:
        - min_value: 0
          max_value: 99.99
          type: percentage
          value: 0
        - min_value: 100
          type: fixed
          value: 15

    First tier with min_value <= subtotal <= max_value wins. Fixed amounts never exceed the subtotal.
    """

    type_name = "tier_discount"

    def __init__(self, params=None):
        super().__init__(params)
        raw: List[Dict[str, Any]] = list(self.params.get("tiers") or [])
        if not raw:
            raise self._config_error("no tiers configured")
        try:
            self.tiers = [
                (
                    to_decimal(t.get("min_value")),
                    None if t.get("max_value") is None else to_decimal(t["max_value"]),
                    str(t.get("type", "percentage")),
                    to_decimal(t.get("value")),
                )
                for t in raw
            ]
        except (InvalidOperation, AttributeError) as e:
            raise self._config_error(f"malformed tier: {e}") from e

        for _, _, kind, _ in self.tiers:
            if kind not in ("percentage", "fixed"):
                raise self._config_error(f"unknown tier type '{kind}'")

    def apply(self, ctx: StrategyContext) -> D:
        total = ctx.subtotal
        for tmin, tmax, kind, value in self.tiers:
            if total >= tmin and (tmax is None or total <= tmax):
                if kind == "percentage":
                    return percent_of(total, value)
                return min(value, total)
        return ZERO
