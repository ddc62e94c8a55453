from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Type

from ..errors import PricingConfigurationError

D = Decimal


@dataclass(frozen=True)
class StrategyContext:
    """
    What a discount strategy may look at.
    - subtotal: amount the discount is taken from (after customer discount for promotions)
    - base_price: transport component only (no services)
    """

    subtotal: D
    base_price: D
    package_count: int = 1
    customer_id: Optional[str] = None
    carrier_code: Optional[str] = None
    zone_code: Optional[str] = None
    service_type: Optional[str] = None


class DiscountStrategy:
    """
    Base class for JSON-configured discounts (custom_rules, buy_x_get_y, tier_discount).
    Subclasses read their parameters in __init__ and fail fast on bad config.
    """

    type_name: str = "base"

    def __init__(self, params: Optional[Mapping[str, Any]] = None):
        self.params: Dict[str, Any] = dict(params or {})

    def apply(self, ctx: StrategyContext) -> D:
        raise NotImplementedError

    def _config_error(self, message: str) -> PricingConfigurationError:
        return PricingConfigurationError(
            f"{self.type_name}: {message}", {"strategy": self.type_name, "params": self.params}
        )


# Registry: strategy name -> class
strategy_registry: Dict[str, Type[DiscountStrategy]] = {}


def register(strategy_cls: Type[DiscountStrategy]) -> Type[DiscountStrategy]:
    """
    Decorator to register a strategy by its type_name.
    Fails fast on duplicate registrations.
    """
    key = getattr(strategy_cls, "type_name", None)
    if not key or key == "base":
        raise ValueError(f"Strategy class {strategy_cls.__name__} has no type_name")

    if key in strategy_registry and strategy_registry[key] is not strategy_cls:
        raise ValueError(
            f"Duplicate strategy registration for type '{key}': "
            f"{strategy_registry[key].__name__} vs {strategy_cls.__name__}"
        )

    strategy_registry[key] = strategy_cls
    return strategy_cls


def build_strategy(name: Optional[str], params: Optional[Mapping[str, Any]] = None) -> DiscountStrategy:
    if not name:
        raise PricingConfigurationError("no discount strategy named", {"strategy": name})
    cls = strategy_registry.get(name)
    if cls is None:
        raise PricingConfigurationError(
            f"unknown discount strategy '{name}'",
            {"strategy": name, "known": sorted(strategy_registry)},
        )
    return cls(params)


def to_decimal(value: Any, default: str = "0") -> D:
    if value is None:
        return D(default)
    return D(str(value))
