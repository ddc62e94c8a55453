# Importing the modules registers the strategies.
from . import buy_x_get_y, service_type_rate, tier_discount  # noqa: F401
from .base import DiscountStrategy, StrategyContext, build_strategy, register, strategy_registry

__all__ = ["DiscountStrategy", "StrategyContext", "build_strategy", "register", "strategy_registry"]
