from __future__ import annotations

from .engine.context import (
    BulkDiscount,
    BulkResult,
    ComparisonResult,
    Destination,
    PriceBreakdown,
    PriceCalculationRequest,
)
from .engine.pricing_engine import PricingEngine
from .errors import PricingError

__all__ = [
    "BulkDiscount",
    "BulkResult",
    "ComparisonResult",
    "Destination",
    "PriceBreakdown",
    "PriceCalculationRequest",
    "PricingEngine",
    "PricingError",
]
