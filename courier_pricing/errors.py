from __future__ import annotations

from typing import Any, Dict, Optional


class PricingError(Exception):
    """
    Base for every error the engine raises.

    - code: stable machine code (UPPER_SNAKE), safe to expose to API clients
    - message: human readable
    - meta: structured context (carrier, zone, weight, ...)
    """

    code: str = "PRICING_ERROR"

    def __init__(
        self,
        message: str,
        meta: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        if code is not None:
            self.code = str(code)
        self.message = str(message)
        self.meta = meta or {}
        super().__init__(f"{self.code}: {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "meta": dict(self.meta)}


class ValidationError(PricingError):
    code = "INVALID_REQUEST"


class UnsupportedDestinationError(PricingError):
    code = "UNSUPPORTED_DESTINATION"


class AmbiguousZoneError(PricingError):
    code = "AMBIGUOUS_ZONE"


class UnknownCarrierError(PricingError):
    code = "UNKNOWN_CARRIER"


class CarrierCapabilityError(PricingError):
    """
    Carrier exists but cannot take the shipment.
    `reason` is one of CARRIER_INACTIVE, ZONE_NOT_SUPPORTED, CAPACITY_EXCEEDED.
    """

    code = "CARRIER_CAPABILITY"

    def __init__(self, reason: str, message: str, meta: Optional[Dict[str, Any]] = None):
        self.reason = str(reason)
        meta = dict(meta or {})
        meta.setdefault("reason", self.reason)
        super().__init__(message, meta)


class NoPricingAvailableError(PricingError):
    code = "NO_PRICING_AVAILABLE"


class WeightOutOfRangeError(PricingError):
    code = "WEIGHT_OUT_OF_RANGE"


class MissingDeclaredValueError(PricingError):
    code = "MISSING_DECLARED_VALUE"


class UnknownServiceError(PricingError):
    code = "UNKNOWN_SERVICE"


class InvalidPromoCodeError(PricingError):
    code = "INVALID_PROMO_CODE"


class BatchTooLargeError(PricingError):
    code = "BATCH_TOO_LARGE"


class PricingConfigurationError(PricingError):
    """Pricing data is inconsistent (duplicate versions, tied agreements, unknown strategy, ...)."""

    code = "PRICING_CONFIGURATION"


class CatalogError(PricingError):
    code = "CATALOG_INVALID"
