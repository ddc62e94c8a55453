from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

D = Decimal


def as_utc(dt: datetime) -> datetime:
    """Naive timestamps are interpreted as UTC; aware ones are converted."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_service_type(value: Optional[str]) -> str:
    """Service types compare case-insensitively ("Express" == "express")."""
    return (value or "").strip().lower()


def in_half_open(at: datetime, start: datetime, end: Optional[datetime]) -> bool:
    """start <= at < end (end None = open ended)."""
    at = as_utc(at)
    if at < as_utc(start):
        return False
    return end is None or at < as_utc(end)


class ZoneType(str, Enum):
    LOCAL = "local"
    NATIONAL = "national"
    INTERNATIONAL = "international"

    @property
    def specificity(self) -> int:
        # lower = more specific
        return {ZoneType.LOCAL: 0, ZoneType.NATIONAL: 1, ZoneType.INTERNATIONAL: 2}[self]


class CalculationMethod(str, Enum):
    FIXED = "fixed"
    PER_KG = "per_kg"
    PER_KG_STEP = "per_kg_step"
    PERCENTAGE = "percentage"


class ServicePricingType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    TIERED = "tiered"
    PER_PACKAGE = "per_package"


class CustomerDiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    VOLUME = "volume"
    CUSTOM_RULES = "custom_rules"


class VolumePeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class PromotionDiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_SHIPPING = "free_shipping"
    BUY_X_GET_Y = "buy_x_get_y"
    TIER_DISCOUNT = "tier_discount"


class PromotionTargetType(str, Enum):
    ALL = "all"
    CARRIER = "carrier"
    ZONE = "zone"
    SERVICE_TYPE = "service_type"
    CUSTOMER = "customer"
    CUSTOMER_GROUP = "customer_group"


class UsageLimitType(str, Enum):
    TOTAL = "total"
    PER_CUSTOMER = "per_customer"
    PER_DAY = "per_day"


# -----------------------------
# Geography / carriers
# -----------------------------


@dataclass(frozen=True)
class Dimensions:
    length_cm: D
    width_cm: D
    height_cm: D

    def volume_cm3(self) -> D:
        return self.length_cm * self.width_cm * self.height_cm

    def fits_within(self, limit: "Dimensions") -> bool:
        return (
            self.length_cm <= limit.length_cm
            and self.width_cm <= limit.width_cm
            and self.height_cm <= limit.height_cm
        )


@dataclass(frozen=True)
class PricingZone:
    code: str
    zone_type: ZoneType
    countries: FrozenSet[str]
    postal_code_patterns: Tuple[str, ...] = ()
    name: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class Carrier:
    code: str
    supported_zones: FrozenSet[str]
    max_weight_kg: Optional[D] = None
    max_dimensions_cm: Optional[Dimensions] = None
    name: str = ""
    is_active: bool = True

    def can_handle_weight(self, weight_kg: D) -> bool:
        return self.max_weight_kg is None or weight_kg <= self.max_weight_kg

    def can_handle_dimensions(self, dims: Optional[Dimensions]) -> bool:
        if dims is None or self.max_dimensions_cm is None:
            return True
        return dims.fits_within(self.max_dimensions_cm)

    def supports_zone(self, zone_code: str) -> bool:
        return zone_code in self.supported_zones


# -----------------------------
# Rate cards
# -----------------------------


@dataclass(frozen=True)
class PricingTable:
    id: str
    carrier_code: str
    zone_code: str
    service_type: str
    version: int
    currency: str
    effective_from: datetime
    base_price: D = D("0")
    min_weight_kg: D = D("0")
    max_weight_kg: Optional[D] = None
    volumetric_divisor: Optional[D] = None
    tax_rate_percent: Optional[D] = None
    effective_until: Optional[datetime] = None
    is_active: bool = True

    def is_effective(self, at: datetime) -> bool:
        return self.is_active and in_half_open(at, self.effective_from, self.effective_until)

    def serves(self, service_type: str) -> bool:
        return normalize_service_type(self.service_type) == normalize_service_type(service_type)


@dataclass(frozen=True)
class PricingRule:
    id: str
    table_id: str
    weight_from: D
    calculation_method: CalculationMethod
    price: D
    weight_to: Optional[D] = None
    price_per_kg: Optional[D] = None
    weight_step: Optional[D] = None
    min_price: Optional[D] = None
    max_price: Optional[D] = None

    def matches_weight(self, weight_kg: D) -> bool:
        if weight_kg < self.weight_from:
            return False
        return self.weight_to is None or weight_kg < self.weight_to


# -----------------------------
# Additional services
# -----------------------------


@dataclass(frozen=True)
class WeightTier:
    weight_from: D
    price: D
    weight_to: Optional[D] = None

    def contains(self, weight_kg: D) -> bool:
        return weight_kg >= self.weight_from and (self.weight_to is None or weight_kg < self.weight_to)


@dataclass(frozen=True)
class ValueTier:
    value_from: D
    value_to: Optional[D] = None
    rate: Optional[D] = None
    price: Optional[D] = None

    def contains(self, value: D) -> bool:
        return value >= self.value_from and (self.value_to is None or value < self.value_to)


@dataclass(frozen=True)
class AdditionalService:
    id: str
    carrier_code: str
    code: str
    pricing_type: ServicePricingType
    name: str = ""
    default_price: Optional[D] = None
    percentage_rate: Optional[D] = None
    min_price: Optional[D] = None
    max_price: Optional[D] = None
    is_active: bool = True


@dataclass(frozen=True)
class AdditionalServicePriceOverride:
    service_id: str
    table_id: str
    price: Optional[D] = None
    percentage_rate: Optional[D] = None
    min_price: Optional[D] = None
    max_price: Optional[D] = None
    weight_tiers: Tuple[WeightTier, ...] = ()
    value_tiers: Tuple[ValueTier, ...] = ()


# -----------------------------
# Customer agreements / promotions
# -----------------------------


@dataclass(frozen=True)
class VolumeDiscountTier:
    min_shipments: int
    discount_percent: D


@dataclass(frozen=True)
class CustomerPricing:
    id: str
    customer_id: str
    base_pricing_table_id: str
    discount_type: CustomerDiscountType
    effective_from: datetime
    contract_name: str = ""
    base_discount_percent: Optional[D] = None
    fixed_discount_amount: Optional[D] = None
    volume_discount_tiers: Tuple[VolumeDiscountTier, ...] = ()
    volume_period: VolumePeriod = VolumePeriod.MONTHLY
    custom_rule: Optional[str] = None
    custom_rule_params: Mapping[str, Any] = field(default_factory=dict)
    minimum_order_value: Optional[D] = None
    maximum_order_value: Optional[D] = None
    tax_rate_override: Optional[D] = None
    currency_override: Optional[str] = None
    effective_until: Optional[datetime] = None
    is_active: bool = True
    priority_level: int = 0

    def is_effective(self, at: datetime) -> bool:
        return self.is_active and in_half_open(at, self.effective_from, self.effective_until)


@dataclass(frozen=True)
class PromotionalPricing:
    id: str
    name: str
    discount_type: PromotionDiscountType
    discount_value: D
    valid_from: datetime
    valid_until: datetime
    promo_code: Optional[str] = None
    minimum_order_value: Optional[D] = None
    maximum_discount_amount: Optional[D] = None
    target_type: PromotionTargetType = PromotionTargetType.ALL
    target_values: Optional[FrozenSet[str]] = None
    usage_limit: Optional[int] = None
    usage_limit_type: UsageLimitType = UsageLimitType.TOTAL
    usage_count: int = 0
    priority: int = 0
    stackable: bool = False
    is_active: bool = True
    pricing_table_id: Optional[str] = None
    config: Mapping[str, Any] = field(default_factory=dict)

    def is_valid_at(self, at: datetime) -> bool:
        # validity window is inclusive on both ends
        at = as_utc(at)
        return self.is_active and as_utc(self.valid_from) <= at <= as_utc(self.valid_until)

    def usage_exhausted(self) -> bool:
        return self.usage_limit is not None and self.usage_count >= self.usage_limit

    def matches_code(self, code: str) -> bool:
        return self.promo_code is not None and self.promo_code.strip().lower() == code.strip().lower()
