from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Tuple

from ..domain.models import Dimensions

D = Decimal


# -----------------------------
# Input
# -----------------------------


@dataclass(frozen=True)
class Destination:
    country_code: str
    postal_code: Optional[str] = None


@dataclass(frozen=True)
class PriceCalculationRequest:
    """
    One shipment to price.
    Either `destination` or `zone_code` must be given; `carrier_code` is
    required for a single calculation and ignored by compare_all_carriers.
    """

    weight_kg: D
    carrier_code: Optional[str] = None
    destination: Optional[Destination] = None
    zone_code: Optional[str] = None
    dimensions_cm: Optional[Dimensions] = None
    service_type: str = "standard"
    declared_value: Optional[D] = None
    additional_service_codes: Tuple[str, ...] = ()
    customer_id: Optional[str] = None
    customer_group: Optional[str] = None
    promo_code: Optional[str] = None
    package_count: int = 1
    at: Optional[datetime] = None

    def for_carrier(self, carrier_code: str) -> "PriceCalculationRequest":
        return replace(self, carrier_code=carrier_code)


# -----------------------------
# Output models (contract v1)
# -----------------------------


@dataclass(frozen=True)
class ServiceCharge:
    code: str
    name: str
    amount: D


@dataclass(frozen=True)
class AppliedDiscount:
    source: str  # "customer" | "promotion"
    reference: str  # agreement id / promotion id
    name: str
    discount_type: str
    amount: D


@dataclass(frozen=True)
class PriceBreakdown:
    """
    Final price of one shipment with one carrier. All money fields are
    rounded to the currency's minor unit. No timestamps or generated ids,
    so equal input gives an equal breakdown.
    """

    carrier_code: str
    zone_code: str
    service_type: str
    table_id: str
    table_version: int
    currency: str

    actual_weight_kg: D
    dimensional_weight_kg: D
    effective_weight_kg: D

    base_price: D
    additional_services_total: D
    subtotal: D
    customer_discount: D
    promotional_discount: D
    net_amount: D
    tax_rate_percent: D
    tax_amount: D
    total_price: D

    services: Tuple[ServiceCharge, ...] = ()
    discounts: Tuple[AppliedDiscount, ...] = ()
    steps: Tuple[str, ...] = ()
    carrier_name: str = ""
    zone_name: str = ""


# -----------------------------
# Compare all carriers
# -----------------------------


@dataclass(frozen=True)
class SkippedCarrier:
    carrier_code: str
    reason_code: str
    message: str


@dataclass(frozen=True)
class ComparisonResult:
    zone_code: str
    quotes: Tuple[PriceBreakdown, ...]
    skipped: Tuple[SkippedCarrier, ...] = ()
    zone_name: str = ""

    @property
    def best_price(self) -> Optional[PriceBreakdown]:
        return self.quotes[0] if self.quotes else None

    @property
    def most_expensive(self) -> Optional[PriceBreakdown]:
        return self.quotes[-1] if self.quotes else None

    def _single_currency(self) -> bool:
        return bool(self.quotes) and len({q.currency for q in self.quotes}) == 1

    def savings_potential(self) -> Optional[D]:
        """Most expensive minus cheapest quote; None unless 2+ quotes share one currency."""
        if len(self.quotes) < 2 or not self._single_currency():
            return None
        return self.quotes[-1].total_price - self.quotes[0].total_price

    def average_price(self) -> Optional[D]:
        """Mean total_price, half-up to the cent; None without quotes or across currencies."""
        if not self._single_currency():
            return None
        mean = sum((q.total_price for q in self.quotes), D("0")) / D(len(self.quotes))
        return mean.quantize(D("0.01"), rounding=ROUND_HALF_UP)

    def price_for(self, carrier_code: str) -> Optional[PriceBreakdown]:
        code = (carrier_code or "").strip()
        return next((q for q in self.quotes if q.carrier_code == code), None)


# -----------------------------
# Bulk
# -----------------------------


@dataclass(frozen=True)
class BulkDiscount:
    threshold: int
    percentage: D


@dataclass(frozen=True)
class ItemFailure:
    code: str
    message: str


@dataclass(frozen=True)
class BulkItemResult:
    index: int
    breakdown: Optional[PriceBreakdown] = None
    error: Optional[ItemFailure] = None

    @property
    def ok(self) -> bool:
        return self.breakdown is not None


@dataclass(frozen=True)
class CurrencyTotal:
    currency: str
    item_count: int
    gross: D
    bulk_discount: D
    net: D


@dataclass(frozen=True)
class BulkResult:
    items: Tuple[BulkItemResult, ...]
    totals: Tuple[CurrencyTotal, ...]
    bulk_discount_applied: bool = False

    @property
    def successful_count(self) -> int:
        return sum(1 for i in self.items if i.ok)

    @property
    def failed_count(self) -> int:
        return len(self.items) - self.successful_count

    @property
    def success_rate(self) -> D:
        """Percent of items priced, 2 decimals."""
        if not self.items:
            return D("0.00")
        return (D(self.successful_count) * D("100") / D(len(self.items))).quantize(D("0.01"))

    def breakdowns(self) -> List[PriceBreakdown]:
        return [i.breakdown for i in self.items if i.breakdown is not None]

    def totals_by_carrier(self) -> Dict[str, Dict[str, D]]:
        """carrier -> currency -> summed total_price"""
        out: Dict[str, Dict[str, D]] = {}
        for b in self.breakdowns():
            per = out.setdefault(b.carrier_code, {})
            per[b.currency] = per.get(b.currency, D("0")) + b.total_price
        return out

    def totals_by_zone(self) -> Dict[str, Dict[str, D]]:
        out: Dict[str, Dict[str, D]] = {}
        for b in self.breakdowns():
            per = out.setdefault(b.zone_code, {})
            per[b.currency] = per.get(b.currency, D("0")) + b.total_price
        return out

    def discount_summary(self) -> Dict[str, D]:
        """currency -> customer + promotional + bulk discounts granted"""
        out: Dict[str, D] = {}
        for b in self.breakdowns():
            out[b.currency] = out.get(b.currency, D("0")) + b.customer_discount + b.promotional_discount
        for t in self.totals:
            out[t.currency] = out.get(t.currency, D("0")) + t.bulk_discount
        return out
