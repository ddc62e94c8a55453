from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..domain.models import (
    AdditionalService,
    AdditionalServicePriceOverride,
    Carrier,
    CustomerPricing,
    PricingRule,
    PricingTable,
    PricingZone,
    PromotionTargetType,
    PromotionalPricing,
    VolumePeriod,
)
from ..storage.catalog import Catalog


class InMemoryRepository:
    """
    Serves every repository role from one immutable Catalog.
    Used by tests, the YAML loader and small deployments.
    """

    def __init__(self, catalog: Catalog):
        self.catalog = catalog
        self._carriers: Dict[str, Carrier] = {c.code: c for c in catalog.carriers}
        self._rules: Dict[str, List[PricingRule]] = {}
        for r in catalog.rules:
            self._rules.setdefault(r.table_id, []).append(r)

    # zones
    def list_zones(self) -> Sequence[PricingZone]:
        return self.catalog.zones

    # carriers
    def list_carriers(self) -> Sequence[Carrier]:
        return self.catalog.carriers

    def find_carrier(self, code: str) -> Optional[Carrier]:
        return self._carriers.get(code)

    # tables / rules
    def find_effective(
        self, carrier_code: str, zone_code: str, service_type: str, at: datetime
    ) -> Sequence[PricingTable]:
        return [
            t
            for t in self.catalog.tables
            if t.carrier_code == carrier_code
            and t.zone_code == zone_code
            and t.serves(service_type)
            and t.is_effective(at)
        ]

    def find_for_table(self, table_id: str) -> Sequence[PricingRule]:
        return list(self._rules.get(table_id, ()))

    # additional services
    def find_services(self, carrier_code: str) -> Sequence[AdditionalService]:
        return [s for s in self.catalog.services if s.carrier_code == carrier_code]

    def find_overrides(self, table_id: str) -> Sequence[AdditionalServicePriceOverride]:
        return [o for o in self.catalog.service_overrides if o.table_id == table_id]

    # customer agreements
    def find_active(self, customer_id: str, table_id: str, at: datetime) -> Sequence[CustomerPricing]:
        return [
            a
            for a in self.catalog.customer_pricing
            if a.customer_id == customer_id and a.base_pricing_table_id == table_id and a.is_effective(at)
        ]

    # promotions
    def find_applicable(self, context, at: datetime) -> Sequence[PromotionalPricing]:
        # coarse pre-filter; the promotion engine applies the full eligibility rules
        out = []
        for p in self.catalog.promotions:
            if p.promo_code is not None or not p.is_valid_at(at):
                continue
            if p.target_type == PromotionTargetType.CARRIER and p.target_values is not None:
                if context.carrier_code not in p.target_values:
                    continue
            out.append(p)
        return out

    def find_by_code(self, code: str) -> Sequence[PromotionalPricing]:
        return [p for p in self.catalog.promotions if p.matches_code(code)]


class StaticVolumeStats:
    """Fixed shipment counts per (customer, period). Periods not listed count 0."""

    def __init__(self, counts: Optional[Mapping[Tuple[str, VolumePeriod], int]] = None):
        self._counts = dict(counts or {})

    def shipment_count(self, customer_id: str, period: VolumePeriod, at: datetime) -> int:
        return int(self._counts.get((customer_id, VolumePeriod(period)), 0))
