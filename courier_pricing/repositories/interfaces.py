from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Protocol, Sequence, runtime_checkable

from ..domain.models import (
    AdditionalService,
    AdditionalServicePriceOverride,
    Carrier,
    CustomerPricing,
    PricingRule,
    PricingTable,
    PricingZone,
    PromotionalPricing,
    VolumePeriod,
)

if TYPE_CHECKING:
    from ..calculators.promotions import PromotionContext


@runtime_checkable
class ZoneRepository(Protocol):
    def list_zones(self) -> Sequence[PricingZone]: ...


@runtime_checkable
class CarrierRepository(Protocol):
    def list_carriers(self) -> Sequence[Carrier]: ...

    def find_carrier(self, code: str) -> Optional[Carrier]: ...


@runtime_checkable
class PricingTableRepository(Protocol):
    """Returns candidate tables; the selector applies the version tie-break."""

    def find_effective(
        self, carrier_code: str, zone_code: str, service_type: str, at: datetime
    ) -> Sequence[PricingTable]: ...


@runtime_checkable
class PricingRuleRepository(Protocol):
    def find_for_table(self, table_id: str) -> Sequence[PricingRule]: ...


@runtime_checkable
class AdditionalServiceRepository(Protocol):
    def find_services(self, carrier_code: str) -> Sequence[AdditionalService]: ...

    def find_overrides(self, table_id: str) -> Sequence[AdditionalServicePriceOverride]: ...


@runtime_checkable
class CustomerPricingRepository(Protocol):
    def find_active(self, customer_id: str, table_id: str, at: datetime) -> Sequence[CustomerPricing]: ...


@runtime_checkable
class PromotionRepository(Protocol):
    """
    find_applicable may pre-filter (active, window, target); the engine
    re-checks eligibility itself. usage_count is never written back.
    """

    def find_applicable(self, context: "PromotionContext", at: datetime) -> Sequence[PromotionalPricing]: ...

    def find_by_code(self, code: str) -> Sequence[PromotionalPricing]: ...


@runtime_checkable
class VolumeStatsProvider(Protocol):
    def shipment_count(self, customer_id: str, period: VolumePeriod, at: datetime) -> int: ...


@dataclass(frozen=True)
class PricingRepositories:
    """Everything the engine reads from. One object may implement several roles."""

    zones: ZoneRepository
    carriers: CarrierRepository
    tables: PricingTableRepository
    rules: PricingRuleRepository
    services: AdditionalServiceRepository
    customers: CustomerPricingRepository
    promotions: PromotionRepository
    volume_stats: Optional[VolumeStatsProvider] = None

    @classmethod
    def from_single(cls, repo, volume_stats: Optional[VolumeStatsProvider] = None) -> "PricingRepositories":
        return cls(
            zones=repo,
            carriers=repo,
            tables=repo,
            rules=repo,
            services=repo,
            customers=repo,
            promotions=repo,
            volume_stats=volume_stats,
        )
