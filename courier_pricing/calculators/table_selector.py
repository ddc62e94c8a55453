from __future__ import annotations

from datetime import datetime
from typing import Iterable

from ..domain.models import PricingTable
from ..errors import NoPricingAvailableError, PricingConfigurationError


def select_table(
    carrier_code: str,
    zone_code: str,
    service_type: str,
    at: datetime,
    tables: Iterable[PricingTable],
) -> PricingTable:
    """
    Currently effective rate card for carrier + zone + service type.
    Highest version wins; no fallback to other service types or zones.
    """
    candidates = [
        t
        for t in tables
        if t.carrier_code == carrier_code
        and t.zone_code == zone_code
        and t.serves(service_type)
        and t.is_effective(at)
    ]
    if not candidates:
        raise NoPricingAvailableError(
            f"no effective pricing table for {carrier_code}/{zone_code}/{service_type}",
            {"carrier_code": carrier_code, "zone_code": zone_code, "service_type": service_type},
        )

    top = max(t.version for t in candidates)
    winners = sorted(t.id for t in candidates if t.version == top)
    if len(winners) > 1:
        raise PricingConfigurationError(
            f"pricing tables {winners} share version {top} for {carrier_code}/{zone_code}/{service_type}",
            {"table_ids": winners, "version": top},
        )
    return next(t for t in candidates if t.version == top)
