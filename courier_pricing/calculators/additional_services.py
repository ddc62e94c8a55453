from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..domain.models import (
    AdditionalService,
    AdditionalServicePriceOverride,
    PricingTable,
    ServicePricingType,
)
from ..engine.context import ServiceCharge
from ..errors import (
    MissingDeclaredValueError,
    PricingConfigurationError,
    UnknownServiceError,
    WeightOutOfRangeError,
)
from .rounding import ZERO, clamp, percent_of

D = Decimal


@dataclass(frozen=True)
class ServicesTotal:
    total: D
    charges: Tuple[ServiceCharge, ...]


@dataclass(frozen=True)
class _Terms:
    """Service defaults merged with the table override, field by field."""

    price: Optional[D]
    percentage_rate: Optional[D]
    min_price: Optional[D]
    max_price: Optional[D]
    override: Optional[AdditionalServicePriceOverride]


def _merge(service: AdditionalService, override: Optional[AdditionalServicePriceOverride]) -> _Terms:
    if override is None:
        return _Terms(service.default_price, service.percentage_rate, service.min_price, service.max_price, None)

    def pick(o: Optional[D], s: Optional[D]) -> Optional[D]:
        return o if o is not None else s

    return _Terms(
        price=pick(override.price, service.default_price),
        percentage_rate=pick(override.percentage_rate, service.percentage_rate),
        min_price=pick(override.min_price, service.min_price),
        max_price=pick(override.max_price, service.max_price),
        override=override,
    )


def _need_declared(service: AdditionalService, declared_value: Optional[D]) -> D:
    if declared_value is None:
        raise MissingDeclaredValueError(
            f"service {service.code} is priced on declared value, but none was given",
            {"service_code": service.code},
        )
    return declared_value


def _flat(service: AdditionalService, terms: _Terms) -> D:
    if terms.price is None:
        raise PricingConfigurationError(
            f"service {service.code} has no price configured", {"service_code": service.code}
        )
    return terms.price


def _tiered(service: AdditionalService, terms: _Terms, weight_kg: D, declared_value: Optional[D]) -> D:
    override = terms.override
    if override is not None and override.weight_tiers:
        for tier in override.weight_tiers:
            if tier.contains(weight_kg):
                return tier.price
        raise WeightOutOfRangeError(
            f"no weight tier of service {service.code} covers {weight_kg} kg",
            {"service_code": service.code, "weight_kg": str(weight_kg)},
        )

    if override is not None and override.value_tiers:
        value = _need_declared(service, declared_value)
        for tier in override.value_tiers:
            if not tier.contains(value):
                continue
            if tier.rate is not None:
                return percent_of(value, tier.rate)
            if tier.price is not None:
                return tier.price
            break
        raise PricingConfigurationError(
            f"no usable value tier of service {service.code} for declared value {value}",
            {"service_code": service.code, "declared_value": str(value)},
        )

    raise PricingConfigurationError(
        f"tiered service {service.code} has no tiers for this pricing table",
        {"service_code": service.code},
    )


def price_service(
    service: AdditionalService,
    override: Optional[AdditionalServicePriceOverride],
    *,
    weight_kg: D,
    declared_value: Optional[D],
    package_count: int = 1,
) -> D:
    terms = _merge(service, override)
    kind = service.pricing_type

    if kind == ServicePricingType.FIXED:
        amount = _flat(service, terms)
    elif kind == ServicePricingType.PERCENTAGE:
        if terms.percentage_rate is None:
            raise PricingConfigurationError(
                f"service {service.code} has no percentage rate", {"service_code": service.code}
            )
        amount = percent_of(_need_declared(service, declared_value), terms.percentage_rate)
    elif kind == ServicePricingType.TIERED:
        amount = _tiered(service, terms, weight_kg, declared_value)
    elif kind == ServicePricingType.PER_PACKAGE:
        amount = _flat(service, terms) * D(package_count)
    else:  # pragma: no cover
        raise PricingConfigurationError(f"unsupported pricing type {kind!r}", {"service_code": service.code})

    return clamp(amount, terms.min_price, terms.max_price)


def calculate_services(
    table: PricingTable,
    requested_codes: Sequence[str],
    declared_value: Optional[D],
    weight_kg: D,
    services: Iterable[AdditionalService],
    overrides: Iterable[AdditionalServicePriceOverride],
    package_count: int = 1,
) -> ServicesTotal:
    """
    Price every requested add-on for the table's carrier.

    Codes are case-insensitive; duplicates are priced once, first occurrence wins the order.
    """
    by_code: Dict[str, AdditionalService] = {
        s.code.upper(): s for s in services if s.carrier_code == table.carrier_code and s.is_active
    }
    by_service: Dict[str, AdditionalServicePriceOverride] = {
        o.service_id: o for o in overrides if o.table_id == table.id
    }

    charges: List[ServiceCharge] = []
    seen = set()
    total = ZERO
    for raw in requested_codes:
        code = raw.strip().upper()
        if code in seen:
            continue
        seen.add(code)

        service = by_code.get(code)
        if service is None:
            raise UnknownServiceError(
                f"carrier {table.carrier_code} offers no active service {raw!r}",
                {"carrier_code": table.carrier_code, "service_code": raw},
            )

        amount = price_service(
            service,
            by_service.get(service.id),
            weight_kg=weight_kg,
            declared_value=declared_value,
            package_count=package_count,
        )
        total += amount
        charges.append(ServiceCharge(code=service.code, name=service.name or service.code, amount=amount))

    return ServicesTotal(total=total, charges=tuple(charges))
