from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

import structlog

from ..calculators.additional_services import calculate_services
from ..calculators.base_price import calculate_base
from ..calculators.customer_discount import compute_discount, find_agreement
from ..calculators.promotions import PromotionContext, apply_promotions
from ..calculators.rounding import HUNDRED, ZERO, percent_of, round_money
from ..calculators.table_selector import select_table
from ..calculators.zone_resolver import find_zone, resolve_zone
from ..core.settings import Settings, settings as default_settings
from ..domain.models import Carrier, CustomerPricing, Dimensions, PricingZone, as_utc, normalize_service_type
from ..errors import (
    BatchTooLargeError,
    CarrierCapabilityError,
    NoPricingAvailableError,
    PricingError,
    UnknownCarrierError,
    ValidationError,
)
from ..explain.breakdown_builder import BreakdownBuilder, PriceSteps, label
from ..repositories.interfaces import PricingRepositories
from ..strategies import StrategyContext
from .context import (
    AppliedDiscount,
    BulkDiscount,
    BulkItemResult,
    BulkResult,
    ComparisonResult,
    CurrencyTotal,
    ItemFailure,
    PriceBreakdown,
    PriceCalculationRequest,
    SkippedCarrier,
)

D = Decimal

log = structlog.get_logger(__name__)

# Reason codes for carriers left out of a comparison
REASON_NO_PRICING = "NO_PRICING_AVAILABLE"
REASON_FAILED = "CALCULATION_FAILED"

_WEIGHT_EXP = D("0.001")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_decimal(value: Any, field: str) -> Optional[D]:
    if value is None:
        return None
    try:
        number = value if isinstance(value, Decimal) else D(str(value))
    except InvalidOperation as e:
        raise ValidationError(f"{field} must be a decimal number, got {value!r}", {"field": field}) from e
    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite number, got {value!r}", {"field": field})
    return number


class PricingEngine:
    """
    Prices shipments against the rate cards served by `repositories`.

    Stateless between calls: every top-level call resolves one reference
    time (request.at, else the clock) and uses it throughout.
    """

    def __init__(
        self,
        repositories: PricingRepositories,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repos = repositories
        self.settings = settings or default_settings
        self.clock = clock or _utcnow
        self._builder = BreakdownBuilder()

    @classmethod
    def from_catalog(cls, catalog, volume_stats=None, **kwargs) -> "PricingEngine":
        from ..repositories.memory import InMemoryRepository

        repo = InMemoryRepository(catalog)
        return cls(PricingRepositories.from_single(repo, volume_stats=volume_stats), **kwargs)

    @classmethod
    def from_yaml_file(cls, path: str | Path, volume_stats=None, **kwargs) -> "PricingEngine":
        from ..storage.catalog import load_catalog

        return cls.from_catalog(load_catalog(path), volume_stats=volume_stats, **kwargs)

    # -----------------
    # public API
    # -----------------

    def calculate(self, request: PriceCalculationRequest) -> PriceBreakdown:
        started = time.perf_counter()
        request = self._normalize(request, need_carrier=True)
        try:
            zone = self._zone_for(request)
            breakdown = self._price(request, zone)
        except PricingError as e:
            log.warning(
                "price_calculation_failed",
                carrier=request.carrier_code,
                service_type=request.service_type,
                weight_kg=str(request.weight_kg),
                error_code=e.code,
                error=e.message,
            )
            raise

        log.info(
            "price_calculation_completed",
            carrier=breakdown.carrier_code,
            zone=breakdown.zone_code,
            service_type=breakdown.service_type,
            weight_kg=str(breakdown.effective_weight_kg),
            total=str(breakdown.total_price),
            currency=breakdown.currency,
            elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return breakdown

    def compare_all_carriers(
        self,
        request: PriceCalculationRequest,
        include_carriers: Optional[Iterable[str]] = None,
        exclude_carriers: Optional[Iterable[str]] = None,
    ) -> ComparisonResult:
        """
        Price the shipment with every carrier. Zone errors raise; per-carrier
        failures become SkippedCarrier entries. Quotes sorted cheapest first.
        """
        request = self._normalize(request, need_carrier=False)
        zone = self._zone_for(request)

        include = {c.strip() for c in include_carriers} if include_carriers is not None else None
        exclude = {c.strip() for c in exclude_carriers or ()}
        carriers = sorted(
            (
                c
                for c in self.repos.carriers.list_carriers()
                if (include is None or c.code in include) and c.code not in exclude
            ),
            key=lambda c: c.code,
        )

        def one(carrier: Carrier) -> Tuple[Optional[PriceBreakdown], Optional[SkippedCarrier]]:
            try:
                return self._price(request.for_carrier(carrier.code), zone, carrier=carrier), None
            except CarrierCapabilityError as e:
                skipped = SkippedCarrier(carrier.code, e.reason, e.message)
            except NoPricingAvailableError as e:
                skipped = SkippedCarrier(carrier.code, REASON_NO_PRICING, e.message)
            except PricingError as e:
                skipped = SkippedCarrier(carrier.code, e.code, e.message)
            except Exception as e:
                log.exception("carrier_comparison_error", carrier=carrier.code)
                skipped = SkippedCarrier(carrier.code, REASON_FAILED, f"{type(e).__name__}: {e}")
            log.info("carrier_skipped", carrier=carrier.code, reason=skipped.reason_code, detail=skipped.message)
            return None, skipped

        results = self._fan_out(one, carriers)

        quotes = sorted((q for q, _ in results if q is not None), key=lambda q: (q.total_price, q.carrier_code))
        skipped = tuple(s for _, s in results if s is not None)
        log.info(
            "carrier_comparison_completed",
            zone=zone.code,
            quoted=len(quotes),
            skipped=len(skipped),
            best=quotes[0].carrier_code if quotes else None,
        )
        return ComparisonResult(
            zone_code=zone.code, quotes=tuple(quotes), skipped=skipped, zone_name=zone.name
        )

    def calculate_bulk(
        self,
        requests: Sequence[PriceCalculationRequest],
        bulk_discount: Optional[BulkDiscount] = None,
    ) -> BulkResult:
        """
        Price each request independently. Failures are captured per item.
        The bulk discount applies per currency when enough items priced.
        """
        requests = list(requests)
        if not requests:
            raise ValidationError("bulk request contains no shipments", {"field": "requests"})
        limit = self.settings.PRICING_MAX_BATCH_SIZE
        if len(requests) > limit:
            raise BatchTooLargeError(
                f"bulk request has {len(requests)} shipments, maximum is {limit}",
                {"count": len(requests), "max": limit},
            )
        if bulk_discount is not None:
            self._validate_bulk_discount(bulk_discount)

        at = as_utc(self.clock())

        def one(item: Tuple[int, PriceCalculationRequest]) -> BulkItemResult:
            index, req = item
            if req.at is None:
                req = replace(req, at=at)
            try:
                return BulkItemResult(index=index, breakdown=self.calculate(req))
            except PricingError as e:
                return BulkItemResult(index=index, error=ItemFailure(e.code, e.message))
            except Exception as e:
                log.exception("bulk_item_error", index=index)
                return BulkItemResult(index=index, error=ItemFailure(REASON_FAILED, f"{type(e).__name__}: {e}"))

        items = tuple(self._fan_out(one, list(enumerate(requests))))
        successful = sum(1 for i in items if i.ok)
        apply_discount = bulk_discount is not None and successful >= bulk_discount.threshold
        totals = self._bulk_totals(items, bulk_discount if apply_discount else None)

        log.info(
            "bulk_calculation_completed",
            requested=len(items),
            successful=successful,
            failed=len(items) - successful,
            bulk_discount_applied=apply_discount,
        )
        return BulkResult(items=items, totals=totals, bulk_discount_applied=apply_discount)

    # -----------------
    # pipeline
    # -----------------

    def _price(
        self,
        request: PriceCalculationRequest,
        zone: PricingZone,
        carrier: Optional[Carrier] = None,
    ) -> PriceBreakdown:
        at = as_utc(request.at or self.clock())
        steps = PriceSteps()
        steps.meta("ZONE", f"Zone {label(zone.code)} ({zone.zone_type.value})")

        carrier = carrier or self._carrier(request.carrier_code)
        self._check_capability(carrier, zone, request)
        steps.check("CARRIER_CAPABLE", f"{label(carrier.code)} accepts {request.weight_kg} kg to {label(zone.code)}")

        table = select_table(
            carrier.code,
            zone.code,
            request.service_type,
            at,
            self.repos.tables.find_effective(carrier.code, zone.code, request.service_type, at),
        )
        steps.meta("PRICING_TABLE", f"Table {label(table.id)} v{table.version} ({table.currency})")

        agreement: Optional[CustomerPricing] = None
        if request.customer_id is not None:
            agreement = find_agreement(
                request.customer_id,
                table.id,
                self.repos.customers.find_active(request.customer_id, table.id, at),
                at,
            )
        currency = (agreement.currency_override if agreement is not None else None) or table.currency

        def shown(amount: D) -> D:
            return round_money(amount, currency)

        base = calculate_base(
            table,
            self.repos.rules.find_for_table(table.id),
            request.weight_kg,
            request.dimensions_cm,
            request.declared_value,
        )
        if base.dimensional_weight_kg > base.actual_weight_kg:
            steps.warning(
                "DIMENSIONAL_WEIGHT",
                f"Dimensional weight {base.dimensional_weight_kg.quantize(_WEIGHT_EXP)} kg "
                f"exceeds actual weight {base.actual_weight_kg} kg",
            )
        steps.step(
            "BASE_PRICE",
            f"Base price {shown(base.price)} for {base.effective_weight_kg.quantize(_WEIGHT_EXP)} kg "
            f"(rule {label(base.rule.id)}, {base.rule.calculation_method.value})",
        )

        services = calculate_services(
            table,
            request.additional_service_codes,
            request.declared_value,
            base.effective_weight_kg,
            self.repos.services.find_services(carrier.code),
            self.repos.services.find_overrides(table.id),
            request.package_count,
        )
        for charge in services.charges:
            steps.step("SERVICE_CHARGE", f"Service {label(charge.code)}: +{shown(charge.amount)}")

        subtotal = base.price + services.total
        steps.step("SUBTOTAL", f"Subtotal {shown(subtotal)}")

        discounts: List[AppliedDiscount] = []
        customer_discount = ZERO
        if agreement is not None:
            customer_discount = compute_discount(
                agreement,
                subtotal,
                at,
                self.repos.volume_stats,
                StrategyContext(
                    subtotal=subtotal,
                    base_price=base.price,
                    package_count=request.package_count,
                    customer_id=request.customer_id,
                    carrier_code=carrier.code,
                    zone_code=zone.code,
                    service_type=request.service_type,
                ),
            )
            if customer_discount > 0:
                discounts.append(
                    AppliedDiscount(
                        source="customer",
                        reference=agreement.id,
                        name=agreement.contract_name or agreement.id,
                        discount_type=agreement.discount_type.value,
                        amount=customer_discount,
                    )
                )
                steps.step(
                    "CUSTOMER_DISCOUNT",
                    f"Customer agreement {label(agreement.id)}: -{shown(customer_discount)}",
                )
            else:
                steps.meta("CUSTOMER_DISCOUNT", f"Customer agreement {label(agreement.id)} grants no discount here")

        promo_ctx = PromotionContext(
            carrier_code=carrier.code,
            zone_code=zone.code,
            service_type=request.service_type,
            subtotal=max(ZERO, subtotal - customer_discount),
            base_price=base.price,
            table_id=table.id,
            customer_id=request.customer_id,
            customer_group=request.customer_group,
            package_count=request.package_count,
        )
        candidates = list(self.repos.promotions.find_applicable(promo_ctx, at))
        if request.promo_code:
            candidates.extend(self.repos.promotions.find_by_code(request.promo_code))
        promo = apply_promotions(promo_ctx, candidates, at, request.promo_code)
        for line in promo.applied:
            discounts.append(line)
            steps.step("PROMOTION", f"Promotion {label(line.name)}: -{shown(line.amount)}")

        if agreement is not None and agreement.tax_rate_override is not None:
            tax_rate = agreement.tax_rate_override
        else:
            tax_rate = table.tax_rate_percent if table.tax_rate_percent is not None else ZERO

        # Output assembly: unrounded amounts flow through, each output field is rounded once.
        # Tax is what remains of the rounded gross after the rounded net.
        net = max(ZERO, subtotal - customer_discount - promo.total_discount)
        net_r = shown(net)
        total_r = shown(net + percent_of(net, tax_rate))
        tax_r = total_r - net_r
        steps.step("TAX", f"Tax {tax_rate}% on {net_r}: +{tax_r}")
        steps.step("TOTAL", f"Total {total_r} {currency}")

        return PriceBreakdown(
            carrier_code=carrier.code,
            zone_code=zone.code,
            service_type=request.service_type,
            table_id=table.id,
            table_version=table.version,
            currency=currency,
            actual_weight_kg=base.actual_weight_kg.quantize(_WEIGHT_EXP),
            dimensional_weight_kg=base.dimensional_weight_kg.quantize(_WEIGHT_EXP),
            effective_weight_kg=base.effective_weight_kg.quantize(_WEIGHT_EXP),
            base_price=shown(base.price),
            additional_services_total=shown(services.total),
            subtotal=shown(subtotal),
            customer_discount=shown(customer_discount),
            promotional_discount=shown(promo.total_discount),
            net_amount=net_r,
            tax_rate_percent=tax_rate,
            tax_amount=tax_r,
            total_price=total_r,
            services=tuple(replace(c, amount=shown(c.amount)) for c in services.charges),
            discounts=tuple(replace(d, amount=shown(d.amount)) for d in discounts),
            steps=self._builder.build(steps),
            carrier_name=carrier.name,
            zone_name=zone.name,
        )

    # -----------------
    # internals
    # -----------------

    def _normalize(self, request: PriceCalculationRequest, need_carrier: bool) -> PriceCalculationRequest:
        """Validate and canonicalize a request; resolves `at` once."""
        weight = _as_decimal(request.weight_kg, "weight_kg")
        if weight is None or weight <= 0:
            raise ValidationError("weight_kg must be greater than 0", {"field": "weight_kg"})

        declared = _as_decimal(request.declared_value, "declared_value")
        if declared is not None and declared < 0:
            raise ValidationError("declared_value may not be negative", {"field": "declared_value"})

        dims = request.dimensions_cm
        if dims is not None:
            dims = Dimensions(
                _as_decimal(dims.length_cm, "dimensions_cm.length_cm"),
                _as_decimal(dims.width_cm, "dimensions_cm.width_cm"),
                _as_decimal(dims.height_cm, "dimensions_cm.height_cm"),
            )
            if any(v is None or v <= 0 for v in (dims.length_cm, dims.width_cm, dims.height_cm)):
                raise ValidationError("dimensions must be greater than 0", {"field": "dimensions_cm"})

        if request.package_count < 1:
            raise ValidationError("package_count must be at least 1", {"field": "package_count"})

        service_type = normalize_service_type(request.service_type)
        if not service_type:
            raise ValidationError("service_type is required", {"field": "service_type"})

        if request.destination is None and not request.zone_code:
            raise ValidationError("either destination or zone_code is required", {"field": "destination"})

        carrier_code = request.carrier_code.strip() if request.carrier_code else None
        if need_carrier and not carrier_code:
            raise ValidationError("carrier_code is required", {"field": "carrier_code"})

        return replace(
            request,
            weight_kg=weight,
            declared_value=declared,
            dimensions_cm=dims,
            service_type=service_type,
            carrier_code=carrier_code,
            additional_service_codes=tuple(c for c in request.additional_service_codes if c and c.strip()),
            promo_code=request.promo_code.strip() if request.promo_code and request.promo_code.strip() else None,
            at=as_utc(request.at or self.clock()),
        )

    def _zone_for(self, request: PriceCalculationRequest) -> PricingZone:
        zones = self.repos.zones.list_zones()
        if request.destination is not None:
            zone = resolve_zone(request.destination.country_code, request.destination.postal_code, zones)
            if request.zone_code and request.zone_code != zone.code:
                raise ValidationError(
                    f"destination resolves to zone {zone.code}, request names {request.zone_code}",
                    {"field": "zone_code", "resolved": zone.code},
                )
            return zone
        return find_zone(request.zone_code, zones)

    def _carrier(self, code: Optional[str]) -> Carrier:
        carrier = self.repos.carriers.find_carrier(code) if code else None
        if carrier is None:
            raise UnknownCarrierError(f"unknown carrier {code!r}", {"carrier_code": code})
        return carrier

    @staticmethod
    def _check_capability(carrier: Carrier, zone: PricingZone, request: PriceCalculationRequest) -> None:
        meta = {"carrier_code": carrier.code, "zone_code": zone.code}
        if not carrier.is_active:
            raise CarrierCapabilityError("CARRIER_INACTIVE", f"carrier {carrier.code} is not active", meta)
        if not carrier.supports_zone(zone.code):
            raise CarrierCapabilityError(
                "ZONE_NOT_SUPPORTED", f"carrier {carrier.code} does not serve zone {zone.code}", meta
            )
        if not carrier.can_handle_weight(request.weight_kg):
            raise CarrierCapabilityError(
                "CAPACITY_EXCEEDED",
                f"{request.weight_kg} kg exceeds {carrier.code} maximum of {carrier.max_weight_kg} kg",
                {**meta, "weight_kg": str(request.weight_kg)},
            )
        if not carrier.can_handle_dimensions(request.dimensions_cm):
            raise CarrierCapabilityError(
                "CAPACITY_EXCEEDED", f"parcel dimensions exceed {carrier.code} limits", meta
            )

    def _fan_out(self, fn, items: list) -> list:
        """map() over a bounded thread pool; results keep input order."""
        if not items:
            return []
        workers = max(1, min(self.settings.PRICING_MAX_WORKERS, len(items)))
        if workers == 1:
            return [fn(i) for i in items]
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pricing") as pool:
            return list(pool.map(fn, items))

    @staticmethod
    def _validate_bulk_discount(bulk_discount: BulkDiscount) -> None:
        if bulk_discount.threshold < 1:
            raise ValidationError("bulk discount threshold must be at least 1", {"field": "bulk_discount.threshold"})
        if not (ZERO <= bulk_discount.percentage <= HUNDRED):
            raise ValidationError(
                "bulk discount percentage must be between 0 and 100", {"field": "bulk_discount.percentage"}
            )

    @staticmethod
    def _bulk_totals(
        items: Tuple[BulkItemResult, ...], bulk_discount: Optional[BulkDiscount]
    ) -> Tuple[CurrencyTotal, ...]:
        grouped: dict = {}
        for item in items:
            if item.breakdown is None:
                continue
            count, gross = grouped.get(item.breakdown.currency, (0, ZERO))
            grouped[item.breakdown.currency] = (count + 1, gross + item.breakdown.total_price)

        totals = []
        for currency in sorted(grouped):
            count, gross = grouped[currency]
            discount = round_money(ZERO, currency)
            if bulk_discount is not None:
                discount = round_money(percent_of(gross, bulk_discount.percentage), currency)
            totals.append(
                CurrencyTotal(
                    currency=currency,
                    item_count=count,
                    gross=gross,
                    bulk_discount=discount,
                    net=gross - discount,
                )
            )
        return tuple(totals)
