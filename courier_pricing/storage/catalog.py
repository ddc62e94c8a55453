from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import jsonschema
import yaml

from ..domain.models import (
    AdditionalService,
    AdditionalServicePriceOverride,
    CalculationMethod,
    Carrier,
    CustomerDiscountType,
    CustomerPricing,
    Dimensions,
    PricingRule,
    PricingTable,
    PricingZone,
    PromotionDiscountType,
    PromotionTargetType,
    PromotionalPricing,
    ServicePricingType,
    UsageLimitType,
    ValueTier,
    VolumeDiscountTier,
    VolumePeriod,
    WeightTier,
    ZoneType,
    normalize_service_type,
)
from ..errors import CatalogError

D = Decimal

SCHEMA_PATH = Path(__file__).with_name("catalog.schema.json")


@dataclass(frozen=True)
class Catalog:
    """All pricing reference data, immutable once loaded."""

    zones: Tuple[PricingZone, ...] = ()
    carriers: Tuple[Carrier, ...] = ()
    tables: Tuple[PricingTable, ...] = ()
    rules: Tuple[PricingRule, ...] = ()
    services: Tuple[AdditionalService, ...] = ()
    service_overrides: Tuple[AdditionalServicePriceOverride, ...] = ()
    customer_pricing: Tuple[CustomerPricing, ...] = ()
    promotions: Tuple[PromotionalPricing, ...] = ()
    version: int = 1


# -----------------
# scalar parsing
# -----------------


def _dec(v: Any, where: str) -> Optional[D]:
    if v is None:
        return None
    try:
        # str() first: YAML floats would otherwise carry binary noise
        return D(str(v))
    except InvalidOperation as e:
        raise CatalogError(f"{where}: not a decimal: {v!r}", {"path": where}) from e


def _req_dec(v: Any, where: str) -> D:
    out = _dec(v, where)
    if out is None:
        raise CatalogError(f"{where}: value required", {"path": where})
    return out


def _dt(v: Any, where: str) -> Optional[datetime]:
    if v is None:
        return None
    if isinstance(v, datetime):
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)
    if isinstance(v, date):
        return datetime.combine(v, time.min, tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(v).replace("Z", "+00:00"))
    except ValueError as e:
        raise CatalogError(f"{where}: not an ISO timestamp: {v!r}", {"path": where}) from e
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _req_dt(v: Any, where: str) -> datetime:
    out = _dt(v, where)
    if out is None:
        raise CatalogError(f"{where}: timestamp required", {"path": where})
    return out


# -----------------
# record parsing
# -----------------


def _zone(d: Dict[str, Any]) -> PricingZone:
    return PricingZone(
        code=d["code"],
        name=d.get("name", ""),
        zone_type=ZoneType(d["zone_type"]),
        countries=frozenset(c.upper() for c in d["countries"]),
        postal_code_patterns=tuple(d.get("postal_code_patterns") or ()),
        is_active=bool(d.get("is_active", True)),
    )


def _carrier(d: Dict[str, Any]) -> Carrier:
    where = f"carriers.{d['code']}"
    dims = d.get("max_dimensions_cm")
    return Carrier(
        code=d["code"],
        name=d.get("name", ""),
        max_weight_kg=_dec(d.get("max_weight_kg"), f"{where}.max_weight_kg"),
        max_dimensions_cm=None
        if dims is None
        else Dimensions(
            length_cm=_req_dec(dims["length"], f"{where}.length"),
            width_cm=_req_dec(dims["width"], f"{where}.width"),
            height_cm=_req_dec(dims["height"], f"{where}.height"),
        ),
        supported_zones=frozenset(d["supported_zones"]),
        is_active=bool(d.get("is_active", True)),
    )


def _table(d: Dict[str, Any]) -> Tuple[PricingTable, List[PricingRule]]:
    where = f"tables.{d['id']}"
    table = PricingTable(
        id=d["id"],
        carrier_code=d["carrier_code"],
        zone_code=d["zone_code"],
        service_type=normalize_service_type(d["service_type"]),
        version=int(d["version"]),
        currency=d["currency"],
        base_price=_dec(d.get("base_price"), f"{where}.base_price") or D("0"),
        min_weight_kg=_dec(d.get("min_weight_kg"), f"{where}.min_weight_kg") or D("0"),
        max_weight_kg=_dec(d.get("max_weight_kg"), f"{where}.max_weight_kg"),
        volumetric_divisor=_dec(d.get("volumetric_divisor"), f"{where}.volumetric_divisor"),
        tax_rate_percent=_dec(d.get("tax_rate_percent"), f"{where}.tax_rate_percent"),
        effective_from=_req_dt(d["effective_from"], f"{where}.effective_from"),
        effective_until=_dt(d.get("effective_until"), f"{where}.effective_until"),
        is_active=bool(d.get("is_active", True)),
    )
    rules = []
    for r in d["rules"]:
        rw = f"{where}.rules.{r['id']}"
        rules.append(
            PricingRule(
                id=r["id"],
                table_id=table.id,
                weight_from=_req_dec(r["weight_from"], f"{rw}.weight_from"),
                weight_to=_dec(r.get("weight_to"), f"{rw}.weight_to"),
                calculation_method=CalculationMethod(r["calculation_method"]),
                price=_req_dec(r["price"], f"{rw}.price"),
                price_per_kg=_dec(r.get("price_per_kg"), f"{rw}.price_per_kg"),
                weight_step=_dec(r.get("weight_step"), f"{rw}.weight_step"),
                min_price=_dec(r.get("min_price"), f"{rw}.min_price"),
                max_price=_dec(r.get("max_price"), f"{rw}.max_price"),
            )
        )
    return table, rules


def _service(d: Dict[str, Any]) -> AdditionalService:
    where = f"services.{d['id']}"
    return AdditionalService(
        id=d["id"],
        carrier_code=d["carrier_code"],
        code=d["code"],
        name=d.get("name", ""),
        pricing_type=ServicePricingType(d["pricing_type"]),
        default_price=_dec(d.get("default_price"), f"{where}.default_price"),
        percentage_rate=_dec(d.get("percentage_rate"), f"{where}.percentage_rate"),
        min_price=_dec(d.get("min_price"), f"{where}.min_price"),
        max_price=_dec(d.get("max_price"), f"{where}.max_price"),
        is_active=bool(d.get("is_active", True)),
    )


def _override(d: Dict[str, Any]) -> AdditionalServicePriceOverride:
    where = f"service_overrides.{d['service_id']}@{d['table_id']}"
    return AdditionalServicePriceOverride(
        service_id=d["service_id"],
        table_id=d["table_id"],
        price=_dec(d.get("price"), f"{where}.price"),
        percentage_rate=_dec(d.get("percentage_rate"), f"{where}.percentage_rate"),
        min_price=_dec(d.get("min_price"), f"{where}.min_price"),
        max_price=_dec(d.get("max_price"), f"{where}.max_price"),
        weight_tiers=tuple(
            WeightTier(
                weight_from=_req_dec(t["weight_from"], f"{where}.weight_tiers"),
                weight_to=_dec(t.get("weight_to"), f"{where}.weight_tiers"),
                price=_req_dec(t["price"], f"{where}.weight_tiers"),
            )
            for t in d.get("weight_tiers") or ()
        ),
        value_tiers=tuple(
            ValueTier(
                value_from=_req_dec(t["value_from"], f"{where}.value_tiers"),
                value_to=_dec(t.get("value_to"), f"{where}.value_tiers"),
                rate=_dec(t.get("rate"), f"{where}.value_tiers"),
                price=_dec(t.get("price"), f"{where}.value_tiers"),
            )
            for t in d.get("value_tiers") or ()
        ),
    )


def _customer_pricing(d: Dict[str, Any]) -> CustomerPricing:
    where = f"customer_pricing.{d['id']}"
    return CustomerPricing(
        id=d["id"],
        customer_id=d["customer_id"],
        contract_name=d.get("contract_name", ""),
        base_pricing_table_id=d["base_pricing_table_id"],
        discount_type=CustomerDiscountType(d["discount_type"]),
        base_discount_percent=_dec(d.get("base_discount_percent"), f"{where}.base_discount_percent"),
        fixed_discount_amount=_dec(d.get("fixed_discount_amount"), f"{where}.fixed_discount_amount"),
        volume_discount_tiers=tuple(
            VolumeDiscountTier(
                min_shipments=int(t["min_shipments"]),
                discount_percent=_req_dec(t["discount_percent"], f"{where}.volume_discount_tiers"),
            )
            for t in d.get("volume_discount_tiers") or ()
        ),
        volume_period=VolumePeriod(d.get("volume_period", "monthly")),
        custom_rule=d.get("custom_rule"),
        custom_rule_params=dict(d.get("custom_rule_params") or {}),
        minimum_order_value=_dec(d.get("minimum_order_value"), f"{where}.minimum_order_value"),
        maximum_order_value=_dec(d.get("maximum_order_value"), f"{where}.maximum_order_value"),
        tax_rate_override=_dec(d.get("tax_rate_override"), f"{where}.tax_rate_override"),
        currency_override=d.get("currency_override"),
        effective_from=_req_dt(d["effective_from"], f"{where}.effective_from"),
        effective_until=_dt(d.get("effective_until"), f"{where}.effective_until"),
        is_active=bool(d.get("is_active", True)),
        priority_level=int(d.get("priority_level", 0)),
    )


def _promotion(d: Dict[str, Any]) -> PromotionalPricing:
    where = f"promotions.{d['id']}"
    targets = d.get("target_values")
    return PromotionalPricing(
        id=d["id"],
        name=d["name"],
        promo_code=d.get("promo_code"),
        discount_type=PromotionDiscountType(d["discount_type"]),
        discount_value=_req_dec(d["discount_value"], f"{where}.discount_value"),
        minimum_order_value=_dec(d.get("minimum_order_value"), f"{where}.minimum_order_value"),
        maximum_discount_amount=_dec(d.get("maximum_discount_amount"), f"{where}.maximum_discount_amount"),
        target_type=PromotionTargetType(d.get("target_type", "all")),
        target_values=None if targets is None else frozenset(targets),
        usage_limit=d.get("usage_limit"),
        usage_limit_type=UsageLimitType(d.get("usage_limit_type", "total")),
        usage_count=int(d.get("usage_count", 0)),
        valid_from=_req_dt(d["valid_from"], f"{where}.valid_from"),
        valid_until=_req_dt(d["valid_until"], f"{where}.valid_until"),
        priority=int(d.get("priority", 0)),
        stackable=bool(d.get("stackable", False)),
        is_active=bool(d.get("is_active", True)),
        pricing_table_id=d.get("pricing_table_id"),
        config=dict(d.get("config") or {}),
    )


# -----------------
# cross validation
# -----------------


def _unique(values: List[str], what: str) -> None:
    seen = set()
    dupes = sorted({v for v in values if v in seen or seen.add(v)})
    if dupes:
        raise CatalogError(f"duplicate {what}: {dupes}", {"duplicates": dupes})


def _check_rule_ranges(table: PricingTable, rules: List[PricingRule]) -> None:
    """Weight ranges of one table may not overlap; only the last may be open ended."""
    ordered = sorted(rules, key=lambda r: r.weight_from)
    for r in ordered:
        if r.weight_to is not None and r.weight_to <= r.weight_from:
            raise CatalogError(f"table {table.id}: rule {r.id} has weight_to <= weight_from", {"rule_id": r.id})
    for a, b in zip(ordered, ordered[1:]):
        if a.weight_to is None or b.weight_from < a.weight_to:
            raise CatalogError(
                f"table {table.id}: rules {a.id} and {b.id} overlap",
                {"table_id": table.id, "rule_ids": [a.id, b.id]},
            )


def cross_validate(catalog: Catalog) -> None:
    _unique([z.code for z in catalog.zones], "zone codes")
    _unique([c.code for c in catalog.carriers], "carrier codes")
    _unique([t.id for t in catalog.tables], "table ids")
    _unique([r.id for r in catalog.rules], "rule ids")
    _unique([s.id for s in catalog.services], "service ids")
    _unique([f"{s.carrier_code}/{s.code.upper()}" for s in catalog.services], "service codes per carrier")
    _unique([a.id for a in catalog.customer_pricing], "customer pricing ids")
    _unique([p.id for p in catalog.promotions], "promotion ids")

    zones = {z.code for z in catalog.zones}
    carriers = {c.code for c in catalog.carriers}
    tables = {t.id: t for t in catalog.tables}
    services = {s.id for s in catalog.services}

    for c in catalog.carriers:
        unknown = sorted(c.supported_zones - zones)
        if unknown:
            raise CatalogError(f"carrier {c.code} supports unknown zones {unknown}", {"carrier_code": c.code})

    for t in catalog.tables:
        if t.carrier_code not in carriers:
            raise CatalogError(f"table {t.id} references unknown carrier {t.carrier_code}", {"table_id": t.id})
        if t.zone_code not in zones:
            raise CatalogError(f"table {t.id} references unknown zone {t.zone_code}", {"table_id": t.id})
        _check_rule_ranges(t, [r for r in catalog.rules if r.table_id == t.id])

    for o in catalog.service_overrides:
        if o.service_id not in services or o.table_id not in tables:
            raise CatalogError(
                f"service override {o.service_id}@{o.table_id} references unknown service or table",
                {"service_id": o.service_id, "table_id": o.table_id},
            )

    for a in catalog.customer_pricing:
        if a.base_pricing_table_id not in tables:
            raise CatalogError(
                f"customer pricing {a.id} references unknown table {a.base_pricing_table_id}",
                {"agreement_id": a.id},
            )

    for p in catalog.promotions:
        if p.valid_until < p.valid_from:
            raise CatalogError(f"promotion {p.id} ends before it starts", {"promotion_id": p.id})
        if p.pricing_table_id is not None and p.pricing_table_id not in tables:
            raise CatalogError(f"promotion {p.id} references unknown table {p.pricing_table_id}", {"promotion_id": p.id})


# -----------------
# public API
# -----------------


def load_schema() -> Dict[str, Any]:
    with SCHEMA_PATH.open("r", encoding="utf-8") as f:
        return json.load(f)


def catalog_from_dict(raw: Dict[str, Any]) -> Catalog:
    """Schema-validate, parse and cross-validate a catalog document. Raises CatalogError."""
    try:
        jsonschema.validate(instance=raw, schema=load_schema())
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path)
        raise CatalogError(f"catalog schema violation at '{path}': {e.message}", {"path": path}) from e

    rules: List[PricingRule] = []
    tables: List[PricingTable] = []
    for t in raw["tables"]:
        table, table_rules = _table(t)
        tables.append(table)
        rules.extend(table_rules)

    catalog = Catalog(
        version=int(raw["version"]),
        zones=tuple(_zone(z) for z in raw["zones"]),
        carriers=tuple(_carrier(c) for c in raw["carriers"]),
        tables=tuple(tables),
        rules=tuple(rules),
        services=tuple(_service(s) for s in raw.get("services") or ()),
        service_overrides=tuple(_override(o) for o in raw.get("service_overrides") or ()),
        customer_pricing=tuple(_customer_pricing(a) for a in raw.get("customer_pricing") or ()),
        promotions=tuple(_promotion(p) for p in raw.get("promotions") or ()),
    )
    cross_validate(catalog)
    return catalog


def load_catalog(path: str | Path) -> Catalog:
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise CatalogError(f"{p}: invalid YAML: {e}", {"path": str(p)}) from e
    if not isinstance(raw, dict):
        raise CatalogError(f"{p}: top level must be a mapping", {"path": str(p)})
    return catalog_from_dict(raw)
