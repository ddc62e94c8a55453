# courier_pricing/schemas/price_breakdown_v1.py
from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict

from jsonschema import validate

from ..engine.context import BulkResult, ComparisonResult, PriceBreakdown
from ..errors import PricingError

SCHEMA_PATH = Path(__file__).with_name("price_breakdown.v1.schema.json")

CONTRACT_VERSION = "v1"


def _s(v: Decimal) -> str:
    # money travels as strings; floats would lose cents
    return str(v)


def dump_breakdown(b: PriceBreakdown) -> Dict[str, Any]:
    return {
        "version": CONTRACT_VERSION,
        "carrier_code": b.carrier_code,
        "carrier_name": b.carrier_name,
        "zone_code": b.zone_code,
        "zone_name": b.zone_name,
        "service_type": b.service_type,
        "pricing_table": {"id": b.table_id, "version": b.table_version},
        "currency": b.currency,
        "weights": {
            "actual_kg": _s(b.actual_weight_kg),
            "dimensional_kg": _s(b.dimensional_weight_kg),
            "effective_kg": _s(b.effective_weight_kg),
        },
        "base_price": _s(b.base_price),
        "additional_services_total": _s(b.additional_services_total),
        "subtotal": _s(b.subtotal),
        "customer_discount": _s(b.customer_discount),
        "promotional_discount": _s(b.promotional_discount),
        "net_amount": _s(b.net_amount),
        "tax_rate_percent": _s(b.tax_rate_percent),
        "tax_amount": _s(b.tax_amount),
        "total_price": _s(b.total_price),
        "services": [{"code": c.code, "name": c.name, "amount": _s(c.amount)} for c in b.services],
        "discounts": [
            {
                "source": d.source,
                "reference": d.reference,
                "name": d.name,
                "discount_type": d.discount_type,
                "amount": _s(d.amount),
            }
            for d in b.discounts
        ],
        "steps": list(b.steps),
    }


def dump_comparison(result: ComparisonResult) -> Dict[str, Any]:
    savings = result.savings_potential()
    average = result.average_price()
    return {
        "version": CONTRACT_VERSION,
        "zone_code": result.zone_code,
        "zone_name": result.zone_name,
        "quotes": [dump_breakdown(q) for q in result.quotes],
        "skipped": [
            {"carrier_code": s.carrier_code, "reason_code": s.reason_code, "message": s.message}
            for s in result.skipped
        ],
        "best_carrier": result.best_price.carrier_code if result.best_price else None,
        "savings_potential": None if savings is None else _s(savings),
        "most_expensive_carrier": result.most_expensive.carrier_code if result.most_expensive else None,
        "average_price": None if average is None else _s(average),
    }


def dump_bulk(result: BulkResult) -> Dict[str, Any]:
    return {
        "version": CONTRACT_VERSION,
        "items": [
            {
                "index": i.index,
                "ok": i.ok,
                "breakdown": dump_breakdown(i.breakdown) if i.breakdown is not None else None,
                "error": None if i.error is None else {"code": i.error.code, "message": i.error.message},
            }
            for i in result.items
        ],
        "totals": [
            {
                "currency": t.currency,
                "item_count": t.item_count,
                "gross": _s(t.gross),
                "bulk_discount": _s(t.bulk_discount),
                "net": _s(t.net),
            }
            for t in result.totals
        ],
        "bulk_discount_applied": result.bulk_discount_applied,
        "successful_count": result.successful_count,
        "failed_count": result.failed_count,
        "success_rate": _s(result.success_rate),
    }


def dump_error(error: PricingError) -> Dict[str, Any]:
    return {"version": CONTRACT_VERSION, "error": error.to_dict()}


def load_schema() -> Dict[str, Any]:
    with SCHEMA_PATH.open("r", encoding="utf-8") as f:
        return json.load(f)


def validate_breakdown_payload(payload: Dict[str, Any]) -> None:
    """Raises jsonschema.ValidationError when the payload breaks the v1 contract."""
    validate(instance=payload, schema=load_schema())
