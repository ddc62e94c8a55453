from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from ..domain.models import (
    PromotionDiscountType,
    PromotionTargetType,
    PromotionalPricing,
    normalize_service_type,
)
from ..engine.context import AppliedDiscount
from ..errors import InvalidPromoCodeError
from ..strategies import StrategyContext, build_strategy
from .rounding import ZERO, percent_of

D = Decimal

log = structlog.get_logger(__name__)

# Reasons a promotion is not eligible (reported for an explicitly supplied code)
REASON_NOT_VALID = "PROMO_NOT_VALID_NOW"
REASON_TARGET = "PROMO_TARGET_MISMATCH"
REASON_TABLE = "PROMO_TABLE_MISMATCH"
REASON_MIN_ORDER = "PROMO_BELOW_MINIMUM_ORDER"
REASON_USAGE = "PROMO_USAGE_LIMIT_REACHED"


@dataclass(frozen=True)
class PromotionContext:
    """
    subtotal: base + services after customer discount
    base_price: transport component (free_shipping removes exactly this)
    """

    carrier_code: str
    zone_code: str
    service_type: str
    subtotal: D
    base_price: D
    table_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer_group: Optional[str] = None
    package_count: int = 1


@dataclass(frozen=True)
class PromotionOutcome:
    total_discount: D
    applied: Tuple[AppliedDiscount, ...] = ()


def find_by_code(code: str, promotions: Iterable[PromotionalPricing]) -> List[PromotionalPricing]:
    """Case-insensitive equality on promo_code."""
    return [p for p in promotions if p.matches_code(code)]


def _target_attribute(promotion: PromotionalPricing, ctx: PromotionContext) -> Optional[str]:
    return {
        PromotionTargetType.CARRIER: ctx.carrier_code,
        PromotionTargetType.ZONE: ctx.zone_code,
        PromotionTargetType.SERVICE_TYPE: ctx.service_type,
        PromotionTargetType.CUSTOMER: ctx.customer_id,
        PromotionTargetType.CUSTOMER_GROUP: ctx.customer_group,
    }.get(promotion.target_type)


def _target_matches(promotion: PromotionalPricing, ctx: PromotionContext) -> bool:
    value = _target_attribute(promotion, ctx)
    if promotion.target_type == PromotionTargetType.SERVICE_TYPE:
        return normalize_service_type(value) in {normalize_service_type(v) for v in promotion.target_values}
    return value in promotion.target_values


def ineligibility_reason(promotion: PromotionalPricing, ctx: PromotionContext, at: datetime) -> Optional[str]:
    """None when the promotion may apply to this context."""
    if not promotion.is_valid_at(at):
        return REASON_NOT_VALID

    if promotion.target_type != PromotionTargetType.ALL and promotion.target_values is not None:
        if not _target_matches(promotion, ctx):
            return REASON_TARGET

    if promotion.pricing_table_id is not None and promotion.pricing_table_id != ctx.table_id:
        return REASON_TABLE

    if promotion.minimum_order_value is not None and ctx.subtotal < promotion.minimum_order_value:
        return REASON_MIN_ORDER

    # usage_count is read only here; the host increments it after checkout
    if promotion.usage_exhausted():
        return REASON_USAGE

    return None


def promotion_discount(promotion: PromotionalPricing, ctx: PromotionContext) -> D:
    kind = promotion.discount_type
    if kind == PromotionDiscountType.PERCENTAGE:
        amount = percent_of(ctx.subtotal, promotion.discount_value)
    elif kind == PromotionDiscountType.FIXED_AMOUNT:
        amount = promotion.discount_value
    elif kind == PromotionDiscountType.FREE_SHIPPING:
        amount = ctx.base_price
    else:
        strategy = build_strategy(kind.value, promotion.config)
        amount = strategy.apply(
            StrategyContext(
                subtotal=ctx.subtotal,
                base_price=ctx.base_price,
                package_count=ctx.package_count,
                customer_id=ctx.customer_id,
                carrier_code=ctx.carrier_code,
                zone_code=ctx.zone_code,
                service_type=ctx.service_type,
            )
        )

    amount = max(ZERO, amount)
    if promotion.maximum_discount_amount is not None:
        amount = min(amount, promotion.maximum_discount_amount)
    return amount


def select_promotions(
    ctx: PromotionContext,
    promotions: Iterable[PromotionalPricing],
    at: datetime,
    promo_code: Optional[str] = None,
) -> List[PromotionalPricing]:
    """
    Eligible promotions in application order.

    Coded promotions only take part when their code was supplied; a
    supplied code that is unknown or not eligible raises InvalidPromoCodeError.
    """
    unique: Dict[str, PromotionalPricing] = {}
    for p in promotions:
        unique.setdefault(p.id, p)
    pool = list(unique.values())

    eligible = [p for p in pool if p.promo_code is None and ineligibility_reason(p, ctx, at) is None]

    code = (promo_code or "").strip()
    if code:
        coded = find_by_code(code, pool)
        if not coded:
            raise InvalidPromoCodeError(f"promo code {code!r} does not exist", {"promo_code": code})
        reasons = {p.id: ineligibility_reason(p, ctx, at) for p in coded}
        usable = [p for p in coded if reasons[p.id] is None]
        if not usable:
            reason = sorted(r for r in reasons.values() if r)[0]
            raise InvalidPromoCodeError(
                f"promo code {code!r} cannot be used for this shipment ({reason})",
                {"promo_code": code, "reason": reason},
            )
        eligible.extend(usable)

    eligible.sort(key=lambda p: (-p.priority, p.id))

    if not eligible:
        return []
    top = eligible[0]
    if not top.stackable:
        return [top]
    return [p for p in eligible if p.stackable]


def apply_promotions(
    ctx: PromotionContext,
    promotions: Iterable[PromotionalPricing],
    at: datetime,
    promo_code: Optional[str] = None,
) -> PromotionOutcome:
    selected = select_promotions(ctx, promotions, at, promo_code)

    total = ZERO
    applied: List[AppliedDiscount] = []
    for p in selected:
        amount = promotion_discount(p, ctx)
        total += amount
        applied.append(
            AppliedDiscount(
                source="promotion",
                reference=p.id,
                name=p.name,
                discount_type=p.discount_type.value,
                amount=amount,
            )
        )
        log.debug("promotion_applied", promotion_id=p.id, amount=str(amount), stackable=p.stackable)

    return PromotionOutcome(total_discount=total, applied=tuple(applied))
