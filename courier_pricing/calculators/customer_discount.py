from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Optional

import structlog

from ..domain.models import CustomerDiscountType, CustomerPricing, PricingTable
from ..errors import PricingConfigurationError
from ..strategies import StrategyContext, build_strategy
from .rounding import ZERO, percent_of

if TYPE_CHECKING:
    from ..repositories.interfaces import VolumeStatsProvider

D = Decimal

log = structlog.get_logger(__name__)


def find_agreement(
    customer_id: Optional[str],
    table_id: str,
    agreements: Iterable[CustomerPricing],
    at: datetime,
) -> Optional[CustomerPricing]:
    """
    Active agreement for (customer, rate card) at `at`; highest priority_level wins.
    Two agreements tied at the top priority are a data error.
    """
    if customer_id is None:
        return None

    candidates = [
        a
        for a in agreements
        if a.customer_id == customer_id and a.base_pricing_table_id == table_id and a.is_effective(at)
    ]
    if not candidates:
        return None

    top = max(a.priority_level for a in candidates)
    winners = sorted(a.id for a in candidates if a.priority_level == top)
    if len(winners) > 1:
        raise PricingConfigurationError(
            f"customer {customer_id} has agreements {winners} with equal priority {top} for table {table_id}",
            {"customer_id": customer_id, "table_id": table_id, "agreement_ids": winners},
        )
    return next(a for a in candidates if a.priority_level == top)


def _volume_discount(
    agreement: CustomerPricing,
    subtotal: D,
    at: datetime,
    volume_stats: Optional["VolumeStatsProvider"],
) -> D:
    if volume_stats is None:
        raise PricingConfigurationError(
            f"agreement {agreement.id} uses volume discounts but no volume statistics provider is configured",
            {"agreement_id": agreement.id},
        )
    if not agreement.volume_discount_tiers:
        raise PricingConfigurationError(
            f"agreement {agreement.id} uses volume discounts but defines no tiers",
            {"agreement_id": agreement.id},
        )

    count = volume_stats.shipment_count(agreement.customer_id, agreement.volume_period, at)

    # highest tier with min_shipments <= count
    chosen = None
    for tier in agreement.volume_discount_tiers:
        if count >= tier.min_shipments and (chosen is None or tier.min_shipments >= chosen.min_shipments):
            chosen = tier
    if chosen is None:
        return ZERO
    return percent_of(subtotal, chosen.discount_percent)


def compute_discount(
    agreement: CustomerPricing,
    subtotal: D,
    at: datetime,
    volume_stats: Optional["VolumeStatsProvider"] = None,
    context: Optional[StrategyContext] = None,
) -> D:
    """Discount granted by one agreement on `subtotal`. Outside the order-value window -> 0."""
    if agreement.minimum_order_value is not None and subtotal < agreement.minimum_order_value:
        return ZERO
    if agreement.maximum_order_value is not None and subtotal > agreement.maximum_order_value:
        return ZERO

    kind = agreement.discount_type
    if kind == CustomerDiscountType.PERCENTAGE:
        return percent_of(subtotal, agreement.base_discount_percent or ZERO)
    if kind == CustomerDiscountType.FIXED:
        return min(agreement.fixed_discount_amount or ZERO, subtotal)
    if kind == CustomerDiscountType.VOLUME:
        return _volume_discount(agreement, subtotal, at, volume_stats)
    if kind == CustomerDiscountType.CUSTOM_RULES:
        strategy = build_strategy(agreement.custom_rule, agreement.custom_rule_params)
        ctx = context or StrategyContext(subtotal=subtotal, base_price=subtotal, customer_id=agreement.customer_id)
        return max(ZERO, strategy.apply(ctx))

    raise PricingConfigurationError(  # pragma: no cover
        f"unsupported discount type {kind!r}", {"agreement_id": agreement.id}
    )


def resolve_discount(
    customer_id: Optional[str],
    table: PricingTable,
    subtotal: D,
    agreements: Iterable[CustomerPricing],
    at: datetime,
    volume_stats: Optional["VolumeStatsProvider"] = None,
    context: Optional[StrategyContext] = None,
) -> D:
    agreement = find_agreement(customer_id, table.id, agreements, at)
    if agreement is None:
        return ZERO
    amount = compute_discount(agreement, subtotal, at, volume_stats, context)
    log.debug(
        "customer_discount_resolved",
        customer_id=customer_id,
        agreement_id=agreement.id,
        discount_type=agreement.discount_type.value,
        amount=str(amount),
    )
    return amount
