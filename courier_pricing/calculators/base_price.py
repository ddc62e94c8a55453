from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Iterable, Optional

from ..domain.models import CalculationMethod, Dimensions, PricingRule, PricingTable
from ..errors import MissingDeclaredValueError, PricingConfigurationError, WeightOutOfRangeError
from .rounding import ZERO, clamp, percent_of

D = Decimal


@dataclass(frozen=True)
class BasePrice:
    price: D
    actual_weight_kg: D
    dimensional_weight_kg: D
    effective_weight_kg: D
    rule: PricingRule


def dimensional_weight(table: PricingTable, dims: Optional[Dimensions]) -> D:
    if dims is None or not table.volumetric_divisor:
        return ZERO
    return dims.volume_cm3() / table.volumetric_divisor


def select_rule(table: PricingTable, rules: Iterable[PricingRule], weight_kg: D) -> PricingRule:
    """Rule whose [weight_from, weight_to) contains weight_kg. No clamping to the nearest tier."""
    for rule in sorted(rules, key=lambda r: (r.weight_from, r.id)):
        if rule.table_id == table.id and rule.matches_weight(weight_kg):
            return rule
    raise WeightOutOfRangeError(
        f"no pricing rule in table {table.id} covers {weight_kg} kg",
        {"table_id": table.id, "weight_kg": str(weight_kg)},
    )


def _require(value: Optional[D], name: str, rule: PricingRule) -> D:
    if value is None:
        raise PricingConfigurationError(
            f"rule {rule.id} ({rule.calculation_method.value}) has no {name}",
            {"rule_id": rule.id, "field": name},
        )
    return value


def price_for_rule(rule: PricingRule, weight_kg: D, declared_value: Optional[D] = None) -> D:
    method = rule.calculation_method
    excess = max(ZERO, weight_kg - rule.weight_from)

    if method == CalculationMethod.FIXED:
        amount = rule.price
    elif method == CalculationMethod.PER_KG:
        amount = rule.price + excess * _require(rule.price_per_kg, "price_per_kg", rule)
    elif method == CalculationMethod.PER_KG_STEP:
        per_kg = _require(rule.price_per_kg, "price_per_kg", rule)
        step = _require(rule.weight_step, "weight_step", rule)
        if step <= 0:
            raise PricingConfigurationError(
                f"rule {rule.id} has non-positive weight_step {step}", {"rule_id": rule.id}
            )
        # partial steps are billed as full steps
        steps = (excess / step).to_integral_value(rounding=ROUND_CEILING)
        amount = rule.price + steps * per_kg
    elif method == CalculationMethod.PERCENTAGE:
        if declared_value is None:
            raise MissingDeclaredValueError(
                f"rule {rule.id} prices on declared value, but none was given",
                {"rule_id": rule.id},
            )
        amount = percent_of(declared_value, rule.price)
    else:  # pragma: no cover
        raise PricingConfigurationError(f"unsupported calculation method {method!r}", {"rule_id": rule.id})

    return clamp(amount, rule.min_price, rule.max_price)


def calculate_base(
    table: PricingTable,
    rules: Iterable[PricingRule],
    weight_kg: D,
    dimensions_cm: Optional[Dimensions] = None,
    declared_value: Optional[D] = None,
) -> BasePrice:
    """
    Base transport price from the rate card.

    effective weight = max(actual, L*W*H / divisor). Unrounded; rounding
    happens once when the breakdown is assembled.
    """
    dim_weight = dimensional_weight(table, dimensions_cm)
    effective = max(weight_kg, dim_weight)

    if effective < table.min_weight_kg or (
        table.max_weight_kg is not None and effective > table.max_weight_kg
    ):
        raise WeightOutOfRangeError(
            f"{effective} kg is outside table {table.id} range "
            f"[{table.min_weight_kg}, {table.max_weight_kg if table.max_weight_kg is not None else 'inf'}]",
            {"table_id": table.id, "weight_kg": str(effective)},
        )

    rule = select_rule(table, rules, effective)
    return BasePrice(
        price=price_for_rule(rule, effective, declared_value),
        actual_weight_kg=weight_kg,
        dimensional_weight_kg=dim_weight,
        effective_weight_kg=effective,
        rule=rule,
    )
