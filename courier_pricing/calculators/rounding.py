from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

D = Decimal
ZERO = D("0")
HUNDRED = D("100")

# ISO 4217 exponents that differ from the default of 2
_MINOR_UNITS = {
    "BHD": 3,
    "CLP": 0,
    "HUF": 2,
    "ISK": 0,
    "JOD": 3,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "OMR": 3,
    "TND": 3,
    "VND": 0,
}


def minor_units(currency: str) -> int:
    return _MINOR_UNITS.get(currency.upper(), 2)


def round_money(amount: D, currency: str) -> D:
    """Quantize to the currency's minor unit, half-up. Only used when assembling output."""
    exp = D(1).scaleb(-minor_units(currency))
    return amount.quantize(exp, rounding=ROUND_HALF_UP)


def clamp(amount: D, minimum: Optional[D] = None, maximum: Optional[D] = None) -> D:
    # min first, then max
    if minimum is not None and amount < minimum:
        amount = minimum
    if maximum is not None and amount > maximum:
        amount = maximum
    return amount


def percent_of(amount: D, pct: D) -> D:
    return amount * pct / HUNDRED
