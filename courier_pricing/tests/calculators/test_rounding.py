from decimal import Decimal

from courier_pricing.calculators.rounding import clamp, minor_units, round_money

D = Decimal


def test_half_up_to_cents():
    assert round_money(D("19.311"), "PLN") == D("19.31")
    assert round_money(D("5.215"), "PLN") == D("5.22")
    assert str(round_money(D("0"), "EUR")) == "0.00"


def test_zero_and_three_decimal_currencies():
    assert minor_units("jpy") == 0
    assert round_money(D("1234.5"), "JPY") == D("1235")
    assert round_money(D("1.2345"), "KWD") == D("1.235")


def test_clamp_order():
    assert clamp(D("5"), D("8"), D("6")) == D("6")
    assert clamp(D("5"), None, None) == D("5")
