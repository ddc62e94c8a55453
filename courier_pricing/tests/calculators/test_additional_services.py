from decimal import Decimal

import pytest

from courier_pricing.calculators.additional_services import calculate_services
from courier_pricing.domain.models import (
    AdditionalService,
    AdditionalServicePriceOverride,
    ServicePricingType,
    ValueTier,
    WeightTier,
)
from courier_pricing.errors import (
    MissingDeclaredValueError,
    PricingConfigurationError,
    UnknownServiceError,
    WeightOutOfRangeError,
)

D = Decimal


@pytest.fixture
def services():
    return [
        AdditionalService(id="S_COD", carrier_code="INPOST", code="COD", name="Cash on delivery",
                          pricing_type=ServicePricingType.FIXED, default_price=D("3.50")),
        AdditionalService(id="S_INS", carrier_code="INPOST", code="INSURANCE", name="Insurance",
                          pricing_type=ServicePricingType.PERCENTAGE, percentage_rate=D("1"),
                          min_price=D("2.00"), max_price=D("50.00")),
        AdditionalService(id="S_SAT", carrier_code="INPOST", code="SATURDAY",
                          pricing_type=ServicePricingType.TIERED),
        AdditionalService(id="S_VAL", carrier_code="INPOST", code="VALUABLES",
                          pricing_type=ServicePricingType.TIERED),
        AdditionalService(id="S_LBL", carrier_code="INPOST", code="LABEL",
                          pricing_type=ServicePricingType.PER_PACKAGE, default_price=D("1.20")),
        AdditionalService(id="S_OLD", carrier_code="INPOST", code="SMS", default_price=D("0.50"),
                          pricing_type=ServicePricingType.FIXED, is_active=False),
        AdditionalService(id="S_DHL", carrier_code="DHL", code="ROD", default_price=D("7"),
                          pricing_type=ServicePricingType.FIXED),
    ]


@pytest.fixture
def overrides():
    return [
        AdditionalServicePriceOverride(service_id="S_COD", table_id="INPOST_NAT_STD", price=D("3.00")),
        AdditionalServicePriceOverride(
            service_id="S_SAT",
            table_id="INPOST_NAT_STD",
            weight_tiers=(
                WeightTier(weight_from=D("0"), weight_to=D("5"), price=D("9.00")),
                WeightTier(weight_from=D("5"), weight_to=D("10"), price=D("14.00")),
            ),
        ),
        AdditionalServicePriceOverride(
            service_id="S_VAL",
            table_id="INPOST_NAT_STD",
            value_tiers=(
                ValueTier(value_from=D("0"), value_to=D("1000"), price=D("5.00")),
                ValueTier(value_from=D("1000"), rate=D("0.8")),
            ),
        ),
        AdditionalServicePriceOverride(service_id="S_COD", table_id="OTHER_TABLE", price=D("1.00")),
    ]


def _calc(table, codes, services, overrides, declared=None, weight="3.0", packages=1):
    return calculate_services(table, codes, declared, D(weight), services, overrides, packages)


def test_override_beats_default(inpost_table, services, overrides):
    out = _calc(inpost_table, ["COD"], services, overrides)
    assert out.total == D("3.00")
    assert out.charges[0].code == "COD"


def test_percentage_with_clamp(inpost_table, services, overrides):
    assert _calc(inpost_table, ["INSURANCE"], services, overrides, declared=D("500")).total == D("5")
    # 1% of 100 = 1.00 -> min 2.00
    assert _calc(inpost_table, ["INSURANCE"], services, overrides, declared=D("100")).total == D("2.00")
    # 1% of 10000 = 100 -> max 50.00
    assert _calc(inpost_table, ["INSURANCE"], services, overrides, declared=D("10000")).total == D("50.00")


def test_percentage_requires_declared_value(inpost_table, services, overrides):
    with pytest.raises(MissingDeclaredValueError):
        _calc(inpost_table, ["INSURANCE"], services, overrides)


def test_weight_tiers(inpost_table, services, overrides):
    assert _calc(inpost_table, ["SATURDAY"], services, overrides, weight="4.99").total == D("9.00")
    assert _calc(inpost_table, ["SATURDAY"], services, overrides, weight="5").total == D("14.00")
    with pytest.raises(WeightOutOfRangeError):
        _calc(inpost_table, ["SATURDAY"], services, overrides, weight="12")


def test_value_tiers_flat_and_rate(inpost_table, services, overrides):
    assert _calc(inpost_table, ["VALUABLES"], services, overrides, declared=D("999")).total == D("5.00")
    assert _calc(inpost_table, ["VALUABLES"], services, overrides, declared=D("2000")).total == D("16")


def test_per_package(inpost_table, services, overrides):
    assert _calc(inpost_table, ["LABEL"], services, overrides, packages=3).total == D("3.60")


def test_codes_case_insensitive_and_deduplicated(inpost_table, services, overrides):
    out = _calc(inpost_table, ["cod", "LABEL", "COD"], services, overrides)
    assert [c.code for c in out.charges] == ["COD", "LABEL"]
    assert out.total == D("4.20")


def test_unknown_inactive_or_foreign_service(inpost_table, services, overrides):
    for code in ("NOPE", "SMS", "ROD"):
        with pytest.raises(UnknownServiceError):
            _calc(inpost_table, [code], services, overrides)


def test_tiered_without_tiers_is_configuration_error(inpost_table, services):
    with pytest.raises(PricingConfigurationError):
        _calc(inpost_table, ["SATURDAY"], services, [])


def test_no_services_requested(inpost_table, services, overrides):
    out = _calc(inpost_table, [], services, overrides)
    assert out.total == D("0")
    assert out.charges == ()
