from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from courier_pricing.core.settings import Settings
from courier_pricing.domain.models import (
    CalculationMethod,
    Carrier,
    CustomerDiscountType,
    CustomerPricing,
    Dimensions,
    PricingRule,
    PricingTable,
    PricingZone,
    PromotionDiscountType,
    PromotionalPricing,
    ZoneType,
)
from courier_pricing.engine.context import Destination, PriceCalculationRequest
from courier_pricing.engine.pricing_engine import PricingEngine
from courier_pricing.storage.catalog import Catalog

D = Decimal

SAMPLE_CATALOG = Path(__file__).resolve().parents[1] / "data" / "catalog.sample.yaml"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now():
    return utc(2025, 4, 1, 12, 0, 0)


@pytest.fixture
def test_settings():
    return Settings(PRICING_MAX_BATCH_SIZE=100, PRICING_MAX_WORKERS=4, PRICING_LOG_JSON=False)


@pytest.fixture
def zones():
    return (
        PricingZone(code="NAT_PL", zone_type=ZoneType.NATIONAL, countries=frozenset({"PL"})),
        PricingZone(code="EU_WEST", zone_type=ZoneType.INTERNATIONAL, countries=frozenset({"DE", "FR"})),
    )


@pytest.fixture
def carriers():
    return (
        Carrier(
            code="INPOST",
            max_weight_kg=D("25"),
            max_dimensions_cm=Dimensions(D("64"), D("38"), D("41")),
            supported_zones=frozenset({"NAT_PL"}),
        ),
        Carrier(code="DHL", max_weight_kg=D("31.5"), supported_zones=frozenset({"NAT_PL", "EU_WEST"})),
        Carrier(code="DPD", max_weight_kg=D("31.5"), supported_zones=frozenset({"NAT_PL"})),
        Carrier(code="MEEST", max_weight_kg=D("2"), supported_zones=frozenset({"NAT_PL"})),
    )


def _table(table_id: str, carrier: str, divisor: str = "5000", **kw) -> PricingTable:
    base = dict(
        id=table_id,
        carrier_code=carrier,
        zone_code="NAT_PL",
        service_type="standard",
        version=1,
        currency="PLN",
        base_price=D("15.00"),
        min_weight_kg=D("0.1"),
        max_weight_kg=D("25"),
        volumetric_divisor=D(divisor),
        tax_rate_percent=D("23"),
        effective_from=utc(2025, 1, 1),
    )
    base.update(kw)
    return PricingTable(**base)


@pytest.fixture
def inpost_table():
    return _table("INPOST_NAT_STD", "INPOST")


@pytest.fixture
def inpost_rules():
    return (
        PricingRule(
            id="R1",
            table_id="INPOST_NAT_STD",
            weight_from=D("0.1"),
            weight_to=D("1.0"),
            calculation_method=CalculationMethod.FIXED,
            price=D("15.00"),
        ),
        PricingRule(
            id="R2",
            table_id="INPOST_NAT_STD",
            weight_from=D("1.0"),
            weight_to=D("5.0"),
            calculation_method=CalculationMethod.PER_KG,
            price=D("18.00"),
            price_per_kg=D("2.50"),
        ),
    )


@pytest.fixture
def acme_agreement():
    return CustomerPricing(
        id="CP_ACME",
        customer_id="ACME",
        base_pricing_table_id="INPOST_NAT_STD",
        discount_type=CustomerDiscountType.PERCENTAGE,
        base_discount_percent=D("10"),
        minimum_order_value=D("0"),
        effective_from=utc(2025, 1, 1),
        priority_level=1,
    )


@pytest.fixture
def save5():
    return PromotionalPricing(
        id="P_SAVE5",
        name="SAVE5",
        promo_code="SAVE5",
        discount_type=PromotionDiscountType.FIXED_AMOUNT,
        discount_value=D("5.00"),
        valid_from=utc(2025, 1, 1),
        valid_until=utc(2025, 12, 31, 23, 59, 59),
        priority=10,
        stackable=False,
    )


@pytest.fixture
def vol10():
    return PromotionalPricing(
        id="P_VOL10",
        name="VOL10",
        discount_type=PromotionDiscountType.PERCENTAGE,
        discount_value=D("10"),
        valid_from=utc(2025, 1, 1),
        valid_until=utc(2025, 12, 31, 23, 59, 59),
        priority=5,
        stackable=True,
    )


@pytest.fixture
def catalog(zones, carriers, inpost_table, inpost_rules, acme_agreement, save5, vol10):
    """Scenario catalog: INPOST rate card from the worked example plus three competitors."""
    tables = (
        inpost_table,
        _table("DHL_NAT_STD", "DHL", divisor="4000", max_weight_kg=D("31.5")),
        _table("DPD_NAT_STD", "DPD", divisor="6000", max_weight_kg=D("31.5")),
        _table("MEEST_NAT_STD", "MEEST"),
    )
    rules = inpost_rules + (
        PricingRule(
            id="DHL_R1",
            table_id="DHL_NAT_STD",
            weight_from=D("0.1"),
            calculation_method=CalculationMethod.PER_KG,
            price=D("20.00"),
            price_per_kg=D("2.00"),
        ),
        PricingRule(
            id="DPD_R1",
            table_id="DPD_NAT_STD",
            weight_from=D("0.1"),
            calculation_method=CalculationMethod.PER_KG_STEP,
            price=D("16.50"),
            price_per_kg=D("1.50"),
            weight_step=D("1"),
        ),
        PricingRule(
            id="MEEST_R1",
            table_id="MEEST_NAT_STD",
            weight_from=D("0.1"),
            calculation_method=CalculationMethod.FIXED,
            price=D("9.99"),
        ),
    )
    return Catalog(
        zones=zones,
        carriers=carriers,
        tables=tables,
        rules=rules,
        customer_pricing=(acme_agreement,),
        promotions=(save5, vol10),
    )


@pytest.fixture
def catalog_no_promos(catalog):
    return replace(catalog, promotions=())


@pytest.fixture
def make_engine(test_settings, fixed_now):
    def _make(cat: Catalog, **kwargs) -> PricingEngine:
        kwargs.setdefault("settings", test_settings)
        kwargs.setdefault("clock", lambda: fixed_now)
        return PricingEngine.from_catalog(cat, **kwargs)

    return _make


@pytest.fixture
def engine(make_engine, catalog):
    return make_engine(catalog)


@pytest.fixture
def plain_engine(make_engine, catalog_no_promos):
    """Same rate cards, no promotions: totals are base + 23% tax."""
    return make_engine(catalog_no_promos)


@pytest.fixture
def scenario_request():
    return PriceCalculationRequest(
        carrier_code="INPOST",
        destination=Destination("PL", "00-001"),
        weight_kg=D("3.0"),
        dimensions_cm=Dimensions(D("20"), D("20"), D("10")),
        service_type="standard",
        customer_id="ACME",
        promo_code="SAVE5",
    )


@pytest.fixture
def simple_request():
    return PriceCalculationRequest(
        carrier_code="INPOST",
        destination=Destination("PL", "00-001"),
        weight_kg=D("3.0"),
    )


@pytest.fixture
def sample_engine(test_settings, fixed_now):
    # Uses the shipped YAML catalog (also schema + cross validation)
    return PricingEngine.from_yaml_file(SAMPLE_CATALOG, settings=test_settings, clock=lambda: fixed_now)
