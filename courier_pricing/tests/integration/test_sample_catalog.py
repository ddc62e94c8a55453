from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from courier_pricing.domain.models import Dimensions, VolumePeriod
from courier_pricing.engine.context import Destination, PriceCalculationRequest
from courier_pricing.engine.pricing_engine import PricingEngine
from courier_pricing.errors import NoPricingAvailableError
from courier_pricing.repositories import StaticVolumeStats
from courier_pricing.storage.catalog import load_catalog

D = Decimal

SAMPLE = Path(__file__).resolve().parents[2] / "data" / "catalog.sample.yaml"


@pytest.fixture
def gdansk_request():
    return PriceCalculationRequest(
        carrier_code="INPOST",
        destination=Destination("PL", "80-001"),
        weight_kg=D("3.0"),
    )


def test_warsaw_postcode_resolves_to_local_zone(sample_engine, gdansk_request):
    req = replace(gdansk_request, carrier_code="DHL", destination=Destination("PL", "00-001"))
    with pytest.raises(NoPricingAvailableError) as exc:
        sample_engine.calculate(req)
    assert exc.value.meta["zone_code"] == "LOCAL_WAW"


@pytest.mark.parametrize("postal", ["00-001", "00 001", "00001"])
def test_postcode_spellings_resolve_alike(sample_engine, gdansk_request, postal):
    req = replace(gdansk_request, destination=Destination("PL", postal))
    assert sample_engine.compare_all_carriers(req).zone_code == "LOCAL_WAW"


def test_compare_all_carriers(sample_engine, gdansk_request):
    result = sample_engine.compare_all_carriers(gdansk_request)

    assert result.zone_code == "NAT_PL"
    assert [(q.carrier_code, q.total_price) for q in result.quotes] == [
        ("INPOST", D("25.46")),
        ("DPD", D("25.83")),
        ("DHL", D("26.69")),
        ("UPS", D("36.65")),
    ]
    assert [(s.carrier_code, s.reason_code) for s in result.skipped] == [("MEEST", "ZONE_NOT_SUPPORTED")]
    assert result.savings_potential() == D("11.19")
    assert result.zone_name == "Poland"
    assert result.most_expensive.carrier_name == "UPS"
    assert result.price_for("DPD").carrier_name == "DPD Polska"
    assert result.average_price() == D("28.66")


def test_expired_table_version_used_for_past_dates(sample_engine, gdansk_request):
    b = sample_engine.calculate(replace(gdansk_request, at=datetime(2024, 6, 15, tzinfo=timezone.utc)))
    assert b.table_id == "INPOST_NAT_PL_STD_V1"
    assert b.base_price == D("22.00")
    assert b.promotional_discount == D("0.00")
    assert b.total_price == D("27.06")


def test_contract_customer_with_voucher(sample_engine, gdansk_request):
    req = replace(
        gdansk_request,
        dimensions_cm=Dimensions(D("20"), D("20"), D("10")),
        customer_id="ACME",
        promo_code="save5",
    )
    b = sample_engine.calculate(req)
    assert b.table_id == "INPOST_NAT_PL_STD_V2"
    assert b.customer_discount == D("2.30")
    assert b.promotional_discount == D("5.00")
    assert b.total_price == D("19.31")


def test_table_level_service_override(sample_engine, gdansk_request):
    b = sample_engine.calculate(replace(gdansk_request, additional_service_codes=("COD", "SATURDAY")))
    assert [(s.code, s.amount) for s in b.services] == [("COD", D("3.00")), ("SATURDAY", D("9.00"))]
    assert b.subtotal == D("35.00")


def test_volume_customer(test_settings, fixed_now, gdansk_request):
    stats = StaticVolumeStats({("BIGSHOP", VolumePeriod.MONTHLY): 120})
    engine = PricingEngine.from_yaml_file(SAMPLE, volume_stats=stats, settings=test_settings, clock=lambda: fixed_now)

    b = engine.calculate(replace(gdansk_request, carrier_code="DHL", customer_id="BIGSHOP"))
    assert b.base_price == D("21.70")
    # 5% of 21.70 is 1.085: shown as 1.09, but the net keeps the exact 20.615
    assert b.customer_discount == D("1.09")
    assert b.net_amount == D("20.62")
    assert b.total_price == D("25.36")
    assert b.tax_amount == D("4.74")


def test_volume_customer_below_first_tier(test_settings, fixed_now, gdansk_request):
    stats = StaticVolumeStats({("BIGSHOP", VolumePeriod.MONTHLY): 99})
    engine = PricingEngine.from_yaml_file(SAMPLE, volume_stats=stats, settings=test_settings, clock=lambda: fixed_now)

    b = engine.calculate(replace(gdansk_request, carrier_code="DHL", customer_id="BIGSHOP"))
    assert b.customer_discount == D("0.00")
    assert b.discounts == ()
    assert b.total_price == D("26.69")


def test_catalog_service_types_loaded_lower_case(tmp_path, test_settings, fixed_now, gdansk_request):
    path = tmp_path / "catalog.yaml"
    path.write_text(
        SAMPLE.read_text(encoding="utf-8").replace("service_type: express", "service_type: Express"),
        encoding="utf-8",
    )
    catalog = load_catalog(path)
    assert "express" in {t.service_type for t in catalog.tables}

    engine = PricingEngine.from_catalog(catalog, settings=test_settings, clock=lambda: fixed_now)
    out = engine.calculate(replace(gdansk_request, carrier_code="DHL", service_type="Express"))
    assert out.table_id == "DHL_NAT_PL_EXP_V1"
