from dataclasses import replace
from decimal import Decimal

import pytest

from courier_pricing.engine.context import Destination
from courier_pricing.errors import UnsupportedDestinationError

D = Decimal


def test_quotes_sorted_cheapest_first(plain_engine, simple_request):
    result = plain_engine.compare_all_carriers(simple_request)

    assert [(q.carrier_code, q.total_price) for q in result.quotes] == [
        ("DPD", D("25.83")),
        ("INPOST", D("28.29")),
        ("DHL", D("31.73")),
    ]
    assert result.best_price.carrier_code == "DPD"
    assert result.savings_potential() == D("5.90")


def test_incapable_carrier_is_skipped_not_raised(plain_engine, simple_request):
    result = plain_engine.compare_all_carriers(simple_request)
    assert [(s.carrier_code, s.reason_code) for s in result.skipped] == [("MEEST", "CAPACITY_EXCEEDED")]


def test_requested_carrier_is_ignored(plain_engine, simple_request):
    result = plain_engine.compare_all_carriers(replace(simple_request, carrier_code="DHL"))
    assert len(result.quotes) == 3


def test_include_and_exclude_filters(plain_engine, simple_request):
    only = plain_engine.compare_all_carriers(simple_request, include_carriers=["DHL", "INPOST"])
    assert {q.carrier_code for q in only.quotes} == {"DHL", "INPOST"}
    assert only.skipped == ()

    without = plain_engine.compare_all_carriers(simple_request, exclude_carriers=["DPD", "MEEST"])
    assert [q.carrier_code for q in without.quotes] == ["INPOST", "DHL"]


def test_missing_tables_and_zones_reported_per_carrier(plain_engine, simple_request):
    result = plain_engine.compare_all_carriers(replace(simple_request, destination=Destination("DE", "10115")))
    assert result.quotes == ()
    assert result.best_price is None
    assert result.savings_potential() is None
    reasons = {s.carrier_code: s.reason_code for s in result.skipped}
    assert reasons == {
        "DHL": "NO_PRICING_AVAILABLE",
        "DPD": "ZONE_NOT_SUPPORTED",
        "INPOST": "ZONE_NOT_SUPPORTED",
        "MEEST": "ZONE_NOT_SUPPORTED",
    }


def test_unresolvable_destination_raises(plain_engine, simple_request):
    with pytest.raises(UnsupportedDestinationError):
        plain_engine.compare_all_carriers(replace(simple_request, destination=Destination("US", "10001")))


def test_invalid_promo_code_recorded_per_carrier(engine, simple_request):
    result = engine.compare_all_carriers(replace(simple_request, promo_code="BOGUS"))
    assert result.quotes == ()
    assert {s.reason_code for s in result.skipped} == {"INVALID_PROMO_CODE", "CAPACITY_EXCEEDED"}


def test_single_worker_gives_same_result(make_engine, catalog_no_promos, test_settings, simple_request):
    serial = make_engine(catalog_no_promos, settings=test_settings.model_copy(update={"PRICING_MAX_WORKERS": 1}))
    parallel = make_engine(catalog_no_promos)
    assert serial.compare_all_carriers(simple_request) == parallel.compare_all_carriers(simple_request)


def test_comparison_helpers(plain_engine, simple_request):
    result = plain_engine.compare_all_carriers(simple_request)
    assert result.most_expensive.carrier_code == "DHL"
    # (25.83 + 28.29 + 31.73) / 3 = 28.6166...
    assert result.average_price() == D("28.62")
    assert result.price_for("INPOST").total_price == D("28.29")
    assert result.price_for("MEEST") is None


def test_comparison_helpers_without_quotes(plain_engine, simple_request):
    result = plain_engine.compare_all_carriers(replace(simple_request, destination=Destination("DE", "10115")))
    assert result.most_expensive is None
    assert result.average_price() is None
    assert result.price_for("DHL") is None


def test_average_needs_one_currency(plain_engine, simple_request):
    result = plain_engine.compare_all_carriers(simple_request)
    mixed = replace(result, quotes=result.quotes[:-1] + (replace(result.quotes[-1], currency="EUR"),))
    assert mixed.average_price() is None
    assert mixed.savings_potential() is None
