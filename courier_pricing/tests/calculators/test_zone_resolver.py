import pytest

from courier_pricing.calculators.zone_resolver import find_zone, normalize_postal, resolve_zone
from courier_pricing.domain.models import PricingZone, ZoneType
from courier_pricing.errors import AmbiguousZoneError, UnsupportedDestinationError, ValidationError


def _zone(code, zone_type, countries, patterns=(), active=True):
    return PricingZone(
        code=code,
        zone_type=zone_type,
        countries=frozenset(countries),
        postal_code_patterns=tuple(patterns),
        is_active=active,
    )


def test_resolve_country_without_patterns(zones):
    assert resolve_zone("PL", "00-001", zones).code == "NAT_PL"


def test_resolve_normalizes_country_case_and_whitespace(zones):
    assert resolve_zone(" pl ", None, zones).code == "NAT_PL"


def test_local_zone_beats_national():
    zones = [
        _zone("NAT_PL", ZoneType.NATIONAL, ["PL"]),
        _zone("LOCAL_WAW", ZoneType.LOCAL, ["PL"], [r"^0[0-5]"]),
    ]
    assert resolve_zone("PL", "00-950", zones).code == "LOCAL_WAW"
    assert resolve_zone("PL", "80-001", zones).code == "NAT_PL"


def test_longest_pattern_wins_within_same_type():
    zones = [
        _zone("WAW", ZoneType.LOCAL, ["PL"], [r"^0"]),
        _zone("WAW_CENTER", ZoneType.LOCAL, ["PL"], [r"^00"]),
    ]
    assert resolve_zone("PL", "00-001", zones).code == "WAW_CENTER"


def test_equal_specificity_is_ambiguous():
    zones = [
        _zone("A", ZoneType.NATIONAL, ["PL"]),
        _zone("B", ZoneType.NATIONAL, ["PL"]),
    ]
    with pytest.raises(AmbiguousZoneError) as exc:
        resolve_zone("PL", "00-001", zones)
    assert exc.value.meta["zones"] == ["A", "B"]


def test_inactive_zone_ignored():
    zones = [
        _zone("OLD", ZoneType.LOCAL, ["PL"], active=False),
        _zone("NAT_PL", ZoneType.NATIONAL, ["PL"]),
    ]
    assert resolve_zone("PL", "00-001", zones).code == "NAT_PL"


def test_postal_pattern_not_matching_excludes_zone():
    zones = [_zone("LOCAL_WAW", ZoneType.LOCAL, ["PL"], [r"^0[0-5]"])]
    with pytest.raises(UnsupportedDestinationError):
        resolve_zone("PL", "80-001", zones)


def test_unknown_country_unsupported(zones):
    with pytest.raises(UnsupportedDestinationError) as exc:
        resolve_zone("US", "10001", zones)
    assert exc.value.code == "UNSUPPORTED_DESTINATION"


@pytest.mark.parametrize("bad", ["", "POL", "P1", None])
def test_invalid_country_code(zones, bad):
    with pytest.raises(ValidationError):
        resolve_zone(bad, "00-001", zones)


def test_resolution_is_deterministic(zones):
    first = resolve_zone("DE", "10115", zones)
    for _ in range(5):
        assert resolve_zone("DE", "10115", list(reversed(zones))) == first


def test_find_zone_by_code(zones):
    assert find_zone("EU_WEST", zones).code == "EU_WEST"
    with pytest.raises(UnsupportedDestinationError):
        find_zone("NOPE", zones)


@pytest.mark.parametrize("postal", ["00-001", "00 001", "00001", " 00-001 ", "00 - 001"])
def test_postal_separators_ignored(postal):
    zones = [
        _zone("NAT_PL", ZoneType.NATIONAL, ["PL"]),
        _zone("LOCAL_WAW", ZoneType.LOCAL, ["PL"], [r"^0[0-5]\d{3}$"]),
    ]
    assert normalize_postal(postal) == "00001"
    assert resolve_zone("PL", postal, zones).code == "LOCAL_WAW"


def test_postal_normalized_to_upper_case():
    assert normalize_postal("sw1a 1aa") == "SW1A1AA"
    assert normalize_postal(None) == ""
