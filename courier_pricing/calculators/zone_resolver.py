from __future__ import annotations

import re
from typing import Iterable, List, Optional, Tuple

from ..domain.models import PricingZone
from ..errors import AmbiguousZoneError, PricingConfigurationError, UnsupportedDestinationError, ValidationError

_COUNTRY_RE = re.compile(r"^[A-Z]{2}$")


def normalize_country(country_code: str) -> str:
    cc = (country_code or "").strip().upper()
    if not _COUNTRY_RE.match(cc):
        raise ValidationError(
            f"country code must be ISO 3166-1 alpha-2, got {country_code!r}",
            {"field": "destination.country_code"},
        )
    return cc


def normalize_postal(postal_code: Optional[str]) -> str:
    """Upper case, spaces and dashes removed: "00-001", "00 001" and "00001" are one code."""
    return re.sub(r"[\s-]", "", postal_code or "").upper()


def _match_length(zone: PricingZone, postal: str) -> Optional[int]:
    """
    None  -> zone does not match the postal code
    0     -> zone has no postal restriction
    n > 0 -> length of the longest pattern that matched
    """
    if not zone.postal_code_patterns:
        return 0
    best: Optional[int] = None
    for pattern in zone.postal_code_patterns:
        try:
            hit = re.search(pattern, postal)
        except re.error as e:
            raise PricingConfigurationError(
                f"zone {zone.code} has an invalid postal pattern {pattern!r}: {e}",
                {"zone_code": zone.code},
            ) from e
        if hit and (best is None or len(pattern) > best):
            best = len(pattern)
    return best


def resolve_zone(country_code: str, postal_code: Optional[str], zones: Iterable[PricingZone]) -> PricingZone:
    """
    Map (country, postal) to exactly one active zone.

    Tie-break: local before national before international, then the
    longest matching postal pattern. Anything still tied is a data error.
    """
    cc = normalize_country(country_code)
    postal = normalize_postal(postal_code)

    candidates: List[Tuple[int, int, PricingZone]] = []
    for zone in zones:
        if not zone.is_active or cc not in zone.countries:
            continue
        length = _match_length(zone, postal)
        if length is None:
            continue
        candidates.append((zone.zone_type.specificity, -length, zone))

    if not candidates:
        raise UnsupportedDestinationError(
            f"no pricing zone covers {cc} {postal}".strip(),
            {"country_code": cc, "postal_code": postal},
        )

    candidates.sort(key=lambda c: (c[0], c[1]))
    best = candidates[0]
    tied = [c[2].code for c in candidates if (c[0], c[1]) == (best[0], best[1])]
    if len(tied) > 1:
        raise AmbiguousZoneError(
            f"destination {cc} {postal} matches zones {sorted(tied)} with equal specificity",
            {"country_code": cc, "postal_code": postal, "zones": sorted(tied)},
        )
    return best[2]


def find_zone(zone_code: str, zones: Iterable[PricingZone]) -> PricingZone:
    code = (zone_code or "").strip()
    for zone in zones:
        if zone.code == code and zone.is_active:
            return zone
    raise UnsupportedDestinationError(f"unknown or inactive zone {code!r}", {"zone_code": code})
