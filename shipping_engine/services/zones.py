"""Shipping zones and destination-to-zone resolution.

A zone groups destinations by country code, optionally narrowed by region
(state/province) codes and postal-code patterns. Matching is conjunctive:
the country must be listed, and when a zone lists regions or postal
patterns the destination must satisfy those too. The most specific
constraint satisfied decides the zone's rank.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from fnmatch import fnmatchcase
from typing import Optional

from shipping_engine.services.clock import utcnow

# Country code that matches every destination ("rest of the world")
ANY_COUNTRY = "*"

_RANGE_RE = re.compile(r"^(\d+)\s*-\s*(\d+)$")


class MatchLevel(IntEnum):
    """How specifically a zone matched a destination; higher wins."""
    WILDCARD = 0
    COUNTRY = 1
    REGION = 2
    POSTAL = 3


@dataclass(frozen=True)
class Destination:
    """Where a parcel is going."""
    country_code: str
    region: Optional[str] = None
    postal_code: Optional[str] = None

    def __post_init__(self):
        if not self.country_code or not self.country_code.strip():
            raise ValueError("Country code is required")


@dataclass
class ShippingZone:
    """Named group of destinations sharing shipping method eligibility."""
    id: str
    name: str
    countries: list[str] = field(default_factory=list)
    regions: list[str] = field(default_factory=list)
    postal_codes: list[str] = field(default_factory=list)
    description: str = ""
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def match(self, destination: Destination) -> Optional[MatchLevel]:
        """Return the match level for a destination, or None if it does not match."""
        country = _norm(destination.country_code)
        countries = {_norm(c) for c in self.countries}
        if country in countries:
            level = MatchLevel.COUNTRY
        elif ANY_COUNTRY in countries:
            level = MatchLevel.WILDCARD
        else:
            return None

        if self.regions:
            region = _norm(destination.region or "")
            if not region or region not in {_norm(r) for r in self.regions}:
                return None
            level = MatchLevel.REGION

        if self.postal_codes:
            postal = _norm_postal(destination.postal_code or "")
            if not postal or not any(
                postal_matches(pattern, postal) for pattern in self.postal_codes
            ):
                return None
            level = MatchLevel.POSTAL

        return level


def _norm(code: str) -> str:
    return code.strip().upper()


def _norm_postal(code: str) -> str:
    return code.replace(" ", "").upper()


def postal_matches(pattern: str, postal_code: str) -> bool:
    """Match a postal code against an exact code, a glob ("001*") or a numeric range ("00100-00199")."""
    pattern = _norm_postal(pattern)
    postal_code = _norm_postal(postal_code)
    m = _RANGE_RE.match(pattern)
    if m:
        if not postal_code.isdigit():
            return False
        low, high = m.group(1), m.group(2)
        if len(postal_code) != len(low):
            return False
        return int(low) <= int(postal_code) <= int(high)
    if "*" in pattern or "?" in pattern:
        return fnmatchcase(postal_code, pattern)
    return postal_code == pattern


class ZoneResolver:
    """Maps destinations to the active zones that serve them."""

    def __init__(self, zones):
        self._zones = zones  # ZoneRepository

    def resolve_zones(
        self,
        country_code: str,
        region: Optional[str] = None,
        postal_code: Optional[str] = None,
    ) -> list[ShippingZone]:
        """Active zones matching the destination, most specific first.

        An empty list means nothing ships there; it is not an error.
        """
        return self.resolve(Destination(country_code, region, postal_code))

    def resolve(self, destination: Destination) -> list[ShippingZone]:
        matched: list[tuple[MatchLevel, int, ShippingZone]] = []
        for position, zone in enumerate(self._zones.list_zones()):
            if not zone.is_active:
                continue
            level = zone.match(destination)
            if level is not None:
                matched.append((level, position, zone))
        # Most specific first; stored order breaks ties
        matched.sort(key=lambda m: (-m[0], m[1]))
        return [zone for _, _, zone in matched]
