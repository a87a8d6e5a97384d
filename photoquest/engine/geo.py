"""
photoquest.engine.geo — Geofence Proximity
===========================================

Pure functions: haversine great-circle distance on a spherical Earth
(R = 6371 km) and the inclusive radius check used when a photo is
submitted.  Invalid coordinates never reach these functions because
:class:`Coordinate` refuses to be built from them.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True, slots=True)
class Coordinate:
    latitude: float
    longitude: float
    accuracy: float | None = None

    def __post_init__(self) -> None:
        for name in ("latitude", "longitude"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int | float):
                raise ValueError(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite, got {value!r}")
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")
        if self.accuracy is not None and (
            not math.isfinite(self.accuracy) or self.accuracy < 0
        ):
            raise ValueError(f"accuracy must be a non-negative number, got {self.accuracy!r}")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Coordinate:
        """Build from a ``{"latitude", "longitude", "accuracy"?}`` sample."""
        try:
            lat = raw["latitude"]
            lon = raw["longitude"]
        except KeyError as exc:
            raise ValueError(f"coordinate is missing {exc.args[0]!r}") from exc
        return cls(latitude=lat, longitude=lon, accuracy=raw.get("accuracy"))


@dataclass(frozen=True, slots=True)
class ProximityResult:
    inside: bool
    distance_m: float


def distance_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between *a* and *b* in kilometres."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Rounding can push h a hair past 1 for antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def is_within_radius(user: Coordinate, target: Coordinate, radius_m: float) -> bool:
    """True when *user* is at most *radius_m* metres from *target*."""
    return distance_km(user, target) * 1000 <= radius_m


def proximity(user: Coordinate, target: Coordinate, radius_m: float) -> ProximityResult:
    meters = distance_km(user, target) * 1000
    return ProximityResult(inside=meters <= radius_m, distance_m=meters)
