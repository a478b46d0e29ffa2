"""Coordinate value type on the WGS84 mean sphere"""
import math
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from ..exceptions import InvalidCoordinate

# IUGG mean Earth radius, the sphere used for geography-typed distances
EARTH_RADIUS_M = 6_371_008.8


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two points given in degrees."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2.0) ** 2
    # Clamp against floating drift near antipodes
    a = min(1.0, max(0.0, a))
    return 2.0 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def _as_degrees(value: Any, latitude: Any, longitude: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidCoordinate(latitude, longitude, "values must be numbers")
    value = float(value)
    if not math.isfinite(value):
        raise InvalidCoordinate(latitude, longitude, "values must be finite")
    return value


@dataclass(frozen=True)
class Coordinate:
    """
    Point in WGS84 geographic coordinates (degrees).

    A Coordinate outside latitude [-90, 90] / longitude [-180, 180], or with
    NaN/inf components, is never constructed.
    """
    latitude: float
    longitude: float

    def __post_init__(self):
        lat = _as_degrees(self.latitude, self.latitude, self.longitude)
        lon = _as_degrees(self.longitude, self.latitude, self.longitude)
        if not -90.0 <= lat <= 90.0:
            raise InvalidCoordinate(self.latitude, self.longitude, "latitude must be within [-90, 90]")
        if not -180.0 <= lon <= 180.0:
            raise InvalidCoordinate(self.latitude, self.longitude, "longitude must be within [-180, 180]")
        object.__setattr__(self, "latitude", lat)
        object.__setattr__(self, "longitude", lon)

    @classmethod
    def construct(cls, lat: Any, lon: Any) -> "Coordinate":
        return cls(lat, lon)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Coordinate":
        """Build from a {"lat", "lon"} or {"latitude", "longitude"} mapping."""
        if not isinstance(data, Mapping):
            raise InvalidCoordinate(None, None, "coordinates must be a mapping")
        lat = data.get("lat", data.get("latitude"))
        lon = data.get("lon", data.get("longitude"))
        if lat is None or lon is None:
            raise InvalidCoordinate(lat, lon, "both lat and lon are required")
        return cls(lat, lon)

    def distance_to(self, other: "Coordinate") -> float:
        """
        Great-circle distance to ``other`` in metres (haversine).

        Zero whenever both name the same physical point, which is broader than
        equality: (90, 0) and (90, 50) are both the north pole, and (0, 180)
        and (0, -180) are one point on the antimeridian, yet neither pair compares
        equal.
        Equal coordinates short-circuit to exactly 0.0.
        """
        if self == other:
            return 0.0
        return haversine_m(self.latitude, self.longitude, other.latitude, other.longitude)

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.latitude, "lon": self.longitude}
