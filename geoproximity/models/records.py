"""Point record models held by the store and returned by searches"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from .coordinates import Coordinate


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PointRecord:
    """
    Immutable snapshot of an entity's location and metadata.

    Mutations never touch a PointRecord in place; the store swaps in a new
    instance so concurrent readers see either the old or the new record.
    """
    id: str
    coordinate: Coordinate
    attributes: Mapping[str, Any] = field(default_factory=dict)
    version: int = 1
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        # Private copy so callers mutating their dict cannot reach into the store
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def to_dict(self) -> Dict[str, Any]:
        """Persisted layout: (id, lat, lon, attributes, version, created_at, updated_at)"""
        return {
            "id": self.id,
            "lat": self.coordinate.latitude,
            "lon": self.coordinate.longitude,
            "attributes": dict(self.attributes),
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PointRecord":
        return cls(
            id=data["id"],
            coordinate=Coordinate(data["lat"], data["lon"]),
            attributes=data.get("attributes") or {},
            version=int(data.get("version", 1)),
            created_at=_parse_timestamp(data.get("created_at")),
            updated_at=_parse_timestamp(data.get("updated_at")),
        )


def _parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return utc_now()
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class SearchResult:
    """One hit of a radius search"""
    record: PointRecord
    distance_m: float
