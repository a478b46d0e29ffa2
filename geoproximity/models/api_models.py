"""Request/response models for the HTTP layer."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .records import PointRecord, SearchResult

# Request models

class CoordinatesIn(BaseModel):
    lat: float
    lon: float


class RegistrationRequest(BaseModel):
    """Unknown top-level fields are kept and stored as entity attributes."""
    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)
    email: Optional[str] = None
    password: Optional[str] = None
    coordinates: CoordinatesIn
    attributes: Dict[str, Any] = Field(default_factory=dict)


class RelocateRequest(BaseModel):
    coordinates: CoordinatesIn
    expected_version: Optional[int] = None


class SearchRequest(BaseModel):
    coordinates: CoordinatesIn
    radius: Optional[float] = None
    limit: Optional[int] = None

# Response models

class RegistrationResponse(BaseModel):
    id: str
    version: int


class EntityResponse(BaseModel):
    id: str
    coordinates: CoordinatesIn
    attributes: Dict[str, Any]
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: PointRecord) -> "EntityResponse":
        return cls(
            id=record.id,
            coordinates=CoordinatesIn(lat=record.coordinate.latitude, lon=record.coordinate.longitude),
            attributes=dict(record.attributes),
            version=record.version,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class SearchHit(BaseModel):
    id: str
    coordinates: CoordinatesIn
    attributes: Dict[str, Any]
    distance_m: float

    @classmethod
    def from_result(cls, result: SearchResult) -> "SearchHit":
        record = result.record
        return cls(
            id=record.id,
            coordinates=CoordinatesIn(lat=record.coordinate.latitude, lon=record.coordinate.longitude),
            attributes=dict(record.attributes),
            distance_m=round(result.distance_m, 3),
        )


class SearchEnvelope(BaseModel):
    status: int
    message: str
    data: List[SearchHit]


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None

