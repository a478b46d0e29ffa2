"""Models package for the Geo Proximity Service."""

from .api_models import (
    CoordinatesIn, EntityResponse, ErrorResponse, RegistrationRequest, RegistrationResponse,
    RelocateRequest, SearchEnvelope, SearchHit, SearchRequest
)
from .coordinates import EARTH_RADIUS_M, Coordinate, haversine_m
from .records import PointRecord, SearchResult

__all__ = [
    "EARTH_RADIUS_M", "Coordinate", "haversine_m", "PointRecord", "SearchResult",
    "CoordinatesIn", "RegistrationRequest", "RelocateRequest", "SearchRequest",
    "RegistrationResponse", "EntityResponse", "SearchHit", "SearchEnvelope", "ErrorResponse",
]
