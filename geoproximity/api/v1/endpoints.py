import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from ...auth import get_current_user
from ...config import Settings
from ...dependencies import (
    get_point_store, get_query_engine, get_registrar, get_settings_cached, get_thread_pool_service
)
from ...exceptions import (
    BackingStoreError, IndexUpdateError, InvalidArgument, InvalidCoordinate,
    NotFound, VersionConflict
)
from ...models import (
    Coordinate, EntityResponse, RegistrationRequest, RegistrationResponse,
    RelocateRequest, SearchEnvelope, SearchHit, SearchRequest, SearchResult
)
from ...services.point_store import PointRecordStore
from ...services.proximity_query_engine import ProximityQueryEngine
from ...services.registrar import Registrar
from ...services.thread_pool_service import ThreadPoolService

logger = logging.getLogger(__name__)

# Create rate limiter for endpoints
limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix="/v1", tags=["proximity"])

# Registration fields that are never handed to the proximity core
_CREDENTIAL_FIELDS = {"password"}


def search_envelope(results: List[SearchResult]) -> JSONResponse:
    """
    Wrap search results in the public envelope.

    A non-empty result is 200/"found"; an empty one is 400/"not found" with an
    empty list. Validation failures never reach this function.
    """
    hits = [SearchHit.from_result(result) for result in results]
    if hits:
        envelope = SearchEnvelope(status=200, message="found", data=hits)
    else:
        envelope = SearchEnvelope(status=400, message="not found", data=[])
    return JSONResponse(status_code=envelope.status, content=envelope.model_dump(mode="json"))


def _attributes_from(body: RegistrationRequest) -> Dict[str, Any]:
    attributes: Dict[str, Any] = dict(body.attributes)
    attributes.update({k: v for k, v in (body.model_extra or {}).items() if k not in _CREDENTIAL_FIELDS})
    attributes["name"] = body.name
    if body.email is not None:
        attributes["email"] = body.email
    return attributes


async def _run_search(engine: ProximityQueryEngine, settings: Settings, lat: float, lon: float,
                      radius: Optional[float], limit: Optional[int]) -> JSONResponse:
    radius_m = radius if radius is not None else settings.DEFAULT_SEARCH_RADIUS_M
    if limit is not None and limit > settings.MAX_SEARCH_LIMIT:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"limit must not exceed {settings.MAX_SEARCH_LIMIT}"
        )

    try:
        center = Coordinate.construct(lat, lon)
        results = await engine.search_async(center, radius_m, limit)
    except InvalidCoordinate as e:
        logger.warning(f"Invalid coordinates in search: {e}")
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Invalid coordinates: {e.reason}")
    except InvalidArgument as e:
        logger.warning(f"Invalid search argument: {e}")
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)

    logger.info(
        f"Search returned {len(results)} results",
        extra={"coordinates": {"lat": lat, "lon": lon}, "radius_m": radius_m}
    )
    return search_envelope(results)


@router.post("/search", summary="Find entities within a radius of a point")
@limiter.limit("120/minute")
async def search_nearby(
    request: Request,
    body: SearchRequest,
    engine: ProximityQueryEngine = Depends(get_query_engine),
    settings: Settings = Depends(get_settings_cached),
) -> JSONResponse:
    """Radius search; ``radius`` defaults to the configured 20km when omitted."""
    return await _run_search(engine, settings, body.coordinates.lat, body.coordinates.lon, body.radius, body.limit)


@router.get("/search", summary="Find entities within a radius via query parameters")
@limiter.limit("120/minute")
async def search_nearby_simple(
    request: Request,
    lat: float,
    lon: float,
    radius: Optional[float] = None,
    limit: Optional[int] = None,
    engine: ProximityQueryEngine = Depends(get_query_engine),
    settings: Settings = Depends(get_settings_cached),
) -> JSONResponse:
    return await _run_search(engine, settings, lat, lon, radius, limit)


@router.post("/entities", status_code=status.HTTP_201_CREATED, response_model=RegistrationResponse)
@limiter.limit("30/minute")
async def register_entity(
    request: Request,
    body: RegistrationRequest,
    registrar: Registrar = Depends(get_registrar),
    store: PointRecordStore = Depends(get_point_store),
    thread_pool: ThreadPoolService = Depends(get_thread_pool_service),
    user: Optional[Dict[str, Any]] = Depends(get_current_user),
) -> RegistrationResponse:
    """
    Register an entity at a coordinate. Credential fields are dropped here.

    Store and index writes may block on backing I/O, so they run in the
    worker pool rather than on the event loop.
    """
    try:
        entity_id = await thread_pool.run_cpu_task(
            registrar.register, body.coordinates.model_dump(), _attributes_from(body)
        )
    except InvalidCoordinate as e:
        logger.warning(f"Invalid coordinates in registration: {e}")
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Invalid coordinates: {e.reason}")
    except BackingStoreError as e:
        logger.error(f"Backing store unavailable during registration: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable")
    except IndexUpdateError as e:
        logger.error(f"Index rejected registration: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Registration failed")

    return RegistrationResponse(id=entity_id, version=store.get(entity_id).version)


@router.get("/entities/{entity_id}", response_model=EntityResponse)
@limiter.limit("240/minute")
async def get_entity(
    request: Request,
    entity_id: str,
    store: PointRecordStore = Depends(get_point_store),
) -> EntityResponse:
    try:
        return EntityResponse.from_record(store.get(entity_id))
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.put("/entities/{entity_id}/coordinates", response_model=RegistrationResponse)
@limiter.limit("60/minute")
async def relocate_entity(
    request: Request,
    entity_id: str,
    body: RelocateRequest,
    registrar: Registrar = Depends(get_registrar),
    thread_pool: ThreadPoolService = Depends(get_thread_pool_service),
    user: Optional[Dict[str, Any]] = Depends(get_current_user),
) -> RegistrationResponse:
    try:
        version = await thread_pool.run_cpu_task(
            registrar.relocate, entity_id, body.coordinates.model_dump(), body.expected_version
        )
    except InvalidCoordinate as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Invalid coordinates: {e.reason}")
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except VersionConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except BackingStoreError as e:
        logger.error(f"Backing store unavailable during relocation: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable")
    except IndexUpdateError as e:
        logger.error(f"Index rejected relocation: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Relocation failed")

    return RegistrationResponse(id=entity_id, version=version)


@router.delete("/entities/{entity_id}")
@limiter.limit("30/minute")
async def deregister_entity(
    request: Request,
    entity_id: str,
    registrar: Registrar = Depends(get_registrar),
    thread_pool: ThreadPoolService = Depends(get_thread_pool_service),
    user: Optional[Dict[str, Any]] = Depends(get_current_user),
) -> Dict[str, Any]:
    try:
        await thread_pool.run_cpu_task(registrar.deregister, entity_id)
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except BackingStoreError as e:
        logger.error(f"Backing store unavailable during deregistration: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable")

    return {"id": entity_id, "deleted": True}
