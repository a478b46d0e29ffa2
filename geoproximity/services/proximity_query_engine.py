"""
Proximity Query Engine

Radius search over the spatial index:
1. ask the index for a conservative candidate superset
2. read each candidate's authoritative record from the store
3. keep exact great-circle matches within the radius
4. order by distance (ties by id) and apply the limit

The store is the correctness backstop: index entries are hints only, so an id
the store no longer knows is skipped and reported, never returned.
"""

import asyncio
import heapq
import logging
import math
import threading
import time
from typing import Any, List, Optional

from ..exceptions import IndexInconsistency, InvalidArgument, SearchCancelled
from ..models.coordinates import Coordinate
from ..models.records import SearchResult
from .point_store import PointRecordStore
from .spatial_index_service import GridSpatialIndex
from .thread_pool_service import ThreadPoolService

logger = logging.getLogger(__name__)

# Candidates scanned between two cancellation checks
CANCEL_CHECK_INTERVAL = 256


def _result_order(result: SearchResult):
    return result.distance_m, result.record.id


def validate_query(center: Any, radius_m: Any, limit: Any = None) -> None:
    """Raise InvalidArgument unless the query arguments are well formed."""
    if not isinstance(center, Coordinate):
        raise InvalidArgument("center", center, "must be a Coordinate")
    if isinstance(radius_m, bool) or not isinstance(radius_m, (int, float)):
        raise InvalidArgument("radius_m", radius_m, "must be a number")
    if not math.isfinite(radius_m) or radius_m <= 0:
        raise InvalidArgument("radius_m", radius_m, "must be positive and finite")
    if limit is not None:
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InvalidArgument("limit", limit, "must be an integer")
        if limit <= 0:
            raise InvalidArgument("limit", limit, "must be positive")


class ProximityQueryEngine:
    def __init__(self, index: GridSpatialIndex, store: PointRecordStore,
                 thread_pool: Optional[ThreadPoolService] = None):
        self.index = index
        self.store = store
        self.thread_pool = thread_pool

    def search(self, center: Coordinate, radius_m: float, limit: Optional[int] = None,
               cancel_event: Optional[threading.Event] = None) -> List[SearchResult]:
        """
        Find every record within ``radius_m`` metres of ``center``.

        Args:
            center: Query centre
            radius_m: Search radius in metres, must be > 0
            limit: Optional maximum number of results
            cancel_event: Set by the caller to abort; partial results are discarded

        Returns:
            SearchResults in non-decreasing distance order (ties by id).
            An empty list is a valid result, not an error.

        Raises:
            InvalidArgument: malformed center, radius or limit
            SearchCancelled: cancel_event was set before the search finished
        """
        validate_query(center, radius_m, limit)
        started = time.perf_counter()

        candidates = self.index.candidates(center, radius_m)
        hits: List[SearchResult] = []
        for scanned, entity_id in enumerate(candidates):
            if cancel_event is not None and scanned % CANCEL_CHECK_INTERVAL == 0 and cancel_event.is_set():
                raise SearchCancelled(scanned)

            record = self.store.find(entity_id)
            if record is None:
                self.index.report_inconsistency(
                    IndexInconsistency(entity_id, "indexed id missing from store", self.index.bucket_of(entity_id))
                )
                continue

            distance = center.distance_to(record.coordinate)
            if distance <= radius_m:
                hits.append(SearchResult(record=record, distance_m=distance))

        if cancel_event is not None and cancel_event.is_set():
            raise SearchCancelled(len(candidates))

        if limit is not None and limit < len(hits):
            hits = heapq.nsmallest(limit, hits, key=_result_order)
        else:
            hits.sort(key=_result_order)

        logger.debug(
            f"Search ({center.latitude}, {center.longitude}) r={radius_m}m: "
            f"{len(hits)} hits / {len(candidates)} candidates",
            extra={
                "coordinates": center.to_dict(),
                "radius_m": radius_m,
                "response_time_ms": round((time.perf_counter() - started) * 1000, 3),
            }
        )
        return hits

    async def search_async(self, center: Coordinate, radius_m: float,
                           limit: Optional[int] = None) -> List[SearchResult]:
        """
        Run search() on the CPU thread pool.

        Cancelling the awaiting task signals the worker thread to stop early.
        """
        validate_query(center, radius_m, limit)
        cancel_event = threading.Event()
        try:
            if self.thread_pool is not None:
                return await self.thread_pool.run_cpu_task(self.search, center, radius_m, limit, cancel_event)
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self.search, center, radius_m, limit, cancel_event)
        except asyncio.CancelledError:
            cancel_event.set()
            logger.info("Search cancelled by caller", extra={"coordinates": center.to_dict(), "radius_m": radius_m})
            raise
