"""
Spatial Index Service - latitude/longitude grid buckets

Maps every indexed entity id to exactly one grid cell and answers radius
queries with a conservative candidate superset: every id that could lie within
the radius is returned, plus possibly a few that do not. Exact distance
filtering is the caller's job (ProximityQueryEngine).

Grid geometry:
- Cells are square in degree space with an edge of ``cell_size_m`` metres of
  arc along a meridian. Rows start at the south pole, columns at -180.
- The last column may be narrower than the rest; longitude 180 folds onto -180.
- A radius query covers the exact latitude band and longitude half-width of the
  spherical cap, split at the antimeridian and widened to every longitude when
  the cap contains a pole. Each covered cell is then kept only if its lower
  bound distance (centre distance minus farthest-corner radius) is within the
  query radius.
"""

import logging
import math
import threading
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..exceptions import IndexInconsistency, IndexUpdateError, InvalidArgument
from ..models.coordinates import EARTH_RADIUS_M, Coordinate, haversine_m
from ..models.records import PointRecord

logger = logging.getLogger(__name__)

METERS_PER_DEGREE = EARTH_RADIUS_M * math.pi / 180.0

# Slack added to cap bounds and cell radii to absorb floating point error
_DEGREE_SLACK = 1e-9
_DISTANCE_SLACK_M = 1e-3

BucketKey = Tuple[int, int]
_LonRange = Tuple[int, int]


class GridSpatialIndex:
    """
    Grid bucket index over the whole sphere.

    Performance:
    - insert/remove: O(1)
    - candidates: O(covered cells) or O(occupied cells), whichever is smaller,
      plus the size of the returned set
    """

    def __init__(self, cell_size_m: float = 10_000.0):
        if isinstance(cell_size_m, bool) or not isinstance(cell_size_m, (int, float)) \
                or not math.isfinite(cell_size_m) or cell_size_m <= 0:
            raise InvalidArgument("cell_size_m", cell_size_m, "must be a positive finite number")

        step = float(cell_size_m) / METERS_PER_DEGREE
        if step > 90.0:
            raise InvalidArgument("cell_size_m", cell_size_m, "cells wider than 90 degrees are not supported")

        self.cell_size_m = float(cell_size_m)
        self._step = step
        self._n_rows = int(math.ceil(180.0 / step))
        self._n_cols = int(math.ceil(360.0 / step))

        self._cells: Dict[BucketKey, Set[str]] = {}
        self._membership: Dict[str, BucketKey] = {}
        # Keyed by (row, is_last_column): only the final column can be narrower
        self._cell_radius: Dict[Tuple[int, bool], float] = {}
        self._lock = threading.Lock()
        self._inconsistencies = 0

        logger.info(
            f"GridSpatialIndex initialized: cell {self.cell_size_m:.0f}m "
            f"({step:.5f} deg), grid {self._n_rows}x{self._n_cols}"
        )

    # ------------------------------------------------------------------
    # Bucket geometry
    # ------------------------------------------------------------------

    def bucket_key(self, coordinate: Coordinate) -> BucketKey:
        """Grid cell holding ``coordinate``."""
        return self._row_of(coordinate.latitude), self._col_of(coordinate.longitude)

    def _row_of(self, latitude: float) -> int:
        row = int(math.floor((latitude + 90.0) / self._step))
        return min(max(row, 0), self._n_rows - 1)

    def _col_of(self, longitude: float) -> int:
        if longitude >= 180.0:
            longitude = -180.0
        col = int(math.floor((longitude + 180.0) / self._step))
        return min(max(col, 0), self._n_cols - 1)

    def _col_bound(self, longitude: float) -> int:
        # Unlike _col_of, 180 stays on the eastern edge for range bounds
        col = int(math.floor((longitude + 180.0) / self._step))
        return min(max(col, 0), self._n_cols - 1)

    def _cell_bounds(self, key: BucketKey) -> Tuple[float, float, float, float]:
        row, col = key
        lat_lo = -90.0 + row * self._step
        lat_hi = min(90.0, lat_lo + self._step)
        lon_lo = -180.0 + col * self._step
        lon_hi = min(180.0, lon_lo + self._step)
        return lat_lo, lat_hi, lon_lo, lon_hi

    def _cell_center(self, key: BucketKey) -> Tuple[float, float]:
        lat_lo, lat_hi, lon_lo, lon_hi = self._cell_bounds(key)
        return (lat_lo + lat_hi) / 2.0, (lon_lo + lon_hi) / 2.0

    def _radius_of(self, key: BucketKey) -> float:
        """Distance from the cell centre to its farthest point (always a corner)."""
        row, col = key
        shape = (row, col == self._n_cols - 1)
        radius = self._cell_radius.get(shape)
        if radius is None:
            lat_lo, lat_hi, lon_lo, lon_hi = self._cell_bounds(key)
            c_lat, c_lon = (lat_lo + lat_hi) / 2.0, (lon_lo + lon_hi) / 2.0
            radius = max(
                haversine_m(c_lat, c_lon, lat, lon)
                for lat in (lat_lo, lat_hi)
                for lon in (lon_lo, lon_hi)
            )
            self._cell_radius[shape] = radius
        return radius

    def _may_contain_within(self, key: BucketKey, center: Coordinate, radius_m: float) -> bool:
        c_lat, c_lon = self._cell_center(key)
        lower_bound = haversine_m(center.latitude, center.longitude, c_lat, c_lon) - self._radius_of(key)
        return lower_bound <= radius_m + _DISTANCE_SLACK_M

    def _covering_ranges(self, center: Coordinate, radius_m: float) -> Optional[Tuple[int, int, List[_LonRange]]]:
        """
        Row range and column ranges covering the spherical cap.

        Returns None when the cap covers the whole sphere.
        """
        angular = radius_m / EARTH_RADIUS_M
        if angular >= math.pi:
            return None

        dlat = math.degrees(angular) + _DEGREE_SLACK
        lat_min = center.latitude - dlat
        lat_max = center.latitude + dlat
        row_lo = self._row_of(max(lat_min, -90.0))
        row_hi = self._row_of(min(lat_max, 90.0))

        full_circle = [(0, self._n_cols - 1)]
        if lat_max >= 90.0 or lat_min <= -90.0:
            return row_lo, row_hi, full_circle

        ratio = math.sin(angular) / math.cos(math.radians(center.latitude))
        dlon = math.degrees(math.asin(min(1.0, ratio))) + _DEGREE_SLACK
        if dlon >= 180.0:
            return row_lo, row_hi, full_circle

        lo = center.longitude - dlon
        hi = center.longitude + dlon
        if lo < -180.0:
            segments = [(lo + 360.0, 180.0), (-180.0, hi)]
        elif hi >= 180.0:
            segments = [(lo, 180.0), (-180.0, hi - 360.0)]
        else:
            segments = [(lo, hi)]

        return row_lo, row_hi, [(self._col_bound(a), self._col_bound(b)) for a, b in segments]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, entity_id: str, coordinate: Coordinate) -> BucketKey:
        """
        Add ``entity_id`` to the bucket of ``coordinate``.

        Upsert semantics: if the id already sits in another bucket, that stale
        membership is removed first.
        """
        if not isinstance(entity_id, str) or not entity_id:
            raise IndexUpdateError(str(entity_id), "entity id must be a non-empty string")
        if not isinstance(coordinate, Coordinate):
            raise IndexUpdateError(entity_id, f"expected Coordinate, got {type(coordinate).__name__}")

        key = self.bucket_key(coordinate)
        with self._lock:
            previous = self._membership.get(entity_id)
            if previous == key:
                return key
            if previous is not None:
                self._discard(entity_id, previous)
                logger.debug(f"Re-bucketing {entity_id}: {previous} -> {key}")
            self._cells.setdefault(key, set()).add(entity_id)
            self._membership[entity_id] = key
        return key

    def remove(self, entity_id: str, coordinate: Coordinate) -> bool:
        """
        Remove ``entity_id`` from the bucket derived from ``coordinate``.

        Never raises for a missing entry: the miss is reported as an index
        inconsistency, and if the id is found in a different bucket that stale
        entry is dropped.

        Returns:
            True if the id was found where the coordinate says it should be
        """
        key = self.bucket_key(coordinate)
        with self._lock:
            members = self._cells.get(key)
            if members is not None and entity_id in members:
                self._discard(entity_id, key)
                return True

            stale = self._membership.get(entity_id)
            if stale is not None:
                self._discard(entity_id, stale)

        kind = "found in a different bucket" if stale is not None else "absent on remove"
        self.report_inconsistency(IndexInconsistency(entity_id, kind, stale or key))
        return False

    def discard(self, entity_id: str) -> bool:
        """Drop ``entity_id`` wherever the membership map places it."""
        with self._lock:
            key = self._membership.get(entity_id)
            if key is None:
                return False
            self._discard(entity_id, key)
            return True

    def _discard(self, entity_id: str, key: BucketKey) -> None:
        # Caller holds self._lock
        members = self._cells.get(key)
        if members is not None:
            members.discard(entity_id)
            if not members:
                del self._cells[key]
        if self._membership.get(entity_id) == key:
            del self._membership[entity_id]

    def rebuild(self, records: Iterable[PointRecord]) -> int:
        """Replace the whole index with buckets computed from ``records``."""
        cells: Dict[BucketKey, Set[str]] = {}
        membership: Dict[str, BucketKey] = {}
        for record in records:
            key = self.bucket_key(record.coordinate)
            previous = membership.get(record.id)
            if previous is not None:
                cells[previous].discard(record.id)
            cells.setdefault(key, set()).add(record.id)
            membership[record.id] = key

        cells = {key: members for key, members in cells.items() if members}
        with self._lock:
            self._cells = cells
            self._membership = membership

        logger.info(f"Spatial index rebuilt: {len(membership)} entries in {len(cells)} buckets")
        return len(membership)

    def clear(self) -> None:
        with self._lock:
            self._cell_radius = {}
            self._cells = {}
            self._membership = {}
        logger.info("Spatial index cleared")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def candidates(self, center: Coordinate, radius_m: float) -> Set[str]:
        """
        Ids whose bucket could contain a point within ``radius_m`` of ``center``.

        A conservative superset: never omits a true match, may include ids
        that turn out to be farther away.
        """
        if isinstance(radius_m, bool) or not isinstance(radius_m, (int, float)) \
                or not math.isfinite(radius_m) or radius_m <= 0:
            raise InvalidArgument("radius_m", radius_m, "must be a positive finite number")

        covering = self._covering_ranges(center, float(radius_m))
        result: Set[str] = set()

        with self._lock:
            if covering is None:
                for members in self._cells.values():
                    result.update(members)
                return result

            row_lo, row_hi, col_ranges = covering
            covered = (row_hi - row_lo + 1) * sum(b - a + 1 for a, b in col_ranges)

            if covered > len(self._cells):
                keys = [
                    key for key in self._cells
                    if row_lo <= key[0] <= row_hi and any(a <= key[1] <= b for a, b in col_ranges)
                ]
            else:
                keys = [
                    (row, col)
                    for row in range(row_lo, row_hi + 1)
                    for a, b in col_ranges
                    for col in range(a, b + 1)
                    if (row, col) in self._cells
                ]

            for key in keys:
                if self._may_contain_within(key, center, radius_m):
                    result.update(self._cells[key])

        logger.debug(
            f"Candidates for ({center.latitude}, {center.longitude}) r={radius_m}m: "
            f"{len(result)} ids from {len(keys)} buckets"
        )
        return result

    def contains(self, entity_id: str) -> bool:
        return entity_id in self._membership

    def bucket_of(self, entity_id: str) -> Optional[BucketKey]:
        return self._membership.get(entity_id)

    def ids(self) -> Set[str]:
        with self._lock:
            return set(self._membership)

    def report_inconsistency(self, inconsistency: IndexInconsistency) -> None:
        """Record an index/store divergence as an observability signal."""
        with self._lock:
            self._inconsistencies += 1
        logger.warning(
            inconsistency.message,
            extra={
                "entity_id": inconsistency.entity_id,
                "inconsistency": inconsistency.kind,
                "bucket": inconsistency.bucket,
            }
        )

    def __len__(self) -> int:
        return len(self._membership)

    def get_stats(self) -> Dict[str, Any]:
        """Get spatial index statistics"""
        return {
            "index_type": "lat/lon grid",
            "cell_size_m": self.cell_size_m,
            "cell_size_deg": round(self._step, 6),
            "grid": [self._n_rows, self._n_cols],
            "entries": len(self._membership),
            "buckets": len(self._cells),
            "inconsistencies": self._inconsistencies,
        }
