"""
Registrar - transactional writes to the store/index pair

Every mutation is serialised per entity id and applied store-first on
registration/relocation and index-first on deregistration. A failure after a
partial write is compensated so that a successful call always leaves store and
index consistent, and a failed call leaves them as they were.
"""

import logging
import uuid
from typing import Any, Mapping, Optional, Sequence, Union

from ..exceptions import BackingStoreError, IndexUpdateError, InvalidCoordinate, NotFound
from ..models.records import PointRecord
from ..models.coordinates import Coordinate
from .keyed_locks import KeyedLocks
from .point_store import PointRecordStore
from .spatial_index_service import GridSpatialIndex

logger = logging.getLogger(__name__)

CoordinateInput = Union[Coordinate, Sequence[float], Mapping[str, Any]]


def to_coordinate(value: CoordinateInput) -> Coordinate:
    """Accept a Coordinate, a (lat, lon) pair or a {"lat", "lon"} mapping."""
    if isinstance(value, Coordinate):
        return value
    if isinstance(value, Mapping):
        return Coordinate.from_dict(value)
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return Coordinate.construct(value[0], value[1])
    raise InvalidCoordinate(None, None, f"unsupported coordinate input {type(value).__name__}")


class Registrar:
    def __init__(self, store: PointRecordStore, index: GridSpatialIndex,
                 locks: Optional[KeyedLocks] = None):
        self.store = store
        self.index = index
        self.locks = locks or KeyedLocks()

    def register(self, coordinate: CoordinateInput, attributes: Optional[Mapping[str, Any]] = None) -> str:
        """
        Register a new entity and return its freshly issued id.

        Raises:
            InvalidCoordinate: coordinate out of range or malformed
            IndexUpdateError: index rejected the entry (store write rolled back)
            BackingStoreError: durable write failed (nothing was written)
        """
        coordinate = to_coordinate(coordinate)
        entity_id = uuid.uuid4().hex

        with self.locks.hold(entity_id):
            self.store.put(entity_id, coordinate, attributes or {}, expected_version=0)
            try:
                self.index.insert(entity_id, coordinate)
            except Exception as e:
                logger.error(f"Index insert failed for {entity_id}, rolling back store entry: {e}")
                self._undo_put(entity_id)
                if isinstance(e, IndexUpdateError):
                    raise
                raise IndexUpdateError(entity_id, str(e)) from e

        logger.info(
            f"Registered {entity_id}",
            extra={"entity_id": entity_id, "coordinates": coordinate.to_dict()}
        )
        return entity_id

    def deregister(self, entity_id: str) -> None:
        """
        Remove an entity from index and store.

        Raises:
            NotFound: the id is not registered
            BackingStoreError: durable delete failed (the index entry is put back)
        """
        with self.locks.hold(entity_id):
            record = self.store.get(entity_id)
            self.index.remove(entity_id, record.coordinate)
            try:
                removed = self.store.remove(entity_id)
            except Exception:
                logger.error(f"Store removal failed for {entity_id}, re-indexing it")
                self.index.insert(entity_id, record.coordinate)
                raise
            if not removed:
                raise NotFound(entity_id)

        logger.info(f"Deregistered {entity_id}", extra={"entity_id": entity_id})

    def relocate(self, entity_id: str, coordinate: CoordinateInput,
                 expected_version: Optional[int] = None) -> int:
        """
        Move an entity to a new coordinate, re-bucketing it in the index.

        Returns:
            The record's new version

        Raises:
            InvalidCoordinate: coordinate out of range or malformed
            NotFound: the id is not registered
            VersionConflict: expected_version does not match the stored version
            IndexUpdateError: index rejected the move (store change rolled back)
        """
        coordinate = to_coordinate(coordinate)

        with self.locks.hold(entity_id):
            previous = self.store.get(entity_id)
            version = self.store.update(entity_id, coordinate, expected_version=expected_version)
            try:
                self.index.insert(entity_id, coordinate)
            except Exception as e:
                logger.error(f"Index update failed for {entity_id}, restoring v{previous.version}: {e}")
                self._undo_update(previous)
                if isinstance(e, IndexUpdateError):
                    raise
                raise IndexUpdateError(entity_id, str(e)) from e

        logger.info(
            f"Relocated {entity_id} to v{version}",
            extra={"entity_id": entity_id, "coordinates": coordinate.to_dict()}
        )
        return version

    def _undo_put(self, entity_id: str) -> None:
        try:
            self.store.remove(entity_id)
        except BackingStoreError as e:
            self.store.evict(entity_id)
            logger.critical(
                f"Could not delete {entity_id} from the backing store during rollback: {e}",
                extra={"entity_id": entity_id}
            )

    def _undo_update(self, previous: PointRecord) -> None:
        try:
            self.store.restore(previous)
        except BackingStoreError as e:
            self.store.restore(previous, durable=False)
            logger.critical(
                f"Could not restore {previous.id} v{previous.version} in the backing store during rollback: {e}",
                extra={"entity_id": previous.id}
            )

    def rebuild_index(self) -> int:
        """Rebuild the whole index from a full store scan. Returns the entry count."""
        count = self.index.rebuild(self.store.all())
        logger.info(f"Index rebuilt from store: {count} entries")
        return count
