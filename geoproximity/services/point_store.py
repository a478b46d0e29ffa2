"""
Point Record Store

Authoritative in-memory map of entity id to its current PointRecord. Reads are
lock-free dictionary lookups of immutable records; writes swap whole records
(copy-on-write) under a short internal lock, so readers never observe a
half-applied mutation.

When a backing store is configured, writes go to it first (write-ahead) and
only then become visible in memory. Backing I/O runs outside the internal
lock so a slow backing store never serialises writes to unrelated ids. Writers
to the same id are expected to be serialised by the caller (the Registrar's
per-id locks); the version recheck before the swap rejects a lost update.
"""
import logging
import threading
from dataclasses import replace
from typing import Any, Dict, Iterator, Mapping, Optional

from ..backing_store import BackingStore
from ..exceptions import NotFound, VersionConflict
from ..models.coordinates import Coordinate
from ..models.records import PointRecord, utc_now

logger = logging.getLogger(__name__)


class PointRecordStore:
    def __init__(self, backing_store: Optional[BackingStore] = None):
        self._records: Dict[str, PointRecord] = {}
        self._write_lock = threading.Lock()
        self._backing = backing_store

        logger.info(f"PointRecordStore initialized (backing store: {type(backing_store).__name__ if backing_store else 'none'})")

    def put(self, entity_id: str, coordinate: Coordinate, attributes: Optional[Mapping[str, Any]] = None,
            expected_version: Optional[int] = None) -> int:
        """
        Insert or fully replace a record.

        Args:
            entity_id: Record identity
            coordinate: New coordinate
            attributes: New attributes (replaces the old mapping entirely)
            expected_version: Optimistic check; 0 means the id must not exist yet

        Returns:
            The version assigned: 1 for a new id, previous version + 1 otherwise
        """
        current = self._records.get(entity_id)
        self._check_version(entity_id, current, expected_version)
        record = self._next_record(entity_id, current, coordinate, attributes if attributes is not None else {})
        self._commit(record, current)
        return record.version

    def update(self, entity_id: str, coordinate: Coordinate, attributes: Optional[Mapping[str, Any]] = None,
               expected_version: Optional[int] = None) -> int:
        """Update-only variant of put(); raises NotFound for a missing id."""
        current = self._records.get(entity_id)
        if current is None:
            raise NotFound(entity_id)
        self._check_version(entity_id, current, expected_version)
        record = self._next_record(entity_id, current, coordinate, attributes)
        self._commit(record, current)
        return record.version

    def _check_version(self, entity_id: str, current: Optional[PointRecord],
                       expected_version: Optional[int]) -> None:
        if expected_version is None:
            return
        actual = current.version if current is not None else 0
        if actual != expected_version:
            raise VersionConflict(entity_id, expected_version, actual)

    def _next_record(self, entity_id: str, current: Optional[PointRecord], coordinate: Coordinate,
                     attributes: Optional[Mapping[str, Any]]) -> PointRecord:
        now = utc_now()
        if current is None:
            return PointRecord(
                id=entity_id,
                coordinate=coordinate,
                attributes=attributes or {},
                version=1,
                created_at=now,
                updated_at=now,
            )
        return replace(
            current,
            coordinate=coordinate,
            attributes=attributes if attributes is not None else current.attributes,
            version=current.version + 1,
            updated_at=now,
        )

    def _commit(self, record: PointRecord, previous: Optional[PointRecord]) -> None:
        """Write ``record`` ahead, then swap it in if ``previous`` is still the current record."""
        if self._backing is not None:
            self._backing.save(record)

        with self._write_lock:
            latest = self._records.get(record.id)
            if latest is previous:
                self._records[record.id] = record

        if latest is not previous:
            # Another writer swapped first; put its state back in the backing store
            self._persist_current(record.id, latest)
            raise VersionConflict(
                record.id,
                previous.version if previous is not None else 0,
                latest.version if latest is not None else 0,
            )

        logger.debug(f"Stored {record.id} v{record.version} at {record.coordinate.to_dict()}")

    def _persist_current(self, entity_id: str, latest: Optional[PointRecord]) -> None:
        if self._backing is None:
            return
        if latest is None:
            self._backing.delete(entity_id)
        else:
            self._backing.save(latest)

    def restore(self, record: PointRecord, durable: bool = True) -> None:
        """
        Swap a previously read record back in verbatim (compensating rollback).

        With ``durable=False`` only memory is restored; used when the backing
        store itself is failing during a rollback.
        """
        if durable and self._backing is not None:
            self._backing.save(record)
        with self._write_lock:
            self._records[record.id] = record
        logger.info(f"Restored {record.id} to v{record.version}")

    def get(self, entity_id: str) -> PointRecord:
        record = self._records.get(entity_id)
        if record is None:
            raise NotFound(entity_id)
        return record

    def find(self, entity_id: str) -> Optional[PointRecord]:
        """Like get() but returns None for a missing id."""
        return self._records.get(entity_id)

    def remove(self, entity_id: str) -> bool:
        current = self._records.get(entity_id)
        if current is None:
            return False
        if self._backing is not None:
            self._backing.delete(entity_id)

        with self._write_lock:
            latest = self._records.get(entity_id)
            if latest is current:
                del self._records[entity_id]

        if latest is None:
            return False
        if latest is not current:
            self._persist_current(entity_id, latest)
            raise VersionConflict(entity_id, current.version, latest.version)

        logger.debug(f"Removed {entity_id} from store")
        return True

    def evict(self, entity_id: str) -> bool:
        """Drop ``entity_id`` from memory only, leaving the backing store untouched."""
        with self._write_lock:
            removed = self._records.pop(entity_id, None)
        if removed is not None:
            logger.info(f"Evicted {entity_id} from memory")
        return removed is not None

    def all(self) -> Iterator[PointRecord]:
        """
        Lazily yield every record from a point-in-time snapshot.

        Each call starts a fresh scan. Used for index rebuilds only, never on
        the query path.
        """
        with self._write_lock:
            snapshot = list(self._records.values())
        for record in snapshot:
            yield record

    def load(self) -> int:
        """Hydrate memory from the backing store. Returns the number of records loaded."""
        if self._backing is None:
            return 0

        loaded = 0
        with self._write_lock:
            for record in self._backing.load_all():
                self._records[record.id] = record
                loaded += 1

        logger.info(f"Loaded {loaded} records from backing store")
        return loaded

    def clear(self) -> None:
        """Drop every in-memory record. The backing store is left untouched."""
        with self._write_lock:
            self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._records

    def get_stats(self) -> Dict[str, Any]:
        return {
            "records": len(self._records),
            "backing_store": type(self._backing).__name__ if self._backing else None,
        }
