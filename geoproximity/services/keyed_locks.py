"""
Per-key lock registry.

Serialises mutations of the same entity while leaving unrelated entities free
to proceed in parallel. Locks are reference counted and dropped once no
thread holds or waits on them, so the registry does not grow with the dataset.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self):
        self.lock = threading.Lock()
        self.refs = 0


class KeyedLocks:
    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _acquire_entry(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.refs += 1
            return entry

    def _release_entry(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.refs -= 1
            if entry.refs == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        entry = self._acquire_entry(key)
        try:
            with entry.lock:
                yield
        finally:
            self._release_entry(key, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
