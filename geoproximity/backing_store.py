"""
Backing Store - durable write-through target for the point record store

The in-memory PointRecordStore is authoritative for serving; a backing store
only makes records survive restarts. Redis keeps one hash field per record
under a single key so a full scan on startup is a single HGETALL.
"""
import json
import logging
import os
import threading
from typing import Dict, Iterator, Optional, Protocol

import redis

from .exceptions import BackingStoreError, ConfigurationError
from .models.records import PointRecord

logger = logging.getLogger(__name__)


class BackingStore(Protocol):
    """Durable record storage consumed by PointRecordStore"""

    def save(self, record: PointRecord) -> None: ...

    def delete(self, entity_id: str) -> None: ...

    def load_all(self) -> Iterator[PointRecord]: ...

    def close(self) -> None: ...


class InMemoryBackingStore:
    """
    Dict-backed store for development and tests.

    NOT durable and not shared between processes.
    """

    def __init__(self):
        self._rows: Dict[str, str] = {}
        self._lock = threading.Lock()

    def save(self, record: PointRecord) -> None:
        payload = json.dumps(record.to_dict(), default=str)
        with self._lock:
            self._rows[record.id] = payload

    def delete(self, entity_id: str) -> None:
        with self._lock:
            self._rows.pop(entity_id, None)

    def load_all(self) -> Iterator[PointRecord]:
        with self._lock:
            rows = list(self._rows.values())
        for payload in rows:
            yield PointRecord.from_dict(json.loads(payload))

    def close(self) -> None:
        pass

    def __len__(self) -> int:
        return len(self._rows)


class RedisBackingStore:
    """Process-safe durable record storage using Redis hashes"""

    def __init__(self, redis_url: Optional[str] = None, key: str = "geoproximity:records",
                 app_env: Optional[str] = None, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url or os.getenv('REDIS_URL') or os.getenv('REDIS_PRIVATE_URL') or 'redis://localhost:6379'
        self.key = key
        self.app_env = app_env or os.getenv('APP_ENV', 'development')
        self._redis_client = client
        self._connection_tested = client is not None

    def _get_redis_client(self) -> redis.Redis:
        """
        Get Redis client with lazy initialization and connection testing.

        No in-memory fallback: connection errors surface as BackingStoreError.
        """
        if self._redis_client is None:
            try:
                self._redis_client = redis.from_url(
                    self.redis_url,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True
                )
                if not self._connection_tested:
                    self._redis_client.ping()
                    self._connection_tested = True
                    logger.info(f"Redis connection established: {self.redis_url.split('@')[-1] if '@' in self.redis_url else self.redis_url}")
            except redis.RedisError as e:
                self._redis_client = None
                logger.error(f"Redis connection failed: {e}")
                if self.app_env == 'production':
                    logger.critical("FATAL: Redis connection failed in production environment")
                raise BackingStoreError("connect", str(e)) from e
        return self._redis_client

    def save(self, record: PointRecord) -> None:
        client = self._get_redis_client()
        try:
            client.hset(self.key, record.id, json.dumps(record.to_dict(), default=str))
        except redis.RedisError as e:
            logger.error(f"Redis save failed for {record.id}: {e}")
            raise BackingStoreError("save", str(e), entity_id=record.id) from e

    def delete(self, entity_id: str) -> None:
        client = self._get_redis_client()
        try:
            client.hdel(self.key, entity_id)
        except redis.RedisError as e:
            logger.error(f"Redis delete failed for {entity_id}: {e}")
            raise BackingStoreError("delete", str(e), entity_id=entity_id) from e

    def load_all(self) -> Iterator[PointRecord]:
        client = self._get_redis_client()
        try:
            rows = client.hgetall(self.key)
        except redis.RedisError as e:
            raise BackingStoreError("load", str(e)) from e

        for entity_id, payload in rows.items():
            try:
                yield PointRecord.from_dict(json.loads(payload))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable record {entity_id}: {e}")

    def close(self) -> None:
        if self._redis_client is not None:
            try:
                self._redis_client.close()
            except redis.RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis_client = None


def create_backing_store(settings) -> Optional[BackingStore]:
    """Build the backing store selected by ``settings.BACKING_STORE``."""
    kind = getattr(settings, 'BACKING_STORE', 'memory')
    if kind == "none":
        logger.info("No backing store configured - records live in memory only")
        return None
    if kind == "memory":
        logger.info("Using in-memory backing store (NOT durable)")
        return InMemoryBackingStore()
    if kind == "redis":
        logger.info(f"Using Redis backing store under key {settings.GEO_REDIS_KEY}")
        return RedisBackingStore(
            redis_url=settings.REDIS_URL,
            key=settings.GEO_REDIS_KEY,
            app_env=settings.APP_ENV,
        )
    raise ConfigurationError("BACKING_STORE", f"unknown backing store '{kind}'")
