"""
Dependency Injection Container for the Geo Proximity Service.

Constructs the store/index/registrar/query-engine graph once at startup and
hands the same instances to every request through FastAPI dependencies.
"""

import logging
from typing import Optional

from .backing_store import BackingStore, create_backing_store
from .config import Settings
from .services.point_store import PointRecordStore
from .services.proximity_query_engine import ProximityQueryEngine
from .services.registrar import Registrar
from .services.spatial_index_service import GridSpatialIndex
from .services.thread_pool_service import ThreadPoolService

logger = logging.getLogger(__name__)

_UNSET = object()


class ServiceContainer:
    """
    Owns the lifecycle of the proximity core and its collaborators.

    Services are created lazily on first access so tests can inject a
    pre-built backing store or swap a single component.
    """

    def __init__(self, settings: Settings, backing_store=_UNSET):
        self.settings = settings
        self._backing_store: Optional[BackingStore] = None
        self._backing_store_ready = False
        if backing_store is not _UNSET:
            self._backing_store = backing_store
            self._backing_store_ready = True

        self._store: Optional[PointRecordStore] = None
        self._index: Optional[GridSpatialIndex] = None
        self._registrar: Optional[Registrar] = None
        self._query_engine: Optional[ProximityQueryEngine] = None
        self._thread_pool_service: Optional[ThreadPoolService] = None

        logger.info(f"ServiceContainer initialized (env: {settings.APP_ENV})")

    @property
    def backing_store(self) -> Optional[BackingStore]:
        if not self._backing_store_ready:
            self._backing_store = create_backing_store(self.settings)
            self._backing_store_ready = True
        return self._backing_store

    @property
    def store(self) -> PointRecordStore:
        if self._store is None:
            self._store = PointRecordStore(backing_store=self.backing_store)
        return self._store

    @property
    def index(self) -> GridSpatialIndex:
        if self._index is None:
            self._index = GridSpatialIndex(cell_size_m=self.settings.GRID_CELL_SIZE_M)
        return self._index

    @property
    def registrar(self) -> Registrar:
        if self._registrar is None:
            self._registrar = Registrar(self.store, self.index)
            logger.info("Registrar created with store and index dependencies")
        return self._registrar

    @property
    def thread_pool_service(self) -> ThreadPoolService:
        if self._thread_pool_service is None:
            self._thread_pool_service = ThreadPoolService(cpu_workers=self.settings.MAX_WORKER_THREADS)
        return self._thread_pool_service

    @property
    def query_engine(self) -> ProximityQueryEngine:
        if self._query_engine is None:
            self._query_engine = ProximityQueryEngine(self.index, self.store, self.thread_pool_service)
            logger.info("ProximityQueryEngine created with index, store and thread pool")
        return self._query_engine

    def warm_up(self) -> int:
        """Hydrate the store from the backing store and rebuild the index from it."""
        loaded = self.store.load()
        indexed = self.registrar.rebuild_index()
        logger.info(
            "Proximity core warmed up",
            extra={"records_loaded": loaded, "records_indexed": indexed}
        )
        return indexed

    async def close(self):
        """Close all managed services and clean up resources."""
        services_to_close = [
            ("thread_pool_service", self._thread_pool_service),
            ("backing_store", self._backing_store),
        ]

        for service_name, service in services_to_close:
            if service is None:
                continue
            try:
                service.close()
                logger.info(f"Closed {service_name}")
            except Exception as e:
                logger.warning(f"Error closing {service_name}: {e}")

        logger.info("ServiceContainer closed all managed services")


# Global container instance (initialized at startup)
_service_container: Optional[ServiceContainer] = None


def get_service_container() -> ServiceContainer:
    """Get the global service container instance."""
    if _service_container is None:
        raise RuntimeError("Service container not initialized. Call init_service_container() first.")
    return _service_container


def init_service_container(settings: Settings, backing_store=_UNSET) -> ServiceContainer:
    """Initialize the global service container."""
    global _service_container
    _service_container = ServiceContainer(settings, backing_store=backing_store)
    logger.info("Service container initialized successfully")
    return _service_container


async def close_service_container():
    """Close the global service container and clean up all resources."""
    global _service_container
    if _service_container:
        await _service_container.close()
        _service_container = None
        logger.info("Service container closed and reset")


# FastAPI dependency functions
def get_settings_cached() -> Settings:
    """Get settings from the service container to ensure consistency."""
    return get_service_container().settings


def get_registrar() -> Registrar:
    """FastAPI dependency to get the Registrar."""
    return get_service_container().registrar


def get_point_store() -> PointRecordStore:
    """FastAPI dependency to get the PointRecordStore."""
    return get_service_container().store


def get_query_engine() -> ProximityQueryEngine:
    """FastAPI dependency to get the ProximityQueryEngine."""
    return get_service_container().query_engine


def get_thread_pool_service() -> ThreadPoolService:
    """FastAPI dependency to get the ThreadPoolService."""
    return get_service_container().thread_pool_service
