"""
Thread Pool Service

Dedicated thread pool for CPU-bound proximity work (candidate enumeration and
distance filtering) so large searches never block the event loop.
"""

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

import psutil

logger = logging.getLogger(__name__)


class ThreadPoolService:
    """
    Lazily created CPU thread pool with explicit lifecycle management.
    """

    def __init__(self, cpu_workers: Optional[int] = None):
        """
        Args:
            cpu_workers: Number of threads for CPU-bound tasks (default: CPU cores)
        """
        self.cpu_cores = os.cpu_count() or 4
        self.cpu_workers = cpu_workers or self.cpu_cores
        self._cpu_pool: Optional[ThreadPoolExecutor] = None

        logger.info(f"ThreadPoolService configured: CPU workers={self.cpu_workers}")

    @property
    def cpu_pool(self) -> ThreadPoolExecutor:
        """Get or create the CPU-bound thread pool"""
        if self._cpu_pool is None:
            self._cpu_pool = ThreadPoolExecutor(
                max_workers=self.cpu_workers,
                thread_name_prefix="geo-cpu"
            )
            logger.info(f"CPU thread pool created with {self.cpu_workers} workers")
        return self._cpu_pool

    async def run_cpu_task(self, func: Callable, *args) -> Any:
        """Execute ``func(*args)`` in the CPU thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.cpu_pool, func, *args)

    def get_pool_stats(self) -> dict:
        """Get thread pool statistics for monitoring"""
        return {
            "cpu_pool": {
                "max_workers": self.cpu_workers,
                "active": self._cpu_pool is not None,
            },
            "system_info": {
                "cpu_cores": self.cpu_cores,
                "memory_gb": round(psutil.virtual_memory().total / (1024**3), 2),
            },
        }

    def close(self):
        """Shutdown the thread pool and cleanup resources"""
        if self._cpu_pool is not None:
            self._cpu_pool.shutdown(wait=True, cancel_futures=True)
            self._cpu_pool = None
            logger.info("CPU thread pool shutdown completed")
