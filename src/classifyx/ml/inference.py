"""Worker pool that keeps blocking session calls off the event loop.

Requests take a slot from an ``asyncio.Semaphore`` sized by
``CLASSIFYX_MAX_CONCURRENT`` and then run on a thread pool of the same size.
A request that cannot get a slot within ``CLASSIFYX_QUEUE_TIMEOUT`` seconds
raises ``TimeoutError``, which the API maps to 503.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from classifyx.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Bounded executor for model uploads and predictions."""

    def __init__(self, settings: Settings) -> None:
        self._timeout = settings.queue_timeout
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="classifyx-worker",
        )
        self._waiting = 0
        self._running = 0
        self._counts_lock = threading.Lock()

    # -- Public API ---------------------------------------------------------

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` on a worker thread once a slot is free.

        Raises:
            TimeoutError: If no slot frees up within the queue timeout.
        """
        async with self._slot():
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)

    @property
    def active_count(self) -> int:
        """Calls currently executing."""
        with self._counts_lock:
            return self._running

    @property
    def queue_depth(self) -> int:
        """Calls waiting for a slot."""
        with self._counts_lock:
            return self._waiting

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    # -- Internal -----------------------------------------------------------

    def _adjust(self, waiting: int = 0, running: int = 0) -> None:
        with self._counts_lock:
            self._waiting += waiting
            self._running += running

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        self._adjust(waiting=1)
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._timeout)
        except TimeoutError:
            logger.warning("No worker slot after %.1fs (%d waiting)", self._timeout, self.queue_depth)
            raise
        finally:
            self._adjust(waiting=-1)

        self._adjust(running=1)
        try:
            yield
        finally:
            self._semaphore.release()
            self._adjust(running=-1)
