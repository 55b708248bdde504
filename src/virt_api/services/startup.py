"""
Startup synchronization gates.

Nothing that depends on cluster state may run before the caches holding that
state completed their initial list. virt-api passes two such gates: the
authentication ConfigMap before trust configuration is read, and the caches
used by admission handlers before webhooks are registered and requests are
served.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Iterable
from typing import Protocol

logger = logging.getLogger(__name__)


class SyncedCache(Protocol):
    """Anything with a name that reports whether its initial list is done."""

    name: str

    @property
    def has_synced(self) -> bool: ...


class StartupSynchronizer:
    """Waits for sets of caches to sync, honouring the process shutdown signal."""

    def __init__(self, stop: threading.Event, poll_interval: float = 0.1):
        """
        Initialize the synchronizer.

        Args:
            stop: Process-wide shutdown signal
            poll_interval: Seconds between checks of the caches
        """
        self.stop = stop
        self.poll_interval = poll_interval

    async def wait_ready(self, caches: Iterable[SyncedCache]) -> bool:
        """
        Block until every cache has synced.

        Args:
            caches: Caches to wait for

        Returns:
            True once all caches synced, False if shutdown was signalled first
        """
        pending = list(caches)
        names = ", ".join(cache.name for cache in pending)
        start_time = time.time()
        logger.info(f"Waiting for caches to sync: {names}")

        while pending:
            if self.stop.is_set():
                logger.warning(
                    f"Shutdown requested while waiting for caches: "
                    f"{', '.join(cache.name for cache in pending)}"
                )
                return False
            pending = [cache for cache in pending if not cache.has_synced]
            if pending:
                await asyncio.sleep(self.poll_interval)

        logger.info(
            f"Caches synced: {names}", extra={"duration": time.time() - start_time}
        )
        return True
