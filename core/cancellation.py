"""Cooperative pause/stop signal shared by the scheduler and every strategy."""

import asyncio
import logging

logger = logging.getLogger(__name__)


class ScanControl:
    """Cancellation token observed at well-defined suspension points.

    ``pause`` holds back new dequeues and loop iterations (in-flight requests
    still finish); ``stop`` makes loops exit and also releases a pause so
    that pending work can drain.
    """

    def __init__(self) -> None:
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._stopped = False

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    @property
    def stopped(self) -> bool:
        return self._stopped

    def pause(self) -> None:
        if self._stopped:
            return
        if not self.paused:
            logger.info("Scan paused")
        self._resumed.clear()

    def resume(self) -> None:
        if self.paused:
            logger.info("Scan resumed")
        self._resumed.set()

    def stop(self) -> None:
        if not self._stopped:
            logger.info("Stop requested, finishing in-flight work")
        self._stopped = True
        self._resumed.set()

    async def wait_if_paused(self) -> bool:
        """Block while paused; return ``True`` when the caller may continue."""
        await self._resumed.wait()
        return not self._stopped
