import asyncio
import contextlib
import logging
from typing import Optional

from outbox_service.consumers.outbox_processor import OutboxProcessor
from outbox_service.core.config import MAX_TICK_BACKOFF, POLLING_INTERVAL

log = logging.getLogger(__name__)


class OutboxScheduler:
    """
    Runs ``processor.tick()`` on a fixed cadence from the event loop.

    Ticks never overlap: the next one is only scheduled after the previous one
    returned. A tick that raised, or that left rows failed, pushes the next
    tick back exponentially up to ``max_backoff``. ``trigger()`` wakes the loop
    early when new events are known to be waiting.
    """

    def __init__(
        self,
        processor: OutboxProcessor,
        interval: float = POLLING_INTERVAL,
        max_backoff: float = MAX_TICK_BACKOFF,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._processor = processor
        self._interval = interval
        self._max_backoff = max(max_backoff, interval)
        self._consecutive_failures = 0
        self._wake = asyncio.Event()
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def next_delay(self) -> float:
        if self._consecutive_failures == 0:
            return self._interval
        return min(self._max_backoff, self._interval * 2 ** self._consecutive_failures)

    def start(self) -> None:
        if self.is_running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self.run(), name="outbox-scheduler")
        log.info(f"Outbox scheduler started (every {self._interval}s)")

    async def stop(self) -> None:
        """Stops scheduling new ticks and waits for the one in flight to finish."""
        if self._task is None:
            return
        self._stopping.set()
        self._wake.set()
        task, self._task = self._task, None
        with contextlib.suppress(asyncio.CancelledError):
            await task
        log.info("Outbox scheduler stopped")

    def trigger(self) -> None:
        self._wake.set()

    async def run_once(self) -> None:
        """One tick plus bookkeeping of the failure streak."""
        try:
            result = await self._processor.tick()
        except Exception:
            self._consecutive_failures += 1
            log.exception(f"Outbox tick failed ({self._consecutive_failures} in a row)")
            return

        if result.has_failures:
            self._consecutive_failures += 1
        else:
            self._consecutive_failures = 0

    async def run(self) -> None:
        while not self._stopping.is_set():
            # A trigger() that lands mid-tick still shortens the following sleep.
            self._wake.clear()
            await self.run_once()
            if self._stopping.is_set():
                break
            await self._sleep(self.next_delay())

    async def _sleep(self, delay: float) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
