"""
Async driver for a live session countdown.

``CountdownTicker`` ticks a ``SessionTimer`` once per interval and yields each
result, so a streaming endpoint can push the remaining time to the client.
Checkpoints are persisted in the background every ``checkpoint_interval``
seconds; a slow or failing store never delays a tick. When the consumer
stops iterating (client disconnect) or the timer expires, a final
checkpoint is flushed before the generator closes.
"""
import asyncio
import logging
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Optional, Set

from tryout.core.background_tasks import write_checkpoint_in_background
from tryout.core.config import settings
from tryout.core.datetime_utils import elapsed_seconds, utc_now
from tryout.core.engine.timer import SessionTimer, TickResult, TimerCheckpointState
from tryout.core.graceful_failure import graceful_failure

logger = logging.getLogger(__name__)

PersistCheckpoint = Callable[[TimerCheckpointState], Awaitable[None]]


class CountdownTicker:
    """Drives one timer from the event loop."""

    def __init__(
        self,
        timer: SessionTimer,
        *,
        clock: Callable[[], datetime] = utc_now,
        persist: Optional[PersistCheckpoint] = None,
        interval: Optional[float] = None,
        checkpoint_interval: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.timer = timer
        self.clock = clock
        self.persist = persist
        self.interval = interval if interval is not None else settings.TICK_INTERVAL_SECONDS
        self.checkpoint_interval = (
            checkpoint_interval
            if checkpoint_interval is not None
            else settings.CHECKPOINT_INTERVAL_SECONDS
        )
        self._sleep = sleep
        self._pending: Set[asyncio.Task] = set()
        self._last_checkpoint_at: Optional[datetime] = None
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """End the stream before the next tick; no final checkpoint is written."""
        self._stopped = True

    async def ticks(self) -> AsyncIterator[TickResult]:
        """
        Yield one TickResult per interval until the timer expires or
        ``stop()`` is called.

        The tick that reports expiry is yielded before the generator stops.
        """
        self._last_checkpoint_at = self.clock()
        try:
            while not self._stopped:
                now = self.clock()
                result = self.timer.tick(now)
                logger.debug(
                    f"Session {self.timer.session_id} tick",
                    extra={
                        "session_id": self.timer.session_id,
                        "remaining_seconds": result.remaining_seconds,
                    },
                )
                if not result.expired and self._checkpoint_due(now):
                    self._schedule_checkpoint(now)
                yield result
                if result.expired:
                    return
                await self._sleep(self.interval)
        finally:
            await self._flush()

    def _checkpoint_due(self, now: datetime) -> bool:
        if self.persist is None or self._last_checkpoint_at is None:
            return False
        return elapsed_seconds(self._last_checkpoint_at, now) >= self.checkpoint_interval

    def _schedule_checkpoint(self, now: datetime) -> None:
        self._last_checkpoint_at = now
        state = self.timer.checkpoint(now)
        task = asyncio.create_task(
            write_checkpoint_in_background(self.persist, state, self.timer.session_id)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _flush(self) -> None:
        """Write the final checkpoint and wait for in-flight writes."""
        if self.persist is not None and not self._stopped:
            with graceful_failure(
                "flush final timer checkpoint",
                logger,
                context={"session_id": self.timer.session_id},
            ):
                await self.persist(self.timer.checkpoint(self.clock()))
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
