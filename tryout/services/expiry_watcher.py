"""
Background sweep that expires sessions nobody is watching.

A session whose client went away never gets a tick, so its timer would only
be reconciled when the user comes back. The watcher periodically reconciles
every in-progress session, auto-submitting those whose time ran out, and
resumes submissions left ``submitting`` by a persistence failure. Rankings
therefore include expired attempts without waiting for the user to return.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from tryout.core.config import settings
from tryout.core.datetime_utils import utc_now
from tryout.core.engine.controller import SessionController
from tryout.core.exceptions import EngineError
from tryout.core.graceful_failure import graceful_failure
from tryout.models import SessionLocal, SessionStatus
from tryout.services.session_store import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Session ids touched by one sweep."""

    expired: List[int] = field(default_factory=list)
    resumed: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)


class ExpiryWatcher:
    """Runs ``sweep_once`` on an interval from the application's event loop."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        interval: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.interval = (
            interval if interval is not None else settings.EXPIRY_SWEEP_INTERVAL_SECONDS
        )
        self.clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    def sweep_once(self) -> SweepReport:
        """Reconcile every in-progress session and finish pending submissions."""
        report = SweepReport()
        db = self.session_factory()
        try:
            store = SessionStore(db)
            controller = SessionController(db, clock=self.clock, store=store)

            pending = [s.id for s in store.sessions_with_status(SessionStatus.SUBMITTING)]
            for session_id in pending:
                try:
                    if controller.resume_pending_submission(session_id) is not None:
                        report.resumed.append(session_id)
                except EngineError as e:
                    report.failed.append(session_id)
                    logger.warning(
                        f"Pending submission for session {session_id} still failing: {e}",
                        extra={"session_id": session_id},
                    )

            running = [s.id for s in store.sessions_with_status(SessionStatus.IN_PROGRESS)]
            for session_id in running:
                try:
                    if controller.expire_if_due(session_id) is not None:
                        report.expired.append(session_id)
                except EngineError as e:
                    report.failed.append(session_id)
                    logger.warning(
                        f"Could not expire session {session_id}: {e}",
                        extra={"session_id": session_id},
                    )
        finally:
            db.close()

        if report.expired or report.resumed or report.failed:
            logger.info(
                f"Expiry sweep: {len(report.expired)} expired, "
                f"{len(report.resumed)} resumed, {len(report.failed)} failed"
            )
        return report

    async def run(self) -> None:
        logger.info(f"Expiry watcher running every {self.interval}s")
        while not self._stopping.is_set():
            with graceful_failure("expiry sweep", logger, exc_info=True):
                await asyncio.to_thread(self.sweep_once)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Expiry watcher stopped")
