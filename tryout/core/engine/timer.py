"""
Session countdown timer with checkpoint reconciliation.

The authoritative timer state is ``remaining_seconds`` as of ``checkpoint_at``.
Between checkpoints the live countdown is recomputed from the wall-clock
delta since the anchor on every tick, never decremented, so it cannot drift
when ticks arrive late. When a session is reopened the stored checkpoint is
reconciled against the current time:

    remaining = max(0, stored_remaining - (now - checkpoint_at))

A reconciled value of zero means the timer expired while nobody was looking;
the first ``tick`` after resuming fires the expiry callbacks.

The timer is a pure transition driven by an external scheduler: the asyncio
``CountdownTicker`` in production, a fake clock in tests.
"""
import enum
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from tryout.core.config import settings
from tryout.core.datetime_utils import elapsed_seconds, ensure_timezone_aware
from tryout.observability import metrics

logger = logging.getLogger(__name__)

ExpiryCallback = Callable[[], None]


class TimerUrgency(str, enum.Enum):
    """Display urgency of the countdown."""

    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class TimerCheckpointState:
    """Timer state as persisted in a checkpoint row."""

    remaining_seconds: float
    checkpoint_at: datetime
    expiry_fired: bool = False


@dataclass(frozen=True)
class TickResult:
    """Outcome of a single tick."""

    remaining_seconds: float
    expired: bool
    just_expired: bool  # True only on the tick that fired expiry


def timer_urgency(
    remaining_seconds: float,
    duration_seconds: float,
    warning_ratio: Optional[float] = None,
    critical_ratio: Optional[float] = None,
) -> TimerUrgency:
    """
    Classify the remaining time for display.

    Args:
        remaining_seconds: Seconds left on the timer
        duration_seconds: Full session duration
        warning_ratio: Fraction of the duration at or below which the timer
            is "warning" (defaults to settings.TIMER_WARNING_RATIO)
        critical_ratio: Fraction at or below which it is "critical"
            (defaults to settings.TIMER_CRITICAL_RATIO)

    Returns:
        TimerUrgency level
    """
    if warning_ratio is None:
        warning_ratio = settings.TIMER_WARNING_RATIO
    if critical_ratio is None:
        critical_ratio = settings.TIMER_CRITICAL_RATIO
    if duration_seconds <= 0:
        return TimerUrgency.CRITICAL
    fraction = remaining_seconds / duration_seconds
    if fraction <= critical_ratio:
        return TimerUrgency.CRITICAL
    if fraction <= warning_ratio:
        return TimerUrgency.WARNING
    return TimerUrgency.NORMAL


def reconcile(
    stored: TimerCheckpointState,
    now: datetime,
    duration_seconds: float,
    session_id: Optional[int] = None,
) -> float:
    """
    Compute the authoritative remaining time from a stored checkpoint.

    Clock anomalies are clamped and logged, never raised:
    - a stored remaining outside ``[0, duration_seconds]`` is clamped into range
    - a checkpoint stamped later than ``now`` is treated as zero elapsed time

    Args:
        stored: Last persisted checkpoint
        now: Current server time
        duration_seconds: Session duration (upper bound for remaining)
        session_id: Used only for log context

    Returns:
        Remaining seconds in ``[0, duration_seconds]``. Always 0 once the
        checkpoint records that expiry fired.
    """
    if stored.expiry_fired:
        return 0.0

    stored_remaining = stored.remaining_seconds
    if stored_remaining < 0 or stored_remaining > duration_seconds:
        logger.warning(
            f"Clock skew: stored remaining {stored_remaining:.3f}s outside "
            f"[0, {duration_seconds}] for session {session_id}; clamping",
            extra={"session_id": session_id},
        )
        metrics.record_clock_skew(stored_remaining - duration_seconds)
        stored_remaining = min(max(stored_remaining, 0.0), float(duration_seconds))

    elapsed = elapsed_seconds(stored.checkpoint_at, now)
    if elapsed < 0:
        logger.warning(
            f"Clock skew: checkpoint for session {session_id} is {-elapsed:.3f}s "
            "in the future; treating elapsed time as zero",
            extra={"session_id": session_id},
        )
        metrics.record_clock_skew(elapsed)
        elapsed = 0.0

    return max(0.0, stored_remaining - elapsed)


class SessionTimer:
    """
    Countdown for one session, anchored to a reconciled checkpoint.

    Thread-safe: ``tick`` and ``checkpoint`` may be called from the request
    thread and the countdown stream concurrently. Expiry callbacks fire at most
    once per timer, outside the internal lock, on the tick that observes
    remaining time reach zero.
    """

    def __init__(
        self,
        session_id: int,
        duration_seconds: float,
        remaining_seconds: float,
        anchor_at: datetime,
        expiry_fired: bool = False,
    ):
        self.session_id = session_id
        self.duration_seconds = duration_seconds
        self._anchor_remaining = min(max(remaining_seconds, 0.0), float(duration_seconds))
        self._anchor_at = ensure_timezone_aware(anchor_at)
        # Lowest remaining value reported so far; remaining never goes back up
        self._floor = self._anchor_remaining
        self._expiry_fired = expiry_fired
        self._callbacks: List[ExpiryCallback] = []
        self._lock = threading.Lock()

    @classmethod
    def start(
        cls, session_id: int, duration_seconds: float, now: datetime
    ) -> "SessionTimer":
        """Create a timer for a session starting now with the full duration."""
        return cls(session_id, duration_seconds, float(duration_seconds), now)

    @classmethod
    def resume(
        cls,
        session_id: int,
        stored: TimerCheckpointState,
        duration_seconds: float,
        now: datetime,
    ) -> "SessionTimer":
        """Create a timer from a persisted checkpoint, reconciled to ``now``."""
        remaining = reconcile(stored, now, duration_seconds, session_id=session_id)
        return cls(
            session_id,
            duration_seconds,
            remaining,
            now,
            expiry_fired=stored.expiry_fired,
        )

    @property
    def expiry_fired(self) -> bool:
        return self._expiry_fired

    def on_expire(self, callback: ExpiryCallback) -> None:
        """Register a callback to run once when the countdown reaches zero."""
        self._callbacks.append(callback)

    def _remaining_at(self, now: datetime) -> float:
        elapsed = elapsed_seconds(self._anchor_at, now)
        if elapsed < 0:
            elapsed = 0.0
        remaining = max(0.0, self._anchor_remaining - elapsed)
        self._floor = min(self._floor, remaining)
        return self._floor

    def remaining_at(self, now: datetime) -> float:
        """Remaining seconds at ``now`` without firing expiry."""
        with self._lock:
            return 0.0 if self._expiry_fired else self._remaining_at(now)

    def tick(self, now: datetime) -> TickResult:
        """
        Advance the countdown to ``now``.

        Returns:
            TickResult; ``just_expired`` is True on exactly one tick per timer.
        """
        with self._lock:
            remaining = 0.0 if self._expiry_fired else self._remaining_at(now)
            just_expired = remaining <= 0.0 and not self._expiry_fired
            if just_expired:
                self._expiry_fired = True
            callbacks = list(self._callbacks) if just_expired else []

        if just_expired:
            logger.info(
                f"Timer expired for session {self.session_id}",
                extra={"session_id": self.session_id},
            )
            for callback in callbacks:
                callback()

        return TickResult(
            remaining_seconds=remaining,
            expired=remaining <= 0.0,
            just_expired=just_expired,
        )

    def checkpoint(self, now: datetime) -> TimerCheckpointState:
        """Snapshot the timer state for persistence."""
        with self._lock:
            remaining = 0.0 if self._expiry_fired else self._remaining_at(now)
            return TimerCheckpointState(
                remaining_seconds=remaining,
                checkpoint_at=ensure_timezone_aware(now),
                expiry_fired=self._expiry_fired,
            )
