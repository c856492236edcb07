"""
Fire-and-forget timer checkpoint writes.

The countdown ticker schedules a checkpoint write every few seconds and never
awaits it. A write that fails only costs precision on the next reconnect (the
previous checkpoint is a little staler), so the failure is logged and counted
here rather than surfacing as "Task exception was never retrieved".
"""

import logging
from typing import Awaitable, Callable

from tryout.core.engine.timer import TimerCheckpointState
from tryout.observability import metrics

logger = logging.getLogger(__name__)


async def write_checkpoint_in_background(
    persist: Callable[[TimerCheckpointState], Awaitable[None]],
    state: TimerCheckpointState,
    session_id: int,
) -> None:
    """Await *persist(state)*, logging and counting any failure."""
    try:
        await persist(state)
    except Exception:
        logger.exception(
            f"Background checkpoint for session {session_id} failed "
            f"({state.remaining_seconds:.1f}s remaining)",
            extra={"session_id": session_id},
        )
        metrics.record_checkpoint_dropped()
