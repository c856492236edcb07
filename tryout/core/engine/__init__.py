"""
Session engine building blocks.

The controller and ticker are imported from their modules directly
(``tryout.core.engine.controller``, ``tryout.core.engine.ticker``); they depend
on scoring and the store, which in turn use the value types exported here.
"""
from .answer_ledger import AnswerEntry, AnswerLedger
from .locks import SessionLockRegistry, session_locks
from .timer import (
    SessionTimer,
    TickResult,
    TimerCheckpointState,
    TimerUrgency,
    reconcile,
    timer_urgency,
)

__all__ = [
    "AnswerEntry",
    "AnswerLedger",
    "SessionLockRegistry",
    "session_locks",
    "SessionTimer",
    "TickResult",
    "TimerCheckpointState",
    "TimerUrgency",
    "reconcile",
    "timer_urgency",
]
