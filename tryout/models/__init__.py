"""
Models package for the tryout engine.
"""
from .base import Base, engine, SessionLocal, get_db
from .models import (
    TryoutPackage,
    TryoutSection,
    Question,
    TryoutSession,
    Answer,
    TimerCheckpoint,
    ScoreResult,
    RankingEntry,
    SessionStatus,
    SubmitTrigger,
    QuestionKind,
    NON_TERMINAL_STATUSES,
)

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "get_db",
    "TryoutPackage",
    "TryoutSection",
    "Question",
    "TryoutSession",
    "Answer",
    "TimerCheckpoint",
    "ScoreResult",
    "RankingEntry",
    "SessionStatus",
    "SubmitTrigger",
    "QuestionKind",
    "NON_TERMINAL_STATUSES",
]
