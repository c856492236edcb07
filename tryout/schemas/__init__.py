"""
Pydantic schemas for request/response validation.
"""
from .sessions import (
    StartSessionRequest,
    SelectAnswerRequest,
    NavigateRequest,
    TimerStateResponse,
    AnswerResponse,
    SectionRangeResponse,
    SessionResponse,
    NavigationResponse,
    CountdownEvent,
)
from .results import (
    SectionResultResponse,
    ScoreResultResponse,
    SubmissionResponse,
)
from .rankings import (
    RankingEntryResponse,
    RankingListResponse,
)

__all__ = [
    "StartSessionRequest",
    "SelectAnswerRequest",
    "NavigateRequest",
    "TimerStateResponse",
    "AnswerResponse",
    "SectionRangeResponse",
    "SessionResponse",
    "NavigationResponse",
    "CountdownEvent",
    "SectionResultResponse",
    "ScoreResultResponse",
    "SubmissionResponse",
    "RankingEntryResponse",
    "RankingListResponse",
]
