"""
Pydantic schemas for tryout session endpoints.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from tryout.core.engine.answer_ledger import AnswerEntry
from tryout.core.engine.controller import (
    NavigationState,
    SectionRange,
    SessionView,
    TimerState,
)
from tryout.models import SessionStatus, SubmitTrigger


class StartSessionRequest(BaseModel):
    """Schema for starting (or resuming) a tryout session."""

    package_id: int = Field(..., ge=1, description="Tryout package to attempt")


class SelectAnswerRequest(BaseModel):
    """Schema for selecting an option for a question."""

    option_key: str = Field(
        ..., min_length=1, max_length=16, description="Key of the selected option (e.g. 'A')"
    )


class NavigateRequest(BaseModel):
    """Schema for moving to another question."""

    index: int = Field(..., description="Zero-based index into the session's question list")


class TimerStateResponse(BaseModel):
    """Server-confirmed countdown state."""

    remaining_seconds: float = Field(..., description="Authoritative seconds left")
    duration_seconds: int = Field(..., description="Full session duration in seconds")
    display: str = Field(..., description="Countdown formatted as MM:SS or H:MM:SS")
    running: bool = Field(..., description="Whether the countdown is live")
    expired: bool = Field(..., description="Whether the time has run out")
    urgency: str = Field(..., description="Display urgency (normal, warning, critical)")
    server_time: datetime = Field(
        ..., description="Server time the state was computed at; clients predict from here"
    )

    @classmethod
    def from_state(cls, state: TimerState) -> "TimerStateResponse":
        return cls(
            remaining_seconds=state.remaining_seconds,
            duration_seconds=state.duration_seconds,
            display=state.display,
            running=state.running,
            expired=state.expired,
            urgency=state.urgency.value,
            server_time=state.server_time,
        )


class AnswerResponse(BaseModel):
    """Latest response to one question."""

    question_id: int = Field(..., description="Question ID")
    option_key: Optional[str] = Field(
        None, description="Selected option key (null when unanswered)"
    )
    flagged: bool = Field(..., description="Whether the question is flagged for review")
    answered_at: datetime = Field(..., description="When the response last changed")

    @classmethod
    def from_entry(cls, entry: AnswerEntry) -> "AnswerResponse":
        return cls(
            question_id=entry.question_id,
            option_key=entry.option_key,
            flagged=entry.flagged,
            answered_at=entry.answered_at,
        )


class SectionRangeResponse(BaseModel):
    """A section and the question indexes it spans (inclusive)."""

    section_id: int = Field(..., description="Section ID")
    name: str = Field(..., description="Section name")
    start_index: int = Field(..., description="Index of the section's first question")
    end_index: int = Field(..., description="Index of the section's last question")

    @classmethod
    def from_range(cls, section: SectionRange) -> "SectionRangeResponse":
        return cls(
            section_id=section.section_id,
            name=section.name,
            start_index=section.start_index,
            end_index=section.end_index,
        )


class SessionResponse(BaseModel):
    """Schema for a reconciled tryout session."""

    id: int = Field(..., description="Tryout session ID")
    package_id: int = Field(..., description="Tryout package ID")
    status: SessionStatus = Field(
        ...,
        description="Session status (not_started, in_progress, submitting, completed, abandoned)",
    )
    started_at: Optional[datetime] = Field(None, description="When the timer started")
    completed_at: Optional[datetime] = Field(
        None, description="When the session completed or was abandoned"
    )
    submit_trigger: Optional[SubmitTrigger] = Field(
        None, description="What submitted the session (manual or timer)"
    )
    current_index: int = Field(..., description="Index of the question being viewed")
    question_ids: List[int] = Field(..., description="Question IDs in session order")
    total_questions: int = Field(..., description="Number of questions in the session")
    answered_count: int = Field(..., description="Questions with a selected option")
    flagged_count: int = Field(..., description="Questions flagged for review")
    answers: List[AnswerResponse] = Field(..., description="Recorded responses")
    sections: List[SectionRangeResponse] = Field(
        default_factory=list, description="Sections in question order"
    )
    timer: TimerStateResponse = Field(..., description="Countdown state")
    resumed: bool = Field(
        False, description="True when an existing session was returned instead of a new one"
    )

    @classmethod
    def from_view(cls, view: SessionView) -> "SessionResponse":
        return cls(
            id=view.session_id,
            package_id=view.package_id,
            status=view.status,
            started_at=view.started_at,
            completed_at=view.completed_at,
            submit_trigger=view.submit_trigger,
            current_index=view.current_index,
            question_ids=list(view.question_ids),
            total_questions=len(view.question_ids),
            answered_count=view.answered_count,
            flagged_count=view.flagged_count,
            answers=[AnswerResponse.from_entry(a) for a in view.answers],
            sections=[SectionRangeResponse.from_range(s) for s in view.sections],
            timer=TimerStateResponse.from_state(view.timer),
            resumed=view.resumed,
        )


class NavigationResponse(BaseModel):
    """Schema for the position after navigating."""

    session_id: int = Field(..., description="Tryout session ID")
    current_index: int = Field(..., description="New question index")
    question_id: int = Field(..., description="Question at the new index")
    question_count: int = Field(..., description="Number of questions in the session")
    section: Optional[SectionRangeResponse] = Field(
        None, description="Section containing the current question"
    )

    @classmethod
    def from_state(cls, state: NavigationState) -> "NavigationResponse":
        return cls(
            session_id=state.session_id,
            current_index=state.current_index,
            question_id=state.question_id,
            question_count=state.question_count,
            section=(
                SectionRangeResponse.from_range(state.section) if state.section else None
            ),
        )


class CountdownEvent(BaseModel):
    """One server-sent countdown event."""

    session_id: int
    remaining_seconds: float
    display: str
    urgency: str
    expired: bool
