"""
Pydantic schemas for score results and submission.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from tryout.core.engine.controller import SubmissionOutcome
from tryout.models import SessionStatus, SubmitTrigger


class SectionResultResponse(BaseModel):
    """Subtotals for one section of a scored session."""

    section_id: Optional[int] = Field(None, description="Section ID (null for unsectioned questions)")
    name: Optional[str] = Field(None, description="Section name")
    correct_count: int = Field(..., description="Correctly answered questions")
    wrong_count: int = Field(..., description="Incorrectly answered questions")
    unanswered_count: int = Field(..., description="Questions left unanswered")
    ungraded_count: int = Field(0, description="Questions without a scoring key")
    total_score: float = Field(..., description="Points earned in the section")
    max_score: float = Field(..., description="Points available in the section")
    percentage: float = Field(..., description="Section score as a percentage")


class ScoreResultResponse(BaseModel):
    """Schema for the graded outcome of a completed session."""

    session_id: int = Field(..., description="Tryout session ID")
    package_id: int = Field(..., description="Tryout package ID")
    correct_count: int = Field(..., description="Correctly answered questions")
    wrong_count: int = Field(..., description="Incorrectly answered questions")
    unanswered_count: int = Field(..., description="Questions left unanswered")
    ungraded_count: int = Field(0, description="Questions without a scoring key")
    total_score: float = Field(..., description="Points earned")
    max_score: float = Field(..., description="Points available")
    percentage: float = Field(..., description="Score as a percentage of max_score")
    passed: Optional[bool] = Field(
        None, description="Whether the package's passing grade was reached (null if none)"
    )
    section_results: List[SectionResultResponse] = Field(
        ..., description="Per-section subtotals in question order"
    )
    created_at: datetime = Field(..., description="When the result was recorded")

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class SubmissionResponse(BaseModel):
    """Schema for the response to a submit request."""

    session_id: int = Field(..., description="Tryout session ID")
    status: SessionStatus = Field(..., description="Session status after submission")
    submit_trigger: Optional[SubmitTrigger] = Field(
        None, description="What submitted the session (manual or timer)"
    )
    already_submitted: bool = Field(
        ..., description="True when the session had been submitted before this call"
    )
    result: ScoreResultResponse = Field(..., description="The session's score result")

    @classmethod
    def from_outcome(cls, outcome: SubmissionOutcome) -> "SubmissionResponse":
        return cls(
            session_id=outcome.session_id,
            status=outcome.status,
            submit_trigger=outcome.trigger,
            already_submitted=outcome.already_submitted,
            result=ScoreResultResponse.model_validate(outcome.result),
        )
