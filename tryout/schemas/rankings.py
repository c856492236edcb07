"""
Pydantic schemas for package leaderboards.
"""
from datetime import datetime
from typing import List

from pydantic import BaseModel, Field


class RankingEntryResponse(BaseModel):
    """A participant's position in a package leaderboard."""

    session_id: int = Field(..., description="Tryout session ID")
    user_id: str = Field(..., description="Participant user ID")
    score: float = Field(..., description="Total score of the session")
    rank_position: int = Field(
        ..., description="Standard competition rank (ties share a rank)"
    )
    percentile: float = Field(
        ..., description="Percentage of participants scoring at or below this score"
    )
    total_participants: int = Field(..., description="Participants ranked in the package")
    computed_at: datetime = Field(..., description="When the leaderboard was computed")

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class RankingListResponse(BaseModel):
    """Schema for a page of a package leaderboard."""

    package_id: int = Field(..., description="Tryout package ID")
    entries: List[RankingEntryResponse] = Field(..., description="Entries in rank order")
    total_participants: int = Field(..., description="Participants ranked in the package")
    limit: int = Field(..., description="Maximum number of entries returned")
    offset: int = Field(..., description="Number of entries skipped")
