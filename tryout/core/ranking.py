"""
Leaderboard computation.

Standard competition ranking ("1224"): equal scores share a rank and the next
distinct score skips the shared positions, so scores [90, 90, 80] rank
[1, 1, 3]. Percentile is the share of participants scoring at or below a
score: ``count(score <= s) / N * 100``.

Equal scores are listed by completion time, then session id. That order is
for display only and never changes a rank.
"""
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List

from tryout.core.datetime_utils import ensure_timezone_aware

PERCENTILE_PRECISION = 2


@dataclass(frozen=True)
class RankingCandidate:
    """A completed session's latest score."""

    session_id: int
    user_id: str
    score: float
    completed_at: datetime


@dataclass(frozen=True)
class ComputedRank:
    session_id: int
    user_id: str
    score: float
    rank_position: int
    percentile: float
    total_participants: int


def compute_rankings(candidates: Iterable[RankingCandidate]) -> List[ComputedRank]:
    """
    Rank completed sessions by score.

    Args:
        candidates: One entry per completed session

    Returns:
        Entries in leaderboard order (score descending, then completion time,
        then session id)
    """
    ordered = sorted(
        candidates,
        key=lambda c: (-c.score, ensure_timezone_aware(c.completed_at), c.session_id),
    )
    total = len(ordered)
    if total == 0:
        return []

    ascending_scores = sorted(c.score for c in ordered)

    ranks: List[ComputedRank] = []
    rank_position = 0
    previous_score = None
    for index, candidate in enumerate(ordered):
        if candidate.score != previous_score:
            rank_position = index + 1
            previous_score = candidate.score
        at_or_below = bisect_right(ascending_scores, candidate.score)
        ranks.append(
            ComputedRank(
                session_id=candidate.session_id,
                user_id=candidate.user_id,
                score=candidate.score,
                rank_position=rank_position,
                percentile=round(at_or_below / total * 100, PERCENTILE_PRECISION),
                total_participants=total,
            )
        )
    return ranks
