"""
Tests for leaderboard ranking.
"""
from datetime import datetime, timedelta, timezone

from tryout.core.ranking import RankingCandidate, compute_rankings

T0 = datetime(2026, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


def candidate(session_id, score, minutes=0, user_id=None):
    return RankingCandidate(
        session_id=session_id,
        user_id=user_id or f"user-{session_id}",
        score=score,
        completed_at=T0 + timedelta(minutes=minutes),
    )


class TestComputeRankings:
    """Tests for compute_rankings()."""

    def test_standard_competition_ranking(self):
        """Scores [90, 90, 80] rank [1, 1, 3], never [1, 2, 3]."""
        ranks = compute_rankings(
            [candidate(1, 90.0), candidate(2, 90.0), candidate(3, 80.0)]
        )

        assert [r.rank_position for r in ranks] == [1, 1, 3]

    def test_percentiles_count_scores_at_or_below(self):
        ranks = compute_rankings(
            [candidate(1, 90.0), candidate(2, 90.0), candidate(3, 80.0)]
        )

        assert [r.percentile for r in ranks] == [100.0, 100.0, 33.33]
        assert all(r.total_participants == 3 for r in ranks)

    def test_ties_listed_by_completion_time_then_session(self):
        """Display order among equal scores does not affect their rank."""
        ranks = compute_rankings(
            [
                candidate(5, 70.0, minutes=10),
                candidate(4, 70.0, minutes=5),
                candidate(3, 70.0, minutes=5),
            ]
        )

        assert [r.session_id for r in ranks] == [3, 4, 5]
        assert {r.rank_position for r in ranks} == {1}

    def test_rank_skips_after_tie_group(self):
        ranks = compute_rankings(
            [
                candidate(1, 100.0),
                candidate(2, 80.0),
                candidate(3, 80.0),
                candidate(4, 80.0),
                candidate(5, 60.0),
            ]
        )

        assert [r.rank_position for r in ranks] == [1, 2, 2, 2, 5]
        assert ranks[-1].percentile == 20.0

    def test_empty(self):
        assert compute_rankings([]) == []

    def test_single_participant(self):
        (only,) = compute_rankings([candidate(1, 0.0)])
        assert only.rank_position == 1
        assert only.percentile == 100.0
