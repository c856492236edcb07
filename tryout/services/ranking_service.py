"""
Ranking aggregation for tryout packages.

Rankings are derived data: every recompute reads a snapshot of the latest
score of each completed session in the package and replaces the package's
ranking rows wholesale. Recomputation takes no session locks.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from tryout.core.datetime_utils import ensure_timezone_aware, utc_now
from tryout.core.ranking import RankingCandidate, compute_rankings
from tryout.models import RankingEntry
from tryout.observability import metrics
from tryout.services.session_store import SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankingPage:
    package_id: int
    entries: List[RankingEntry]
    total_participants: int
    limit: int
    offset: int


class RankingService:
    """Recomputes and reads package leaderboards."""

    def __init__(
        self,
        db: Session,
        store: Optional[SessionStore] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.store = store or SessionStore(db)
        self.clock = clock

    def recompute_rankings(self, package_id: int) -> List[RankingEntry]:
        """
        Rebuild the leaderboard of a package.

        Returns:
            The new ranking rows in leaderboard order
        """
        started = time.perf_counter()
        candidates = [
            RankingCandidate(
                session_id=session.id,
                user_id=session.user_id,
                score=result.total_score,
                completed_at=ensure_timezone_aware(session.completed_at or result.created_at),
            )
            for session, result in self.store.completed_scores(package_id)
        ]
        ranks = compute_rankings(candidates)
        entries = self.store.replace_rankings(package_id, ranks, self.clock())

        duration = time.perf_counter() - started
        metrics.record_rankings_recomputed(len(entries), duration)
        logger.info(
            f"Recomputed rankings for package {package_id}: "
            f"{len(entries)} participants in {duration * 1000:.1f}ms",
            extra={"package_id": package_id},
        )
        return entries

    def get_rankings(self, package_id: int, limit: int, offset: int = 0) -> RankingPage:
        return RankingPage(
            package_id=package_id,
            entries=self.store.list_rankings(package_id, limit, offset),
            total_participants=self.store.count_rankings(package_id),
            limit=limit,
            offset=offset,
        )

    def get_user_rank(self, package_id: int, user_id: str) -> Optional[RankingEntry]:
        """The user's best-ranked entry in a package, if they have one."""
        return self.store.best_ranking_for_user(package_id, user_id)
