"""
Persistence store for session engine records.

Every write commits its own transaction inside ``persistence_guard`` so a
failure rolls back, is logged, and surfaces as ``PersistenceFailure`` for
the caller's retry policy. Status changes go through
``compare_and_set_status``: a single conditional UPDATE that only one
writer can win, in this process or any other.
"""
import logging
from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tryout.core.datetime_utils import ensure_timezone_aware
from tryout.core.db_error_handling import persistence_guard
from tryout.core.exceptions import DuplicateSessionStart
from tryout.core.ranking import ComputedRank
from tryout.core.scoring import SessionScore
from tryout.models import (
    NON_TERMINAL_STATUSES,
    Answer,
    RankingEntry,
    ScoreResult,
    SessionStatus,
    TimerCheckpoint,
    TryoutSession,
)

logger = logging.getLogger(__name__)


class SessionStore:
    """SQLAlchemy-backed store for sessions, answers, checkpoints, results and rankings."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session(self, session_id: int) -> Optional[TryoutSession]:
        # Always read the committed row; another writer may have moved the status
        self.db.expire_all()
        return self.db.query(TryoutSession).filter(TryoutSession.id == session_id).first()

    def find_live_session(self, user_id: str, package_id: int) -> Optional[TryoutSession]:
        """The user's non-terminal session for a package, if any."""
        self.db.expire_all()
        return (
            self.db.query(TryoutSession)
            .filter(
                TryoutSession.user_id == user_id,
                TryoutSession.package_id == package_id,
                TryoutSession.status.in_(NON_TERMINAL_STATUSES),
            )
            .order_by(TryoutSession.id.desc())
            .first()
        )

    def sessions_with_status(
        self, status: SessionStatus, limit: Optional[int] = None
    ) -> List[TryoutSession]:
        query = (
            self.db.query(TryoutSession)
            .filter(TryoutSession.status == status)
            .order_by(TryoutSession.id)
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def create_session(
        self,
        user_id: str,
        package_id: int,
        duration_seconds: int,
        now: datetime,
    ) -> TryoutSession:
        """
        Insert a ``not_started`` session.

        Raises:
            DuplicateSessionStart: If the user already has a live session for
                the package (enforced by the partial unique index)
            PersistenceFailure: On any other database error
        """
        with persistence_guard(self.db, "create tryout session"):
            session = TryoutSession(
                user_id=user_id,
                package_id=package_id,
                status=SessionStatus.NOT_STARTED,
                duration_seconds=duration_seconds,
                created_at=now,
                current_index=0,
            )
            self.db.add(session)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                raise DuplicateSessionStart(user_id, package_id)
            self.db.refresh(session)
            return session

    def compare_and_set_status(
        self,
        session_id: int,
        expected: SessionStatus,
        new: SessionStatus,
        **fields: Any,
    ) -> bool:
        """
        Move a session from ``expected`` to ``new`` if it is still ``expected``.

        Args:
            session_id: Session to update
            expected: Status the session must currently have
            new: Status to set
            **fields: Extra columns to set in the same UPDATE

        Returns:
            True if this call performed the transition
        """
        with persistence_guard(
            self.db, f"move session to {new.value}", session_id=session_id
        ):
            result = self.db.execute(
                update(TryoutSession)
                .where(TryoutSession.id == session_id, TryoutSession.status == expected)
                .values(status=new, **fields)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            won = result.rowcount == 1
            if won:
                logger.info(
                    f"Session {session_id} moved {expected.value} -> {new.value}",
                    extra={"session_id": session_id},
                )
            return won

    def update_current_index(self, session_id: int, index: int) -> None:
        with persistence_guard(self.db, "save navigation position", session_id=session_id):
            self.db.execute(
                update(TryoutSession)
                .where(TryoutSession.id == session_id)
                .values(current_index=index)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()

    # ------------------------------------------------------------------
    # Timer checkpoints
    # ------------------------------------------------------------------

    def latest_checkpoint(self, session_id: int) -> Optional[TimerCheckpoint]:
        return (
            self.db.query(TimerCheckpoint)
            .filter(TimerCheckpoint.session_id == session_id)
            .order_by(TimerCheckpoint.id.desc())
            .first()
        )

    def save_checkpoint(
        self,
        session_id: int,
        remaining_seconds: float,
        checkpoint_at: datetime,
        expiry_fired: bool = False,
    ) -> Optional[TimerCheckpoint]:
        """
        Append a checkpoint for an in-progress session.

        Checkpoints only move forward. Remaining time never increases and the
        expiry flag never resets: a new row takes the minimum of its value and
        the previous one, and inherits ``expiry_fired``. A write stamped before
        the latest row (a delayed background write) is not stored and the
        latest row is returned; only its expiry flag, if set, is kept, at the
        latest row's time.

        Returns:
            The stored or latest checkpoint, or None when the session is no
            longer in progress and nothing was written
        """
        with persistence_guard(self.db, "save timer checkpoint", session_id=session_id):
            status = (
                self.db.query(TryoutSession.status)
                .filter(TryoutSession.id == session_id)
                .scalar()
            )
            if status != SessionStatus.IN_PROGRESS:
                return self._checkpoint_refused(session_id, status)

            previous = self.latest_checkpoint(session_id)
            remaining = max(0.0, remaining_seconds)
            if previous is not None:
                previous_at = ensure_timezone_aware(previous.checkpoint_at)
                if ensure_timezone_aware(checkpoint_at) < previous_at:
                    if not expiry_fired or previous.expiry_fired:
                        return previous
                    checkpoint_at = previous_at
                remaining = min(remaining, previous.remaining_seconds)
                expiry_fired = expiry_fired or previous.expiry_fired
            if expiry_fired:
                remaining = 0.0

            # Conditional on the status so a concurrent submit or abandon wins
            claimed = self.db.execute(
                update(TryoutSession)
                .where(
                    TryoutSession.id == session_id,
                    TryoutSession.status == SessionStatus.IN_PROGRESS,
                )
                .values(last_checkpoint_at=checkpoint_at)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                self.db.rollback()
                return self._checkpoint_refused(session_id, None)

            checkpoint = TimerCheckpoint(
                session_id=session_id,
                remaining_seconds=remaining,
                checkpoint_at=checkpoint_at,
                expiry_fired=expiry_fired,
            )
            self.db.add(checkpoint)
            self.db.commit()
            self.db.refresh(checkpoint)
            return checkpoint

    @staticmethod
    def _checkpoint_refused(session_id: int, status: Optional[SessionStatus]) -> None:
        state = status.value if status is not None else "no longer in progress"
        logger.debug(
            f"Checkpoint for session {session_id} not stored: session is {state}",
            extra={"session_id": session_id},
        )
        return None

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def load_answers(self, session_id: int) -> List[Answer]:
        return (
            self.db.query(Answer)
            .filter(Answer.session_id == session_id)
            .order_by(Answer.question_id)
            .all()
        )

    def upsert_answer(
        self,
        session_id: int,
        question_id: int,
        option_key: Optional[str],
        flagged: bool,
        answered_at: datetime,
    ) -> Answer:
        """Write the latest answer for a question (last write wins)."""
        with persistence_guard(self.db, "save answer", session_id=session_id):
            answer = self._find_answer(session_id, question_id)
            if answer is None:
                answer = Answer(session_id=session_id, question_id=question_id)
                self.db.add(answer)
            answer.selected_option_key = option_key
            answer.flagged = flagged
            answer.answered_at = answered_at
            try:
                self.db.commit()
            except IntegrityError:
                # A concurrent writer inserted the row first; overwrite it
                self.db.rollback()
                answer = self._find_answer(session_id, question_id)
                if answer is None:
                    raise
                answer.selected_option_key = option_key
                answer.flagged = flagged
                answer.answered_at = answered_at
                self.db.commit()
            self.db.refresh(answer)
            return answer

    def _find_answer(self, session_id: int, question_id: int) -> Optional[Answer]:
        return (
            self.db.query(Answer)
            .filter(Answer.session_id == session_id, Answer.question_id == question_id)
            .first()
        )

    # ------------------------------------------------------------------
    # Score results
    # ------------------------------------------------------------------

    def latest_score_result(self, session_id: int) -> Optional[ScoreResult]:
        return (
            self.db.query(ScoreResult)
            .filter(ScoreResult.session_id == session_id)
            .order_by(ScoreResult.version.desc())
            .first()
        )

    def save_score_result(
        self,
        session: TryoutSession,
        score: SessionScore,
        now: datetime,
    ) -> ScoreResult:
        """
        Persist the first score result of a session.

        Idempotent: if a result already exists (an earlier attempt saved it
        before failing later, or another process won) that result is returned
        unchanged.
        """
        with persistence_guard(self.db, "persist score result", session_id=session.id):
            existing = self.latest_score_result(session.id)
            if existing is not None:
                return existing

            result = ScoreResult(
                session_id=session.id,
                version=1,
                user_id=session.user_id,
                package_id=session.package_id,
                correct_count=score.correct_count,
                wrong_count=score.wrong_count,
                unanswered_count=score.unanswered_count,
                ungraded_count=score.ungraded_count,
                total_score=score.total_score,
                max_score=score.max_score,
                percentage=score.percentage,
                passed=score.passed,
                section_results=score.section_results(),
                created_at=now,
            )
            self.db.add(result)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                existing = self.latest_score_result(session.id)
                if existing is None:
                    raise
                return existing
            self.db.refresh(result)
            return result

    def completed_scores(
        self, package_id: int
    ) -> List[Tuple[TryoutSession, ScoreResult]]:
        """Latest score result of every completed session in a package."""
        latest_version = (
            self.db.query(
                ScoreResult.session_id.label("session_id"),
                func.max(ScoreResult.version).label("version"),
            )
            .group_by(ScoreResult.session_id)
            .subquery()
        )
        rows = (
            self.db.query(TryoutSession, ScoreResult)
            .join(ScoreResult, ScoreResult.session_id == TryoutSession.id)
            .join(
                latest_version,
                (latest_version.c.session_id == ScoreResult.session_id)
                & (latest_version.c.version == ScoreResult.version),
            )
            .filter(
                TryoutSession.package_id == package_id,
                TryoutSession.status == SessionStatus.COMPLETED,
            )
            .all()
        )
        return [(session, result) for session, result in rows]

    # ------------------------------------------------------------------
    # Rankings
    # ------------------------------------------------------------------

    def replace_rankings(
        self,
        package_id: int,
        ranks: Sequence[ComputedRank],
        computed_at: datetime,
    ) -> List[RankingEntry]:
        """Replace a package's ranking rows in one transaction."""
        with persistence_guard(self.db, "replace package rankings"):
            self.db.execute(
                delete(RankingEntry).where(RankingEntry.package_id == package_id)
            )
            entries = [
                RankingEntry(
                    package_id=package_id,
                    session_id=rank.session_id,
                    user_id=rank.user_id,
                    score=rank.score,
                    rank_position=rank.rank_position,
                    percentile=rank.percentile,
                    total_participants=rank.total_participants,
                    computed_at=computed_at,
                )
                for rank in ranks
            ]
            self.db.add_all(entries)
            self.db.commit()
            return entries

    def list_rankings(
        self, package_id: int, limit: int, offset: int = 0
    ) -> List[RankingEntry]:
        return (
            self.db.query(RankingEntry)
            .filter(RankingEntry.package_id == package_id)
            .order_by(RankingEntry.rank_position, RankingEntry.id)
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count_rankings(self, package_id: int) -> int:
        return (
            self.db.query(RankingEntry)
            .filter(RankingEntry.package_id == package_id)
            .count()
        )

    def best_ranking_for_user(
        self, package_id: int, user_id: str
    ) -> Optional[RankingEntry]:
        return (
            self.db.query(RankingEntry)
            .filter(
                RankingEntry.package_id == package_id,
                RankingEntry.user_id == user_id,
            )
            .order_by(RankingEntry.rank_position, RankingEntry.id)
            .first()
        )
