"""
SessionController: state machine for a single tryout attempt.

    not_started -> in_progress -> submitting -> completed
                   in_progress -> abandoned

The controller is stateless between requests: every operation rebuilds the
timer and answer ledger from the store, reconciles the timer against the
current time, and only then applies the operation. A timer that reconciles
to zero triggers submission before anything else is accepted, so an answer
can never land after the authoritative deadline.

Manual submission and timer expiry converge on one submission routine. The
``in_progress -> submitting`` transition is a database compare-and-swap:
whichever caller wins scores the session, every other caller gets the
existing result. ``submitting -> completed`` happens only after the score
result is persisted; when persistence fails the session stays
``submitting`` and the submission is resumed by the next submit call or
the expiry watcher.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from tryout.core.config import settings
from tryout.core.datetime_utils import (
    elapsed_seconds,
    ensure_timezone_aware,
    format_countdown,
    utc_now,
)
from tryout.core.engine.answer_ledger import AnswerEntry, AnswerLedger
from tryout.core.engine.locks import SessionLockRegistry, session_locks
from tryout.core.engine.timer import (
    SessionTimer,
    TickResult,
    TimerCheckpointState,
    TimerUrgency,
    timer_urgency,
)
from tryout.core.exceptions import (
    DuplicateSessionStart,
    InvalidOption,
    InvalidTransition,
    NavigationOutOfRange,
    PersistenceFailure,
    QuestionNotInPackage,
    ResultNotReady,
    SessionAccessDenied,
    SessionNotFound,
    SubmissionPersistenceFailure,
)
from tryout.core.graceful_failure import graceful_failure
from tryout.core.retry import RetryConfig, with_retry
from tryout.core.scoring import QuestionRef, ScoringSession, SessionScore, score_session
from tryout.models import ScoreResult, SessionStatus, SubmitTrigger, TryoutSession
from tryout.observability import metrics
from tryout.services.question_bank import (
    QuestionBank,
    QuestionRecord,
    SqlQuestionBank,
    build_answer_key,
)
from tryout.services.ranking_service import RankingService
from tryout.services.session_store import SessionStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class TimerState:
    """Server-confirmed countdown state returned to clients."""

    remaining_seconds: float
    duration_seconds: int
    running: bool
    expired: bool
    urgency: TimerUrgency
    server_time: datetime

    @property
    def display(self) -> str:
        return format_countdown(self.remaining_seconds)


@dataclass(frozen=True)
class SectionRange:
    """A section's position in the session's question list (inclusive)."""

    section_id: int
    name: str
    start_index: int
    end_index: int


@dataclass(frozen=True)
class NavigationState:
    session_id: int
    current_index: int
    question_id: int
    question_count: int
    section: Optional[SectionRange]


@dataclass(frozen=True)
class SessionView:
    """Snapshot of a session after reconciliation."""

    session_id: int
    user_id: str
    package_id: int
    status: SessionStatus
    started_at: Optional[datetime]
    duration_seconds: int
    current_index: int
    question_ids: Tuple[int, ...]
    answers: Tuple[AnswerEntry, ...]
    timer: TimerState
    sections: Tuple[SectionRange, ...] = ()
    submit_trigger: Optional[SubmitTrigger] = None
    completed_at: Optional[datetime] = None
    resumed: bool = False

    @property
    def answered_count(self) -> int:
        return sum(1 for a in self.answers if a.answered)

    @property
    def flagged_count(self) -> int:
        return sum(1 for a in self.answers if a.flagged)


@dataclass(frozen=True)
class SubmissionOutcome:
    session_id: int
    status: SessionStatus
    trigger: Optional[SubmitTrigger]
    result: ScoreResult
    already_submitted: bool = False


class SessionController:
    """
    Coordinates navigation, answers, timer reconciliation and submission.

    One instance serves one request (or one sweep of the expiry watcher).
    Concurrency across instances relies on the shared per-session lock
    registry and on the store's status compare-and-swap.
    """

    def __init__(
        self,
        db: Session,
        *,
        clock: Clock = utc_now,
        question_bank: Optional[QuestionBank] = None,
        store: Optional[SessionStore] = None,
        ranking_service: Optional[RankingService] = None,
        locks: SessionLockRegistry = session_locks,
        persistence_retry: Optional[RetryConfig] = None,
        submission_retry: Optional[RetryConfig] = None,
    ):
        self.db = db
        self.clock = clock
        self.question_bank = question_bank or SqlQuestionBank(db)
        self.store = store or SessionStore(db)
        self.ranking_service = ranking_service or RankingService(
            db, store=self.store, clock=clock
        )
        self.locks = locks
        self.persistence_retry = persistence_retry or RetryConfig.for_persistence()
        self.submission_retry = submission_retry or RetryConfig.for_submission()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_session(self, user_id: str, package_id: int) -> SessionView:
        """
        Start a session, or return the user's existing live session.

        Idempotent per (user, package): while a non-terminal session exists it
        is reconciled and returned with ``resumed=True``. If reconciliation
        finds the timer expired, the returned view is the completed session.

        Raises:
            PackageNotFound: If the package does not exist or is inactive
        """
        package = self.question_bank.get_package(package_id)
        now = self.clock()

        existing = self.store.find_live_session(user_id, package_id)
        if existing is not None:
            return self._resume(existing.id, now)

        try:
            session = self.store.create_session(
                user_id, package_id, package.duration_seconds, now
            )
        except DuplicateSessionStart:
            existing = self.store.find_live_session(user_id, package_id)
            if existing is None:
                raise
            logger.info(
                f"Concurrent start for user {user_id} package {package_id}; "
                f"returning session {existing.id}",
                extra={"package_id": package_id},
            )
            return self._resume(existing.id, now)

        with self.locks.hold(session.id):
            self._begin(session.id, session.duration_seconds, now)
            metrics.record_session_started(package_id)
            logger.info(
                f"Started session {session.id} for user {user_id} package {package_id}",
                extra={"session_id": session.id, "package_id": package_id},
            )
            return self._view(self._require(session.id), now)

    def _begin(self, session_id: int, duration_seconds: int, now: datetime) -> None:
        """not_started -> in_progress with the initial full-duration checkpoint."""
        if self.store.compare_and_set_status(
            session_id,
            SessionStatus.NOT_STARTED,
            SessionStatus.IN_PROGRESS,
            started_at=now,
        ):
            timer = SessionTimer.start(session_id, duration_seconds, now)
            state = timer.checkpoint(now)
            with_retry(
                lambda: self.store.save_checkpoint(
                    session_id, state.remaining_seconds, state.checkpoint_at
                ),
                "save initial checkpoint",
                self.persistence_retry,
            )

    def _resume(self, session_id: int, now: datetime) -> SessionView:
        with self.locks.hold(session_id):
            session = self._require(session_id)
            if session.status == SessionStatus.NOT_STARTED:
                # Created by a request that died before starting the timer
                self._begin(session.id, session.duration_seconds, now)
                session = self._require(session_id)
            if session.status == SessionStatus.IN_PROGRESS:
                self._advance(session, now)
                session = self._require(session_id)
            metrics.record_session_started(session.package_id, resumed=True)
            return self._view(session, now, resumed=True)

    def get_active_session(self, user_id: str, package_id: int) -> Optional[SessionView]:
        """
        The user's live session for a package, reconciled.

        Returns None when there is none, including when reconciliation just
        expired and completed it.
        """
        existing = self.store.find_live_session(user_id, package_id)
        if existing is None:
            return None
        with self.locks.hold(existing.id):
            session = self._require(existing.id)
            now = self.clock()
            if session.status == SessionStatus.IN_PROGRESS:
                self._advance(session, now)
                session = self._require(existing.id)
            if session.status.is_terminal:
                return None
            return self._view(session, now)

    def get_session(self, session_id: int, user_id: str) -> SessionView:
        with self.locks.hold(session_id):
            session = self._load_owned(session_id, user_id)
            now = self.clock()
            if session.status == SessionStatus.IN_PROGRESS:
                self._advance(session, now)
                session = self._require(session_id)
            return self._view(session, now)

    def abandon(self, session_id: int, user_id: str) -> SessionView:
        """
        Give up an in-progress session. No result is produced.

        Raises:
            InvalidTransition: Unless the session is in progress (including
                when reconciliation finds the timer already expired)
        """
        with self.locks.hold(session_id):
            session = self._load_owned(session_id, user_id)
            now = self.clock()
            self._require_in_progress(session, "abandon")
            timer, tick, session = self._advance(session, now)
            if tick.expired:
                raise InvalidTransition(session_id, session.status.value, "abandon")

            # Frozen remaining time; checkpoints are refused once the session ends
            self._checkpoint(session_id, timer, now)
            if not self.store.compare_and_set_status(
                session_id,
                SessionStatus.IN_PROGRESS,
                SessionStatus.ABANDONED,
                completed_at=now,
                time_spent_seconds=self._time_spent(session, now),
            ):
                current = self._require(session_id)
                raise InvalidTransition(session_id, current.status.value, "abandon")

            metrics.record_session_abandoned(session.package_id)
            logger.info(
                f"Session {session_id} abandoned",
                extra={"session_id": session_id},
            )
            return self._view(self._require(session_id), now)

    # ------------------------------------------------------------------
    # Answers and navigation
    # ------------------------------------------------------------------

    def select_answer(
        self, session_id: int, user_id: str, question_id: int, option_key: str
    ) -> AnswerEntry:
        """
        Record the selected option for a question (last write wins).

        Raises:
            InvalidTransition: Unless in progress, or if the timer has expired
            QuestionNotInPackage: If the question is not part of the session
            InvalidOption: If the option key is not one of the question's options
            PersistenceFailure: If the answer could not be saved after retries
        """
        with self.locks.hold(session_id):
            session, timer, now = self._open_for_write(session_id, user_id, "answer")
            question = self._question(session, question_id)
            if option_key not in question.option_keys:
                raise InvalidOption(question_id, option_key)

            ledger = self._ledger(session_id)
            entry = ledger.record(question_id, option_key, now)
            self._write_entry(session_id, entry, timer, now)
            metrics.record_answer("select")
            return entry

    def clear_answer(
        self, session_id: int, user_id: str, question_id: int
    ) -> AnswerEntry:
        """Remove the selected option; the question becomes unanswered."""
        with self.locks.hold(session_id):
            session, timer, now = self._open_for_write(session_id, user_id, "answer")
            self._question(session, question_id)
            ledger = self._ledger(session_id)
            entry = ledger.unset(question_id, now)
            self._write_entry(session_id, entry, timer, now)
            metrics.record_answer("clear")
            return entry

    def toggle_flag(
        self, session_id: int, user_id: str, question_id: int
    ) -> AnswerEntry:
        """Flip the review flag of a question."""
        with self.locks.hold(session_id):
            session, timer, now = self._open_for_write(session_id, user_id, "flag")
            self._question(session, question_id)
            ledger = self._ledger(session_id)
            entry = ledger.toggle_flag(question_id, now)
            self._write_entry(session_id, entry, timer, now)
            metrics.record_answer("flag")
            return entry

    def navigate_to(self, session_id: int, user_id: str, index: int) -> NavigationState:
        """
        Move to a question by index. Only the position is persisted;
        navigating never submits.

        Raises:
            NavigationOutOfRange: If the index is outside the question list
        """
        with self.locks.hold(session_id):
            session, _, _ = self._open_for_write(session_id, user_id, "navigate")
            questions = self.question_bank.get_questions(session.package_id)
            if index < 0 or index >= len(questions):
                raise NavigationOutOfRange(index, len(questions))

            with_retry(
                lambda: self.store.update_current_index(session_id, index),
                "save navigation position",
                self.persistence_retry,
            )
            sections = self._section_ranges(session.package_id, questions)
            return NavigationState(
                session_id=session_id,
                current_index=index,
                question_id=questions[index].question_id,
                question_count=len(questions),
                section=next(
                    (s for s in sections if s.start_index <= index <= s.end_index),
                    None,
                ),
            )

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def heartbeat(self, session_id: int, user_id: str) -> TimerState:
        """
        Server-side reconcile requested by the client.

        Persists a checkpoint when the checkpoint interval has elapsed and
        triggers expiry when due.
        """
        with self.locks.hold(session_id):
            session = self._load_owned(session_id, user_id)
            now = self.clock()
            if session.status != SessionStatus.IN_PROGRESS:
                return self._timer_state(session, now)

            timer, tick, session = self._advance(session, now)
            if not tick.expired:
                last = session.last_checkpoint_at
                if last is None or (
                    elapsed_seconds(last, now) >= settings.CHECKPOINT_INTERVAL_SECONDS
                ):
                    self._checkpoint(session_id, timer, now)
            return self._timer_state(session, now, timer=timer)

    def open_timer(self, session_id: int, user_id: str) -> Tuple[SessionView, Optional[SessionTimer]]:
        """
        Reconcile a session and hand out its live timer for streaming.

        Returns:
            The session view and a timer, or None for the timer when the
            session is not running (including when it just expired).
        """
        with self.locks.hold(session_id):
            session = self._load_owned(session_id, user_id)
            now = self.clock()
            if session.status != SessionStatus.IN_PROGRESS:
                return self._view(session, now), None
            timer, tick, session = self._advance(session, now)
            view = self._view(session, now, timer=timer)
            if tick.expired:
                return view, None
            # Hand out a timer without this request's expiry callbacks bound
            return view, SessionTimer.resume(
                session_id, timer.checkpoint(now), session.duration_seconds, now
            )

    def save_live_checkpoint(self, session_id: int, state: TimerCheckpointState) -> bool:
        """Persist a checkpoint produced by a live countdown stream.

        Failures are logged and dropped; the stream keeps ticking.

        Returns:
            False once the session has left ``in_progress`` (nothing is
            written then), True otherwise
        """
        try:
            stored = with_retry(
                lambda: self.store.save_checkpoint(
                    session_id,
                    state.remaining_seconds,
                    state.checkpoint_at,
                    expiry_fired=state.expiry_fired,
                ),
                "save timer checkpoint",
                self.persistence_retry,
            )
        except PersistenceFailure as e:
            self._checkpoint_dropped(session_id, e)
            return True
        return stored is not None

    def expire_if_due(self, session_id: int) -> Optional[SubmissionOutcome]:
        """
        Reconcile an in-progress session and submit it if its time is up.

        Used by the expiry watcher; performs no ownership check.

        Returns:
            The submission outcome when the session expired, else None
        """
        with self.locks.hold(session_id):
            session = self.store.get_session(session_id)
            if session is None or session.status != SessionStatus.IN_PROGRESS:
                return None
            _, tick, _ = self._advance(session, self.clock())
            if not tick.expired:
                return None
            return self._outcome(self._require(session_id), already_submitted=False)

    def resume_pending_submission(self, session_id: int) -> Optional[SubmissionOutcome]:
        """Finish a session left in ``submitting`` by a failed submission."""
        with self.locks.hold(session_id):
            session = self.store.get_session(session_id)
            if session is None or session.status != SessionStatus.SUBMITTING:
                return None
            logger.info(
                f"Resuming pending submission for session {session_id}",
                extra={"session_id": session_id},
            )
            return self._finish_submission(session, self.clock())

    # ------------------------------------------------------------------
    # Submission and results
    # ------------------------------------------------------------------

    def submit(self, session_id: int, user_id: str) -> SubmissionOutcome:
        """
        Submit a session manually.

        Repeated calls after the first return the existing result. A session
        found in ``submitting`` has its pending submission resumed.

        Raises:
            InvalidTransition: If the session was never started or was abandoned
            SubmissionPersistenceFailure: If the result could not be saved; the
                session stays ``submitting`` and the call may be repeated
        """
        with self.locks.hold(session_id):
            session = self._load_owned(session_id, user_id)
            now = self.clock()
            if session.status == SessionStatus.IN_PROGRESS:
                # Expiry takes precedence: a late manual submit becomes a timer submit
                timer, tick, session = self._advance(session, now)
                if tick.expired:
                    return self._outcome(session, already_submitted=False)
                # Freeze the remaining time shown on the completed session
                self._checkpoint(session_id, timer, now)
            return self._submit(session, SubmitTrigger.MANUAL, now)

    def get_score_result(self, session_id: int, user_id: str) -> ScoreResult:
        """
        Raises:
            ResultNotReady: If the session has not completed
        """
        session = self._load_owned(session_id, user_id)
        if session.status != SessionStatus.COMPLETED:
            raise ResultNotReady(session_id, session.status.value)
        result = self.store.latest_score_result(session_id)
        if result is None:
            raise ResultNotReady(session_id, session.status.value)
        return result

    def _submit(
        self, session: TryoutSession, trigger: SubmitTrigger, now: datetime
    ) -> SubmissionOutcome:
        if session.status == SessionStatus.COMPLETED:
            return self._outcome(session, already_submitted=True)
        if session.status in (SessionStatus.NOT_STARTED, SessionStatus.ABANDONED):
            raise InvalidTransition(session.id, session.status.value, "submit")

        if session.status == SessionStatus.IN_PROGRESS:
            won = self.store.compare_and_set_status(
                session.id,
                SessionStatus.IN_PROGRESS,
                SessionStatus.SUBMITTING,
                submit_trigger=trigger,
            )
            session = self._require(session.id)
            if not won:
                # Another writer froze the session first
                if session.status == SessionStatus.COMPLETED:
                    return self._outcome(session, already_submitted=True)
                if session.status != SessionStatus.SUBMITTING:
                    raise InvalidTransition(session.id, session.status.value, "submit")
            else:
                logger.info(
                    f"Submitting session {session.id} ({trigger.value})",
                    extra={"session_id": session.id, "trigger": trigger.value},
                )
                if trigger == SubmitTrigger.TIMER:
                    metrics.record_timer_expired()

        return self._finish_submission(session, now)

    def _finish_submission(
        self, session: TryoutSession, now: datetime
    ) -> SubmissionOutcome:
        """Score a ``submitting`` session, persist the result and complete it."""
        trigger = session.submit_trigger or SubmitTrigger.MANUAL
        deadline = self._deadline(session)
        completed_at = min(now, deadline) if deadline is not None else now

        score = self._score(session, deadline)
        try:
            with_retry(
                lambda: self.store.save_score_result(session, score, now),
                "persist score result",
                self.submission_retry,
            )
            with_retry(
                lambda: self.store.compare_and_set_status(
                    session.id,
                    SessionStatus.SUBMITTING,
                    SessionStatus.COMPLETED,
                    completed_at=completed_at,
                    time_spent_seconds=self._time_spent(session, completed_at),
                ),
                "complete session",
                self.submission_retry,
            )
        except PersistenceFailure as e:
            metrics.record_submission_failure()
            logger.error(
                f"Submission for session {session.id} could not be persisted; "
                f"session stays submitting: {e}",
                extra={"session_id": session.id},
            )
            raise SubmissionPersistenceFailure(session.id, e.original_error) from e

        session = self._require(session.id)
        metrics.record_submission(trigger.value, session.time_spent_seconds)
        logger.info(
            f"Session {session.id} completed ({trigger.value}): "
            f"score {score.total_score}/{score.max_score}",
            extra={"session_id": session.id, "trigger": trigger.value},
        )

        if settings.RANKINGS_REFRESH_ON_COMPLETION:
            with graceful_failure(
                "refresh package rankings",
                logger,
                context={"package_id": session.package_id, "session_id": session.id},
            ):
                self.ranking_service.recompute_rankings(session.package_id)

        return self._outcome(session, already_submitted=False)

    def _score(self, session: TryoutSession, deadline: Optional[datetime]) -> SessionScore:
        questions = self.question_bank.get_questions(session.package_id)
        package = self.question_bank.get_package(session.package_id)
        sections = self.question_bank.get_sections(session.package_id)

        answers: List[AnswerEntry] = []
        cutoff = (
            deadline + timedelta(seconds=settings.SUBMISSION_GRACE_SECONDS)
            if deadline is not None
            else None
        )
        for entry in self._ledger(session.id).snapshot():
            if cutoff is not None and ensure_timezone_aware(entry.answered_at) > cutoff:
                logger.warning(
                    f"Ignoring answer to question {entry.question_id} in session "
                    f"{session.id}: recorded after the deadline",
                    extra={"session_id": session.id, "question_id": entry.question_id},
                )
                continue
            answers.append(entry)

        return score_session(
            ScoringSession(
                session_id=session.id,
                questions=[QuestionRef(q.question_id, q.section_id) for q in questions],
                passing_grade=package.passing_grade,
                section_names={s.section_id: s.name for s in sections},
            ),
            answers,
            build_answer_key(questions),
        )

    def _outcome(self, session: TryoutSession, already_submitted: bool) -> SubmissionOutcome:
        result = self.store.latest_score_result(session.id)
        if result is None:
            raise ResultNotReady(session.id, session.status.value)
        return SubmissionOutcome(
            session_id=session.id,
            status=session.status,
            trigger=session.submit_trigger,
            result=result,
            already_submitted=already_submitted,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, session_id: int) -> TryoutSession:
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _load_owned(self, session_id: int, user_id: str) -> TryoutSession:
        session = self._require(session_id)
        if session.user_id != user_id:
            raise SessionAccessDenied(session_id)
        return session

    @staticmethod
    def _require_in_progress(session: TryoutSession, operation: str) -> None:
        if session.status != SessionStatus.IN_PROGRESS:
            raise InvalidTransition(session.id, session.status.value, operation)

    def _open_for_write(
        self, session_id: int, user_id: str, operation: str
    ) -> Tuple[TryoutSession, SessionTimer, datetime]:
        """Load, check ownership and status, and reconcile before a write."""
        session = self._load_owned(session_id, user_id)
        now = self.clock()
        self._require_in_progress(session, operation)
        timer, tick, session = self._advance(session, now)
        if tick.expired:
            raise InvalidTransition(session_id, session.status.value, operation)
        return session, timer, now

    def _stored_checkpoint(self, session: TryoutSession, now: datetime) -> TimerCheckpointState:
        checkpoint = self.store.latest_checkpoint(session.id)
        if checkpoint is not None:
            return TimerCheckpointState(
                remaining_seconds=checkpoint.remaining_seconds,
                checkpoint_at=ensure_timezone_aware(checkpoint.checkpoint_at),
                expiry_fired=checkpoint.expiry_fired,
            )
        anchor = session.started_at or now
        return TimerCheckpointState(
            remaining_seconds=float(session.duration_seconds),
            checkpoint_at=ensure_timezone_aware(anchor),
        )

    def _advance(
        self, session: TryoutSession, now: datetime
    ) -> Tuple[SessionTimer, TickResult, TryoutSession]:
        """
        Reconcile an in-progress session's timer to ``now``.

        When the timer has run out the expiry checkpoint is written and the
        session is submitted with the timer trigger before returning.

        Returns:
            (timer, tick result, refreshed session)
        """
        timer = SessionTimer.resume(
            session.id,
            self._stored_checkpoint(session, now),
            session.duration_seconds,
            now,
        )
        timer.on_expire(lambda: self._record_expiry(session.id, timer, now))
        tick = timer.tick(now)
        if tick.expired:
            self._submit(session, SubmitTrigger.TIMER, now)
            session = self._require(session.id)
        return timer, tick, session

    def _record_expiry(self, session_id: int, timer: SessionTimer, now: datetime) -> None:
        logger.info(
            f"Time is up for session {session_id}",
            extra={"session_id": session_id},
        )
        self._checkpoint(session_id, timer, now)

    def _checkpoint(self, session_id: int, timer: SessionTimer, now: datetime) -> None:
        """Persist the timer state; failures are logged and dropped."""
        self.save_live_checkpoint(session_id, timer.checkpoint(now))

    @staticmethod
    def _checkpoint_dropped(session_id: int, error: Exception) -> None:
        metrics.record_checkpoint_dropped()
        logger.warning(
            f"Dropped timer checkpoint for session {session_id}: {error}",
            extra={"session_id": session_id},
        )

    def _write_entry(
        self,
        session_id: int,
        entry: AnswerEntry,
        timer: SessionTimer,
        now: datetime,
    ) -> None:
        with_retry(
            lambda: self.store.upsert_answer(
                session_id,
                entry.question_id,
                entry.option_key,
                entry.flagged,
                entry.answered_at,
            ),
            "save answer",
            self.persistence_retry,
        )
        self._checkpoint(session_id, timer, now)

    def _ledger(self, session_id: int) -> AnswerLedger:
        return AnswerLedger(
            session_id,
            (
                AnswerEntry(
                    question_id=row.question_id,
                    option_key=row.selected_option_key,
                    flagged=row.flagged,
                    answered_at=ensure_timezone_aware(row.answered_at),
                )
                for row in self.store.load_answers(session_id)
            ),
        )

    def _question(self, session: TryoutSession, question_id: int) -> QuestionRecord:
        for question in self.question_bank.get_questions(session.package_id):
            if question.question_id == question_id:
                return question
        raise QuestionNotInPackage(question_id, session.package_id)

    def _section_ranges(
        self, package_id: int, questions: List[QuestionRecord]
    ) -> List[SectionRange]:
        names = {s.section_id: s.name for s in self.question_bank.get_sections(package_id)}
        ranges: List[SectionRange] = []
        for index, question in enumerate(questions):
            if question.section_id is None or question.section_id not in names:
                continue
            if ranges and ranges[-1].section_id == question.section_id:
                last = ranges[-1]
                ranges[-1] = SectionRange(
                    last.section_id, last.name, last.start_index, index
                )
            else:
                ranges.append(
                    SectionRange(
                        question.section_id, names[question.section_id], index, index
                    )
                )
        return ranges

    @staticmethod
    def _deadline(session: TryoutSession) -> Optional[datetime]:
        if session.started_at is None:
            return None
        return ensure_timezone_aware(session.started_at) + timedelta(
            seconds=session.duration_seconds
        )

    @staticmethod
    def _time_spent(session: TryoutSession, end: datetime) -> int:
        if session.started_at is None:
            return 0
        spent = elapsed_seconds(session.started_at, end)
        return int(min(max(spent, 0.0), session.duration_seconds))

    def _timer_state(
        self,
        session: TryoutSession,
        now: datetime,
        timer: Optional[SessionTimer] = None,
    ) -> TimerState:
        running = session.status == SessionStatus.IN_PROGRESS
        if session.status == SessionStatus.NOT_STARTED:
            remaining = float(session.duration_seconds)
        elif running:
            if timer is None:
                timer = SessionTimer.resume(
                    session.id,
                    self._stored_checkpoint(session, now),
                    session.duration_seconds,
                    now,
                )
            remaining = timer.remaining_at(now)
        else:
            # Frozen at the last checkpoint written before the session ended
            checkpoint = self.store.latest_checkpoint(session.id)
            remaining = checkpoint.remaining_seconds if checkpoint is not None else 0.0
        return TimerState(
            remaining_seconds=round(remaining, 3),
            duration_seconds=session.duration_seconds,
            running=running,
            expired=remaining <= 0.0 or session.submit_trigger == SubmitTrigger.TIMER,
            urgency=timer_urgency(remaining, session.duration_seconds),
            server_time=now,
        )

    def _view(
        self,
        session: TryoutSession,
        now: datetime,
        *,
        timer: Optional[SessionTimer] = None,
        resumed: bool = False,
    ) -> SessionView:
        questions = self.question_bank.get_questions(session.package_id)
        return SessionView(
            session_id=session.id,
            user_id=session.user_id,
            package_id=session.package_id,
            status=session.status,
            started_at=(
                ensure_timezone_aware(session.started_at) if session.started_at else None
            ),
            duration_seconds=session.duration_seconds,
            current_index=session.current_index,
            question_ids=tuple(q.question_id for q in questions),
            answers=tuple(self._ledger(session.id).snapshot()),
            timer=self._timer_state(session, now, timer=timer),
            sections=tuple(self._section_ranges(session.package_id, questions)),
            submit_trigger=session.submit_trigger,
            completed_at=(
                ensure_timezone_aware(session.completed_at) if session.completed_at else None
            ),
            resumed=resumed,
        )
