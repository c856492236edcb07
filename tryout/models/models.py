"""
Database models for the tryout engine.

Question bank tables (packages, sections, questions) are owned by the
content system and only read here. Session, answer, checkpoint, result and
ranking tables are owned by the engine.
"""
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum

from .base import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, enum.Enum):
    """Tryout session status enumeration.

    Statuses only move forward:
    not_started -> in_progress -> submitting -> completed,
    with in_progress -> abandoned as the only side exit.
    """

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ABANDONED)


class SubmitTrigger(str, enum.Enum):
    """What caused a session to be submitted."""

    MANUAL = "manual"
    TIMER = "timer"


class QuestionKind(str, enum.Enum):
    """Question scoring kind."""

    SINGLE_CHOICE = "single_choice"
    WEIGHTED = "weighted"


# Statuses covered by the one-live-session-per-(user, package) index.
# Enum columns store member NAMES, so the partial index predicate uses names.
NON_TERMINAL_STATUSES = (
    SessionStatus.NOT_STARTED,
    SessionStatus.IN_PROGRESS,
    SessionStatus.SUBMITTING,
)
_NON_TERMINAL_PREDICATE = text(
    "status IN ({})".format(", ".join(f"'{s.name}'" for s in NON_TERMINAL_STATUSES))
)


class TryoutPackage(Base):
    """A purchasable tryout: an ordered set of questions with a time limit."""

    __tablename__ = "tryout_packages"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=False)
    # Minimum total score required to pass; NULL means no pass/fail verdict
    passing_grade = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)

    sections = relationship(
        "TryoutSection",
        back_populates="package",
        order_by="TryoutSection.section_order",
    )
    questions = relationship("Question", back_populates="package")

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_packages_duration_positive"),
    )


class TryoutSection(Base):
    """A named block of questions inside a package (e.g. a subject)."""

    __tablename__ = "tryout_sections"

    id = Column(Integer, primary_key=True, index=True)
    package_id = Column(
        Integer,
        ForeignKey("tryout_packages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    section_order = Column(Integer, nullable=False, default=0)

    package = relationship("TryoutPackage", back_populates="sections")
    questions = relationship("Question", back_populates="section")


class Question(Base):
    """Question bank entry."""

    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    package_id = Column(
        Integer,
        ForeignKey("tryout_packages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    section_id = Column(
        Integer,
        ForeignKey("tryout_sections.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    question_number = Column(Integer, nullable=False)
    question_text = Column(Text, nullable=False)
    question_kind = Column(
        Enum(QuestionKind), default=QuestionKind.SINGLE_CHOICE, nullable=False
    )
    options = Column(JSON, nullable=False)  # {"A": "text", "B": "text", ...}
    # Answer key for single-choice questions; NULL means the key is missing
    correct_option_key = Column(String(16), nullable=True)
    point_value = Column(Float, default=1.0, nullable=False)
    # Points per option for weighted questions: {"A": 5, "B": 3, ...}
    weighted_options = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    package = relationship("TryoutPackage", back_populates="questions")
    section = relationship("TryoutSection", back_populates="questions")

    __table_args__ = (
        Index("ix_questions_package_number", "package_id", "question_number"),
    )


class TryoutSession(Base):
    """One user's attempt at one tryout package."""

    __tablename__ = "tryout_sessions"

    id = Column(Integer, primary_key=True, index=True)
    # Identity is owned by the external auth service; stored as its subject string
    user_id = Column(String(128), nullable=False, index=True)
    package_id = Column(
        Integer,
        ForeignKey("tryout_packages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status = Column(
        Enum(SessionStatus),
        default=SessionStatus.NOT_STARTED,
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Integer, nullable=False)
    last_checkpoint_at = Column(DateTime(timezone=True), nullable=True)
    current_index = Column(Integer, default=0, nullable=False)
    submit_trigger = Column(Enum(SubmitTrigger), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    time_spent_seconds = Column(Integer, nullable=True)

    answers = relationship(
        "Answer", back_populates="session", cascade="all, delete-orphan"
    )
    checkpoints = relationship(
        "TimerCheckpoint",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="TimerCheckpoint.id",
    )
    score_results = relationship(
        "ScoreResult",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ScoreResult.version",
    )

    __table_args__ = (
        # At most one non-terminal session per (user, package)
        Index(
            "uq_tryout_sessions_live_user_package",
            "user_id",
            "package_id",
            unique=True,
            sqlite_where=_NON_TERMINAL_PREDICATE,
            postgresql_where=_NON_TERMINAL_PREDICATE,
        ),
        Index("ix_tryout_sessions_package_status", "package_id", "status"),
        CheckConstraint(
            "duration_seconds > 0", name="ck_tryout_sessions_duration_positive"
        ),
    )


class Answer(Base):
    """Answer ledger row: the latest response to one question in one session."""

    __tablename__ = "answers"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer,
        ForeignKey("tryout_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_id = Column(
        Integer,
        ForeignKey("questions.id", ondelete="CASCADE"),
        nullable=False,
    )
    selected_option_key = Column(String(16), nullable=True)
    flagged = Column(Boolean, default=False, nullable=False)
    answered_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)

    session = relationship("TryoutSession", back_populates="answers")

    __table_args__ = (
        UniqueConstraint("session_id", "question_id", name="uq_answers_session_question"),
    )


class TimerCheckpoint(Base):
    """Append-only history of persisted timer state."""

    __tablename__ = "timer_checkpoints"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer,
        ForeignKey("tryout_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    remaining_seconds = Column(Float, nullable=False)
    checkpoint_at = Column(DateTime(timezone=True), nullable=False)
    expiry_fired = Column(Boolean, default=False, nullable=False)

    session = relationship("TryoutSession", back_populates="checkpoints")

    __table_args__ = (
        CheckConstraint(
            "remaining_seconds >= 0", name="ck_timer_checkpoints_remaining_non_negative"
        ),
    )


class ScoreResult(Base):
    """Immutable scoring outcome of a completed session.

    Rows are never edited; a re-grade inserts a new version.
    """

    __tablename__ = "score_results"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer,
        ForeignKey("tryout_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version = Column(Integer, default=1, nullable=False)
    user_id = Column(String(128), nullable=False, index=True)
    package_id = Column(
        Integer,
        ForeignKey("tryout_packages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    correct_count = Column(Integer, nullable=False)
    wrong_count = Column(Integer, nullable=False)
    unanswered_count = Column(Integer, nullable=False)
    ungraded_count = Column(Integer, default=0, nullable=False)
    total_score = Column(Float, nullable=False)
    max_score = Column(Float, nullable=False)
    percentage = Column(Float, nullable=False)
    passed = Column(Boolean, nullable=True)
    section_results = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)

    session = relationship("TryoutSession", back_populates="score_results")

    __table_args__ = (
        UniqueConstraint("session_id", "version", name="uq_score_results_session_version"),
    )


class RankingEntry(Base):
    """Derived leaderboard row; the package's rows are replaced on every recompute."""

    __tablename__ = "ranking_entries"

    id = Column(Integer, primary_key=True, index=True)
    package_id = Column(
        Integer,
        ForeignKey("tryout_packages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    session_id = Column(
        Integer,
        ForeignKey("tryout_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(String(128), nullable=False, index=True)
    score = Column(Float, nullable=False)
    rank_position = Column(Integer, nullable=False)
    percentile = Column(Float, nullable=False)
    total_participants = Column(Integer, nullable=False)
    computed_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("package_id", "session_id", name="uq_ranking_entries_package_session"),
        Index("ix_ranking_entries_package_rank", "package_id", "rank_position"),
    )
