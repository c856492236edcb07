"""
Tryout Scoring Module.

Pure scoring of a finished session: given the session's ordered questions,
the answer ledger snapshot and the answer key, produce the score totals and
per-section subtotals. The same inputs always produce the same output; no
clock, database or randomness is involved.

Rules
=====
- No answer (or a cleared answer) counts as **unanswered** and earns 0 points.
- Single-choice questions earn ``point_value`` when the selected option equals
  the key, 0 otherwise.
- Weighted questions earn the points configured for the selected option.
  They count as **correct** when the selection carries the maximum points
  and **wrong** otherwise.
- A question missing from the answer key is **ungraded**: logged, excluded
  from ``max_score`` and never fatal.
- ``percentage = total_score / max_score * 100``, or 0 when ``max_score`` is 0.
- ``passed`` is ``total_score >= passing_grade`` when the package defines a
  passing grade, otherwise ``None``.

Scores are rounded to 4 decimals so equal scores compare exactly when ranked.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from tryout.core.engine.answer_ledger import AnswerEntry

logger = logging.getLogger(__name__)

SCORE_PRECISION = 4
PERCENTAGE_PRECISION = 2


@dataclass(frozen=True)
class QuestionRef:
    """A question's position in a session: identity and section."""

    question_id: int
    section_id: Optional[int] = None


@dataclass(frozen=True)
class ScoringSession:
    """The parts of a session that scoring depends on."""

    session_id: int
    questions: Sequence[QuestionRef]  # In presentation order
    passing_grade: Optional[float] = None
    section_names: Mapping[int, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AnswerKeyEntry:
    """Grading data for one question."""

    correct_option_key: Optional[str] = None
    point_value: float = 1.0
    weighted_points: Optional[Mapping[str, float]] = None  # option key -> points

    @property
    def max_points(self) -> float:
        if self.weighted_points is not None:
            return max(self.weighted_points.values(), default=0.0)
        return self.point_value

    def points_for(self, option_key: str) -> float:
        if self.weighted_points is not None:
            return float(self.weighted_points.get(option_key, 0.0))
        return self.point_value if option_key == self.correct_option_key else 0.0

    def is_correct(self, option_key: str) -> bool:
        if self.weighted_points is not None:
            return self.points_for(option_key) >= self.max_points > 0
        return option_key == self.correct_option_key


AnswerKey = Mapping[int, AnswerKeyEntry]


@dataclass(frozen=True)
class SectionScore:
    """Subtotals for one section."""

    section_id: Optional[int]
    name: Optional[str]
    correct_count: int
    wrong_count: int
    unanswered_count: int
    ungraded_count: int
    total_score: float
    max_score: float
    percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section_id": self.section_id,
            "name": self.name,
            "correct_count": self.correct_count,
            "wrong_count": self.wrong_count,
            "unanswered_count": self.unanswered_count,
            "ungraded_count": self.ungraded_count,
            "total_score": self.total_score,
            "max_score": self.max_score,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class SessionScore:
    """Scoring outcome of one session."""

    session_id: int
    correct_count: int
    wrong_count: int
    unanswered_count: int
    ungraded_count: int
    total_score: float
    max_score: float
    percentage: float
    passed: Optional[bool]
    sections: Tuple[SectionScore, ...]

    def section_results(self) -> List[Dict[str, Any]]:
        """Section subtotals in a JSON-serializable form."""
        return [section.to_dict() for section in self.sections]


@dataclass
class _Tally:
    correct: int = 0
    wrong: int = 0
    unanswered: int = 0
    ungraded: int = 0
    score: float = 0.0
    max_score: float = 0.0


def calculate_percentage(total_score: float, max_score: float) -> float:
    """Score as a percentage of the maximum, 0 when nothing is gradable."""
    if max_score <= 0:
        return 0.0
    return round(total_score / max_score * 100, PERCENTAGE_PRECISION)


def score_session(
    session: ScoringSession,
    answers: Iterable[AnswerEntry],
    answer_key: AnswerKey,
) -> SessionScore:
    """
    Score a session.

    Args:
        session: The session's ordered questions and package grading settings
        answers: Answer ledger snapshot (entries for questions outside the
            session are ignored)
        answer_key: Grading data keyed by question id

    Returns:
        SessionScore with totals and per-section subtotals. Sections appear
        in the order their first question appears in the session.
    """
    by_question: Dict[int, AnswerEntry] = {a.question_id: a for a in answers}

    overall = _Tally()
    sections: Dict[Optional[int], _Tally] = {}

    for ref in session.questions:
        section = sections.setdefault(ref.section_id, _Tally())
        key = answer_key.get(ref.question_id)
        answer = by_question.get(ref.question_id)

        if key is None:
            logger.warning(
                f"Scoring key missing for question {ref.question_id} in session "
                f"{session.session_id}; marking ungraded",
                extra={"session_id": session.session_id},
            )
            overall.ungraded += 1
            section.ungraded += 1
            continue

        for tally in (overall, section):
            tally.max_score += key.max_points

        if answer is None or not answer.answered:
            overall.unanswered += 1
            section.unanswered += 1
            continue

        option_key = answer.option_key or ""
        points = key.points_for(option_key)
        correct = key.is_correct(option_key)
        for tally in (overall, section):
            tally.score += points
            if correct:
                tally.correct += 1
            else:
                tally.wrong += 1

    total_score = round(overall.score, SCORE_PRECISION)
    max_score = round(overall.max_score, SCORE_PRECISION)

    passed: Optional[bool] = None
    if session.passing_grade is not None:
        passed = total_score >= session.passing_grade

    section_scores = tuple(
        SectionScore(
            section_id=section_id,
            name=session.section_names.get(section_id) if section_id is not None else None,
            correct_count=tally.correct,
            wrong_count=tally.wrong,
            unanswered_count=tally.unanswered,
            ungraded_count=tally.ungraded,
            total_score=round(tally.score, SCORE_PRECISION),
            max_score=round(tally.max_score, SCORE_PRECISION),
            percentage=calculate_percentage(tally.score, tally.max_score),
        )
        for section_id, tally in sections.items()
    )

    return SessionScore(
        session_id=session.session_id,
        correct_count=overall.correct,
        wrong_count=overall.wrong,
        unanswered_count=overall.unanswered,
        ungraded_count=overall.ungraded,
        total_score=total_score,
        max_score=max_score,
        percentage=calculate_percentage(total_score, max_score),
        passed=passed,
        sections=section_scores,
    )
