"""
Question bank access.

The question bank belongs to the content system; the engine only reads
packages, sections and questions through the ``QuestionBank`` interface.
``SqlQuestionBank`` reads the shared tables directly.
"""
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Mapping, Optional, Protocol

from sqlalchemy.orm import Session

from tryout.core.exceptions import PackageNotFound
from tryout.core.scoring import AnswerKeyEntry
from tryout.models import Question, QuestionKind, TryoutPackage, TryoutSection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageInfo:
    package_id: int
    title: str
    duration_seconds: int
    passing_grade: Optional[float]


@dataclass(frozen=True)
class SectionInfo:
    section_id: int
    name: str
    section_order: int


@dataclass(frozen=True)
class QuestionRecord:
    """A question as the engine sees it (no rendering content)."""

    question_id: int
    section_id: Optional[int]
    question_number: int
    kind: QuestionKind
    option_keys: FrozenSet[str]
    correct_option_key: Optional[str]
    point_value: float
    weighted_points: Optional[Mapping[str, float]]


class QuestionBank(Protocol):
    """Read-only question bank interface consumed by the engine."""

    def get_package(self, package_id: int) -> PackageInfo: ...

    def get_sections(self, package_id: int) -> List[SectionInfo]: ...

    def get_questions(self, package_id: int) -> List[QuestionRecord]: ...


class SqlQuestionBank:
    """QuestionBank backed by the shared database tables.

    Results are memoized per instance; an instance lives for one request.
    """

    def __init__(self, db: Session):
        self.db = db
        self._packages: Dict[int, PackageInfo] = {}
        self._sections: Dict[int, List[SectionInfo]] = {}
        self._questions: Dict[int, List[QuestionRecord]] = {}

    def get_package(self, package_id: int) -> PackageInfo:
        """
        Fetch an active package.

        Raises:
            PackageNotFound: If the package does not exist or is inactive
        """
        if package_id not in self._packages:
            package = (
                self.db.query(TryoutPackage)
                .filter(TryoutPackage.id == package_id, TryoutPackage.is_active.is_(True))
                .first()
            )
            if package is None:
                raise PackageNotFound(package_id)
            self._packages[package_id] = PackageInfo(
                package_id=package.id,
                title=package.title,
                duration_seconds=package.duration_minutes * 60,
                passing_grade=package.passing_grade,
            )
        return self._packages[package_id]

    def get_sections(self, package_id: int) -> List[SectionInfo]:
        if package_id not in self._sections:
            rows = (
                self.db.query(TryoutSection)
                .filter(TryoutSection.package_id == package_id)
                .order_by(TryoutSection.section_order, TryoutSection.id)
                .all()
            )
            self._sections[package_id] = [
                SectionInfo(section_id=s.id, name=s.name, section_order=s.section_order)
                for s in rows
            ]
        return self._sections[package_id]

    def get_questions(self, package_id: int) -> List[QuestionRecord]:
        """
        Active questions of a package in presentation order.

        Order: section order, then question number, then id. Questions
        without a section come after all sectioned questions.
        """
        if package_id not in self._questions:
            section_order = {
                s.section_id: index for index, s in enumerate(self.get_sections(package_id))
            }
            rows = (
                self.db.query(Question)
                .filter(Question.package_id == package_id, Question.is_active.is_(True))
                .all()
            )
            rows.sort(
                key=lambda q: (
                    section_order.get(q.section_id, len(section_order)),
                    q.question_number,
                    q.id,
                )
            )
            self._questions[package_id] = [_to_record(q) for q in rows]
        return self._questions[package_id]


def _to_record(question: Question) -> QuestionRecord:
    weighted = question.weighted_options
    return QuestionRecord(
        question_id=question.id,
        section_id=question.section_id,
        question_number=question.question_number,
        kind=question.question_kind,
        option_keys=frozenset((question.options or {}).keys()),
        correct_option_key=question.correct_option_key,
        point_value=question.point_value,
        weighted_points=(
            {str(k): float(v) for k, v in weighted.items()} if weighted else None
        ),
    )


def build_answer_key(questions: List[QuestionRecord]) -> Dict[int, AnswerKeyEntry]:
    """
    Build the scoring key for a package's questions.

    Questions without usable grading data (no correct option for a
    single-choice question, no option points for a weighted one) are left
    out, which makes scoring treat them as ungraded.
    """
    key: Dict[int, AnswerKeyEntry] = {}
    for question in questions:
        if question.kind == QuestionKind.WEIGHTED:
            if not question.weighted_points:
                continue
            key[question.question_id] = AnswerKeyEntry(
                point_value=question.point_value,
                weighted_points=question.weighted_points,
            )
        else:
            if question.correct_option_key is None:
                continue
            key[question.question_id] = AnswerKeyEntry(
                correct_option_key=question.correct_option_key,
                point_value=question.point_value,
            )
    return key
