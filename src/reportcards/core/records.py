from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Optional, Tuple

from reportcards.core.scores import ComponentScores, round_half_up

TERM_LABELS: Dict[str, str] = {
    "first": "First Term",
    "first term": "First Term",
    "second": "Second Term",
    "second term": "Second Term",
    "third": "Third Term",
    "third term": "Third Term",
}

TERM_ORDER: Tuple[str, ...] = ("First Term", "Second Term", "Third Term")


def normalize_term_label(term: Optional[str]) -> str:
    if not term or not term.strip():
        return "First Term"
    text = term.strip()
    return TERM_LABELS.get(text.lower(), " ".join(part.capitalize() for part in text.split()))


def term_index(term: str) -> int:
    label = normalize_term_label(term)
    if label in TERM_ORDER:
        return TERM_ORDER.index(label)
    return len(TERM_ORDER)


@dataclass(frozen=True)
class AssessmentResult:
    continuous_total: int
    grand_total: int
    obtainable_total: int
    obtained_total: int
    average_percent: int
    grade: str
    remark: str
    position: Optional[int] = None


@dataclass(frozen=True)
class SubjectAssessment:
    student_id: str
    class_id: str
    subject: str
    term: str
    session: str
    student_name: str = ""
    scores: ComponentScores = field(default_factory=ComponentScores)
    obtainable_total: int = 100
    teacher_remark: str = ""
    result: Optional[AssessmentResult] = None

    @property
    def grand_total(self) -> int:
        return self.result.grand_total if self.result else 0

    @property
    def position(self) -> Optional[int]:
        return self.result.position if self.result else None


@dataclass(frozen=True)
class StudentMarksRecord:
    student_id: str
    term: str
    session: str
    class_id: str = ""
    student_name: str = ""
    subjects: Dict[str, SubjectAssessment] = field(default_factory=dict)
    overall_average: int = 0
    overall_position: Optional[int] = None
    status: str = ""
    number_in_class: int = 0
    last_updated: Optional[datetime] = None

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.student_id, self.term, self.session)

    def with_subject(self, assessment: SubjectAssessment, updated_at: Optional[datetime] = None) -> "StudentMarksRecord":
        subjects = dict(self.subjects)
        subjects[assessment.subject] = assessment
        return replace(
            self,
            class_id=assessment.class_id or self.class_id,
            student_name=assessment.student_name or self.student_name,
            subjects=subjects,
            overall_average=overall_average(subjects.values()),
            last_updated=updated_at or self.last_updated,
        )


def overall_average(assessments) -> int:
    percents = [item.result.average_percent for item in assessments if item.result is not None]
    if not percents:
        return 0
    return round_half_up(sum(percents) / len(percents))


@dataclass(frozen=True)
class TermSummary:
    term: str
    average: int
    grade: str
    subject_count: int


@dataclass(frozen=True)
class SubjectAverage:
    subject: str
    average: int
    grade: str
    trend: str


@dataclass(frozen=True)
class CumulativeSummary:
    student_id: str
    session: str
    average: int
    grade: str
    position: Optional[int] = None
    total_students: int = 0
    terms: Tuple[TermSummary, ...] = ()
    subject_averages: Tuple[SubjectAverage, ...] = ()
