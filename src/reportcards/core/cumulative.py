from typing import Callable, Dict, Iterable, List, Optional, Tuple

from reportcards.core.grading import GradeScale, default_scale
from reportcards.core.records import (
    CumulativeSummary,
    StudentMarksRecord,
    SubjectAssessment,
    SubjectAverage,
    TermSummary,
    normalize_term_label,
    term_index,
)
from reportcards.core.scores import round_half_up

ApprovalCheck = Callable[[StudentMarksRecord, SubjectAssessment], bool]


def _mean(values: List[int]) -> int:
    if not values:
        return 0
    return round_half_up(sum(values) / len(values))


def _trend(history: List[Tuple[int, int]]) -> str:
    if len(history) < 2:
        return "stable"
    delta = history[-1][1] - history[0][1]
    if delta > 0:
        return "up"
    if delta < 0:
        return "down"
    return "stable"


def summarize_records(
    student_id: str,
    session: str,
    records: Iterable[StudentMarksRecord],
    is_approved: ApprovalCheck,
    scale: GradeScale = default_scale,
) -> Optional[CumulativeSummary]:
    """Aggregate a student's approved subject results across the terms of a session.

    Returns ``None`` when nothing has been approved yet. ``position`` and
    ``total_students`` are left for the caller, which knows the class.
    """
    term_percents: Dict[str, List[int]] = {}
    subject_history: Dict[str, List[Tuple[int, int]]] = {}

    for record in records:
        if record.student_id != student_id or record.session != session:
            continue
        term = normalize_term_label(record.term)
        for name, assessment in record.subjects.items():
            if assessment.result is None or not is_approved(record, assessment):
                continue
            term_percents.setdefault(term, []).append(assessment.result.average_percent)
            subject_history.setdefault(name, []).append((term_index(term), assessment.result.average_percent))

    if not term_percents:
        return None

    terms = tuple(
        TermSummary(
            term=term,
            average=_mean(values),
            grade=scale.grade_for_percentage(_mean(values)),
            subject_count=len(values),
        )
        for term, values in sorted(term_percents.items(), key=lambda item: term_index(item[0]))
    )

    subject_averages = []
    for name in sorted(subject_history):
        history = sorted(subject_history[name])
        average = _mean([value for _, value in history])
        subject_averages.append(
            SubjectAverage(
                subject=name,
                average=average,
                grade=scale.grade_for_percentage(average),
                trend=_trend(history),
            )
        )

    average = _mean([term.average for term in terms])
    return CumulativeSummary(
        student_id=student_id,
        session=session,
        average=average,
        grade=scale.classify(average, 100),
        terms=terms,
        subject_averages=tuple(subject_averages),
    )
