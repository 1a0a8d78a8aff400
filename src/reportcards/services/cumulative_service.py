from dataclasses import replace
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from reportcards.core.cumulative import summarize_records
from reportcards.core.grading import GradeScale, default_scale
from reportcards.core.records import CumulativeSummary, StudentMarksRecord, SubjectAssessment, term_index
from reportcards.core.workflow import WorkflowStatus
from reportcards.services.persistence import MARKS_UPDATED_EVENT, WORKFLOW_UPDATED_EVENT, PersistenceAdapter

logger = logging.getLogger(__name__)


class CumulativeSummaryService:
    def __init__(self, store: PersistenceAdapter, scale: GradeScale = default_scale) -> None:
        self.store = store
        self.scale = scale
        self._cache: Dict[Tuple[str, str], Optional[CumulativeSummary]] = {}
        self._unsubscribers = [
            store.subscribe(WORKFLOW_UPDATED_EVENT, self._invalidate),
            store.subscribe(MARKS_UPDATED_EVENT, self._invalidate),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _invalidate(self, _payload: Any) -> None:
        self._cache.clear()

    def _approved_keys(self, session: str) -> Set[Tuple[str, str, str, str]]:
        return {
            (record.student_id, record.class_id, record.subject, record.term)
            for record in self.store.get_workflow_records()
            if record.session == session and record.status == WorkflowStatus.APPROVED
        }

    def summarize(self, student_id: str, session: str) -> Optional[CumulativeSummary]:
        """Cumulative standing of a student in a session, or ``None`` while nothing is approved."""
        cache_key = (student_id, session)
        if cache_key in self._cache:
            return self._cache[cache_key]

        records = self.store.list_student_marks_records(session)
        approved = self._approved_keys(session)

        def is_approved(record: StudentMarksRecord, assessment: SubjectAssessment) -> bool:
            class_id = assessment.class_id or record.class_id
            return (record.student_id, class_id, assessment.subject, record.term) in approved

        own = [record for record in records if record.student_id == student_id]
        summary = summarize_records(student_id, session, own, is_approved, self.scale)
        if summary is not None:
            summary = self._with_position(summary, own, records, is_approved)

        self._cache[cache_key] = summary
        return summary

    def _with_position(self, summary, own, records, is_approved) -> CumulativeSummary:
        class_id = self._current_class(own)
        by_student: Dict[str, List[StudentMarksRecord]] = {}
        for record in records:
            if record.class_id == class_id:
                by_student.setdefault(record.student_id, []).append(record)

        standings: List[Tuple[str, int]] = []
        for other_id in sorted(by_student):
            other = summary if other_id == summary.student_id else summarize_records(
                other_id, summary.session, by_student[other_id], is_approved, self.scale
            )
            if other is not None:
                standings.append((other_id, other.average))

        ordered = sorted(standings, key=lambda item: item[1], reverse=True)
        position = next(index for index, (sid, _) in enumerate(ordered, start=1) if sid == summary.student_id)
        logger.debug("Cumulative position for %s in %s: %s of %s", summary.student_id, class_id, position, len(ordered))
        return replace(summary, position=position, total_students=len(ordered))

    @staticmethod
    def _current_class(records: List[StudentMarksRecord]) -> str:
        latest = max(records, key=lambda record: term_index(record.term))
        return latest.class_id
