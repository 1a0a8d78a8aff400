from dataclasses import replace
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Iterable, List, Tuple

from reportcards.core.grading import GradeScale, default_scale
from reportcards.core.ranking import rank_overall, recompute_cohort
from reportcards.core.records import StudentMarksRecord, SubjectAssessment
from reportcards.core.scores import SCORE_FIELDS, ComponentScores, round_half_up, to_number
from reportcards.core.workflow import LOCKED_STATUSES, WorkflowRecord
from reportcards.services.persistence import PersistenceAdapter
from reportcards.services.workflow_service import WorkflowService
from reportcards.state.editing_session import EditingSession

logger = logging.getLogger(__name__)


class GradebookError(Exception):
    pass


class ScoresLockedError(GradebookError):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


class GradebookService:
    def __init__(
        self,
        store: PersistenceAdapter,
        workflow: WorkflowService,
        scale: GradeScale = default_scale,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.store = store
        self.workflow = workflow
        self.scale = scale
        self.clock = clock

    def _require_selection(self, session: EditingSession, action: str) -> None:
        missing = session.missing_selection()
        if missing:
            raise GradebookError(f"Select a {', '.join(missing)} before {action}.")

    def ensure_editable(self, session: EditingSession) -> None:
        status = self.workflow.status(session.key)
        if status in LOCKED_STATUSES:
            raise ScoresLockedError(
                f"Scores for {session.key.describe()} are {status.value} and cannot be edited. "
                "Cancel the submission or ask an administrator to reset it first."
            )

    def recompute(self, session: EditingSession) -> List[SubjectAssessment]:
        session.cohort = recompute_cohort(session.cohort, session.maxima, self.scale)
        return session.cohort

    def load_cohort(self, session: EditingSession, students: Iterable[Tuple[str, str]]) -> List[SubjectAssessment]:
        self._require_selection(session, "loading scores")
        cohort: List[SubjectAssessment] = []
        for student_id, student_name in students:
            student_id = str(student_id)
            record = self.store.get_student_marks_record(student_id, session.term_label, session.session)
            stored = record.subjects.get(session.subject) if record else None
            if stored is not None:
                cohort.append(replace(stored, student_name=student_name or stored.student_name, class_id=session.class_id))
                continue
            cohort.append(
                SubjectAssessment(
                    student_id=student_id,
                    class_id=session.class_id,
                    subject=session.subject,
                    term=session.term_label,
                    session=session.session,
                    student_name=student_name,
                    obtainable_total=session.maxima.total,
                )
            )
        session.cohort = cohort
        session.dirty = False
        return self.recompute(session)

    def _replace_student(self, session: EditingSession, student_id: str, **changes: Any) -> List[SubjectAssessment]:
        self.ensure_editable(session)
        current = session.find(student_id)
        if current is None:
            raise GradebookError(f"Student {student_id} is not in {session.key.describe()}.")
        session.cohort = [
            replace(assessment, **changes) if assessment.student_id == student_id else assessment
            for assessment in session.cohort
        ]
        session.dirty = True
        return self.recompute(session)

    def update_score(self, session: EditingSession, student_id: str, field: str, value: Any) -> List[SubjectAssessment]:
        if field not in SCORE_FIELDS:
            raise GradebookError(f"Unknown score column '{field}'; expected one of {', '.join(SCORE_FIELDS)}.")
        current = session.find(student_id)
        scores = current.scores if current else ComponentScores()
        raw = scores.as_dict()
        raw[field] = value
        # Raw input is normalized during recompute.
        return self._replace_student(session, student_id, scores=ComponentScores(**raw))

    def update_obtainable(self, session: EditingSession, student_id: str, value: Any) -> List[SubjectAssessment]:
        number = to_number(value)
        obtainable = round_half_up(number) if number > 0 else 100
        return self._replace_student(session, student_id, obtainable_total=obtainable)

    def update_remark(self, session: EditingSession, student_id: str, remark: str) -> List[SubjectAssessment]:
        return self._replace_student(session, student_id, teacher_remark=(remark or "").strip())

    def save_cohort(self, session: EditingSession) -> List[StudentMarksRecord]:
        """Persist every student's subject result and refresh class positions.

        Records are written as one batch. On a persistence failure nothing is
        committed, the error propagates, and the session keeps its cohort and
        ``dirty`` flag so the teacher can retry.
        """
        self._require_selection(session, "saving scores")
        if not session.cohort:
            raise GradebookError(f"Add student scores for {session.key.describe()} before saving.")

        timestamp = self.clock()
        cohort = self.recompute(session)
        saved: List[StudentMarksRecord] = []
        for assessment in cohort:
            record = self.store.get_student_marks_record(assessment.student_id, session.term_label, session.session)
            if record is None:
                record = StudentMarksRecord(
                    student_id=assessment.student_id,
                    term=session.term_label,
                    session=session.session,
                    class_id=session.class_id,
                    student_name=assessment.student_name,
                )
            saved.append(record.with_subject(assessment, timestamp))

        class_records = {
            record.student_id: record
            for record in self.store.list_student_marks_records(session.session, session.term_label, session.class_id)
        }
        for record in saved:
            class_records[record.student_id] = record
        ranked = rank_overall(list(class_records.values()))

        self.store.save_student_marks_records(ranked)

        session.dirty = False
        logger.info("Saved %s marks records for %s", len(ranked), session.key.describe())
        by_id = {record.student_id: record for record in ranked}
        return [by_id[record.student_id] for record in saved]

    def submit_for_approval(self, session: EditingSession) -> List[WorkflowRecord]:
        self._require_selection(session, "submitting results")
        students = [(assessment.student_id, assessment.student_name) for assessment in session.cohort]
        return self.workflow.submit_for_approval(session.key, students, teacher_name=session.teacher_name)

    def class_distribution(self, session: EditingSession):
        return self.scale.distribution(
            assessment.result.average_percent for assessment in session.cohort if assessment.result is not None
        )
