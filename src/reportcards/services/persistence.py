import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from reportcards.core.records import StudentMarksRecord, normalize_term_label
from reportcards.core.workflow import WorkflowKey, WorkflowRecord

logger = logging.getLogger(__name__)

WORKFLOW_UPDATED_EVENT = "reportcards:workflow-updated"
MARKS_UPDATED_EVENT = "reportcards:marks-updated"

Handler = Callable[[Any], None]


class PersistenceError(Exception):
    pass


class PersistenceAdapter(ABC):
    """Storage boundary for marks records and report-card workflow records.

    Concrete stores implement the load/save primitives; submission merging,
    key resets and change notification are shared here.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {}

    @abstractmethod
    def get_student_marks_record(self, student_id: str, term: str, session: str) -> Optional[StudentMarksRecord]:
        ...

    @abstractmethod
    def _write_student_marks_record(self, record: StudentMarksRecord) -> None:
        ...

    @abstractmethod
    def list_student_marks_records(
        self,
        session: str,
        term: Optional[str] = None,
        class_id: Optional[str] = None,
    ) -> List[StudentMarksRecord]:
        ...

    @abstractmethod
    def get_workflow_records(self) -> List[WorkflowRecord]:
        ...

    @abstractmethod
    def _write_workflow_records(self, records: List[WorkflowRecord]) -> None:
        ...

    def _write_student_marks_records(self, records: List[StudentMarksRecord]) -> None:
        """Write records one at a time. Stores that can commit a batch atomically override this."""
        for record in records:
            self._write_student_marks_record(record)

    def save_student_marks_record(self, record: StudentMarksRecord) -> None:
        self._write_student_marks_record(record)
        self._emit(MARKS_UPDATED_EVENT, record)

    def save_student_marks_records(self, records: List[StudentMarksRecord]) -> List[StudentMarksRecord]:
        records = list(records)
        self._write_student_marks_records(records)
        for record in records:
            self._emit(MARKS_UPDATED_EVENT, record)
        return records

    def save_workflow_records(self, records: List[WorkflowRecord]) -> List[WorkflowRecord]:
        records = list(records)
        self._write_workflow_records(records)
        self._emit(WORKFLOW_UPDATED_EVENT, list(records))
        return records

    def submit_report_cards_for_approval(self, batch: List[WorkflowRecord]) -> List[WorkflowRecord]:
        incoming = {record.id for record in batch}
        merged = [record for record in self.get_workflow_records() if record.id not in incoming]
        merged.extend(batch)
        return self.save_workflow_records(merged)

    def reset_report_card_submission(self, key: WorkflowKey) -> List[WorkflowRecord]:
        remaining = [record for record in self.get_workflow_records() if not key.matches(record)]
        return self.save_workflow_records(remaining)

    def subscribe(self, event_name: str, handler: Handler) -> Callable[[], None]:
        self._handlers.setdefault(event_name, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_name, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def _emit(self, event_name: str, payload: Any) -> None:
        for handler in list(self._handlers.get(event_name, [])):
            try:
                handler(payload)
            except Exception:
                logger.exception("Subscriber for %s failed", event_name)


def matches_filter(record: StudentMarksRecord, session: str, term: Optional[str], class_id: Optional[str]) -> bool:
    if record.session != session:
        return False
    if term is not None and record.term != normalize_term_label(term):
        return False
    if class_id is not None and record.class_id != class_id:
        return False
    return True


class InMemoryPersistence(PersistenceAdapter):
    def __init__(self) -> None:
        super().__init__()
        self._marks: Dict[Tuple[str, str, str], StudentMarksRecord] = {}
        self._workflow: List[WorkflowRecord] = []

    def get_student_marks_record(self, student_id: str, term: str, session: str) -> Optional[StudentMarksRecord]:
        return self._marks.get((student_id, normalize_term_label(term), session))

    def _write_student_marks_record(self, record: StudentMarksRecord) -> None:
        self._marks[record.key] = record

    def _write_student_marks_records(self, records: List[StudentMarksRecord]) -> None:
        snapshot = dict(self._marks)
        try:
            super()._write_student_marks_records(records)
        except Exception:
            self._marks = snapshot
            raise

    def list_student_marks_records(
        self,
        session: str,
        term: Optional[str] = None,
        class_id: Optional[str] = None,
    ) -> List[StudentMarksRecord]:
        return [record for record in self._marks.values() if matches_filter(record, session, term, class_id)]

    def get_workflow_records(self) -> List[WorkflowRecord]:
        return list(self._workflow)

    def _write_workflow_records(self, records: List[WorkflowRecord]) -> None:
        self._workflow = list(records)
