from dataclasses import replace
from datetime import datetime, timezone
import logging
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from reportcards.core.records import normalize_term_label
from reportcards.core.workflow import (
    LOCKED_STATUSES,
    WorkflowEvent,
    WorkflowGuardError,
    WorkflowKey,
    WorkflowRecord,
    WorkflowStatus,
    WorkflowSummary,
    approved_report_keys,
    key_status,
    next_status,
    summarize,
)
from reportcards.services.notifier import WorkflowNotifier
from reportcards.services.persistence import WORKFLOW_UPDATED_EVENT, PersistenceAdapter

logger = logging.getLogger(__name__)

StudentRef = Tuple[str, str]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowService:
    """Owns every report-card workflow transition.

    All mutations go through :meth:`transition`, which checks the transition
    table for every affected record before anything is written. A rejected
    transition raises :class:`WorkflowGuardError` and leaves the stored
    records untouched.
    """

    def __init__(
        self,
        store: PersistenceAdapter,
        notifier: Optional[WorkflowNotifier] = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.store = store
        self.notifier = notifier or WorkflowNotifier("")
        self.clock = clock

    def get(self) -> List[WorkflowRecord]:
        return self.store.get_workflow_records()

    def get_for_key(self, key: WorkflowKey) -> List[WorkflowRecord]:
        return [record for record in self.get() if key.matches(record)]

    def get_for_period(self, term: str, session: str) -> List[WorkflowRecord]:
        term = normalize_term_label(term)
        return [record for record in self.get() if record.term == term and record.session == session]

    def summary(self, key: WorkflowKey) -> WorkflowSummary:
        return summarize(self.get_for_key(key))

    def status(self, key: WorkflowKey) -> WorkflowStatus:
        return key_status(self.get_for_key(key))

    def is_editable(self, key: WorkflowKey) -> bool:
        return self.status(key) not in LOCKED_STATUSES

    def approved_keys(self) -> set:
        return approved_report_keys(self.get())

    def on_change(self, callback: Callable[[List[WorkflowRecord]], None]) -> Callable[[], None]:
        return self.store.subscribe(WORKFLOW_UPDATED_EVENT, callback)

    def transition(
        self,
        event: WorkflowEvent,
        key: WorkflowKey,
        *,
        students: Sequence[StudentRef] = (),
        student_ids: Optional[Iterable[str]] = None,
        teacher_name: str = "",
        admin_id: Optional[str] = None,
        admin_name: Optional[str] = None,
        message: Optional[str] = None,
    ) -> List[WorkflowRecord]:
        event = WorkflowEvent(event)
        try:
            if event == WorkflowEvent.SUBMIT:
                records = self._submit(key, students, teacher_name)
            elif event in (WorkflowEvent.APPROVE, WorkflowEvent.REVOKE):
                records = self._review(event, key, student_ids, admin_id, admin_name, message)
            elif event == WorkflowEvent.CANCEL:
                records = self._cancel(key)
            else:
                records = self._reset(key)
        except WorkflowGuardError as exc:
            logger.warning("Rejected %s for %s: %s", event.value, key.describe(), exc)
            raise
        logger.info("Workflow %s applied to %s", event.value, key.describe())
        return records

    def submit_for_approval(self, key: WorkflowKey, students: Sequence[StudentRef], teacher_name: str = "") -> List[WorkflowRecord]:
        return self.transition(WorkflowEvent.SUBMIT, key, students=students, teacher_name=teacher_name)

    def approve(
        self,
        key: WorkflowKey,
        student_ids: Optional[Iterable[str]] = None,
        admin_id: Optional[str] = None,
        admin_name: Optional[str] = None,
    ) -> List[WorkflowRecord]:
        return self.transition(
            WorkflowEvent.APPROVE, key, student_ids=student_ids, admin_id=admin_id, admin_name=admin_name
        )

    def revoke(
        self,
        key: WorkflowKey,
        message: str,
        student_ids: Optional[Iterable[str]] = None,
        admin_id: Optional[str] = None,
        admin_name: Optional[str] = None,
    ) -> List[WorkflowRecord]:
        return self.transition(
            WorkflowEvent.REVOKE,
            key,
            student_ids=student_ids,
            admin_id=admin_id,
            admin_name=admin_name,
            message=message,
        )

    def cancel_submission(self, key: WorkflowKey) -> List[WorkflowRecord]:
        return self.transition(WorkflowEvent.CANCEL, key)

    def reset_submission(self, key: WorkflowKey) -> List[WorkflowRecord]:
        return self.transition(WorkflowEvent.RESET, key)

    def _submit(self, key: WorkflowKey, students: Sequence[StudentRef], teacher_name: str) -> List[WorkflowRecord]:
        missing = key.missing_fields()
        if missing:
            raise WorkflowGuardError(f"Select a {', '.join(missing)} before submitting results for approval.")
        if not students:
            raise WorkflowGuardError(f"Add at least one student's scores for {key.describe()} before submitting.")

        records = self.get()
        try:
            next_status(key_status(record for record in records if key.matches(record)), WorkflowEvent.SUBMIT)
        except WorkflowGuardError as exc:
            raise WorkflowGuardError(f"{key.describe()}: {exc}") from exc

        existing = {record.id: record for record in records}
        timestamp = self.clock()
        batch: List[WorkflowRecord] = []
        seen = set()
        for student_id, student_name in students:
            student_id = str(student_id).strip()
            if not student_id:
                raise WorkflowGuardError("Every submitted student needs an id.")
            record_id = key.record_id(student_id)
            if record_id in seen:
                continue
            seen.add(record_id)
            previous = existing.get(record_id)
            current = previous.status if previous else WorkflowStatus.DRAFT
            try:
                status = next_status(current, WorkflowEvent.SUBMIT)
            except WorkflowGuardError as exc:
                raise WorkflowGuardError(f"{student_name or student_id}: {exc}") from exc
            batch.append(
                WorkflowRecord(
                    id=record_id,
                    student_id=student_id,
                    student_name=student_name,
                    class_id=key.class_id,
                    subject=key.subject,
                    term=key.term,
                    session=key.session,
                    teacher_id=key.teacher_id,
                    teacher_name=teacher_name,
                    status=status,
                    submitted_at=timestamp,
                    updated_at=timestamp,
                    admin_id=previous.admin_id if previous else None,
                    admin_name=previous.admin_name if previous else None,
                )
            )

        result = self.store.submit_report_cards_for_approval(batch)
        self.notifier.broadcast(
            "Report cards submitted",
            f"{teacher_name or key.teacher_id} submitted {key.class_id} {key.subject} results for approval",
            metadata=self._metadata(key),
        )
        return result

    def _review(
        self,
        event: WorkflowEvent,
        key: WorkflowKey,
        student_ids: Optional[Iterable[str]],
        admin_id: Optional[str],
        admin_name: Optional[str],
        message: Optional[str],
    ) -> List[WorkflowRecord]:
        if event == WorkflowEvent.REVOKE and not (message or "").strip():
            raise WorkflowGuardError("Add a message explaining what the teacher must correct before revoking.")

        records = self.get()
        in_key = [record for record in records if key.matches(record)]
        if not in_key:
            raise WorkflowGuardError(f"No results have been submitted for {key.describe()}.")

        if student_ids is None:
            targets = {record.id for record in in_key if record.status == WorkflowStatus.PENDING}
            if not targets:
                next_status(key_status(in_key), event)
        else:
            wanted = {str(student_id) for student_id in student_ids}
            if not wanted:
                raise WorkflowGuardError(f"Choose at least one student to {event.value} in {key.describe()}.")
            targets = {record.id for record in in_key if record.student_id in wanted}
            unknown = wanted - {record.student_id for record in in_key}
            if unknown:
                raise WorkflowGuardError(
                    f"No submission found for student(s) {', '.join(sorted(unknown))} in {key.describe()}."
                )

        timestamp = self.clock()
        updated: List[WorkflowRecord] = []
        changed: List[WorkflowRecord] = []
        for record in records:
            if record.id not in targets:
                updated.append(record)
                continue
            status = next_status(record.status, event)
            approved = status == WorkflowStatus.APPROVED
            new_record = replace(
                record,
                status=status,
                updated_at=timestamp,
                feedback=message.strip() if status == WorkflowStatus.REVOKED and message else None,
                admin_id=admin_id or record.admin_id,
                admin_name=admin_name or record.admin_name,
                published_at=timestamp if approved else record.published_at,
                submitted_at=record.submitted_at or timestamp,
            )
            updated.append(new_record)
            changed.append(new_record)

        result = self.store.save_workflow_records(updated)
        for record in changed:
            self._notify_review(record)
        return result

    def _cancel(self, key: WorkflowKey) -> List[WorkflowRecord]:
        in_key = self.get_for_key(key)
        if not in_key:
            raise WorkflowGuardError(f"There is no submission to cancel for {key.describe()}.")
        for record in in_key:
            next_status(record.status, WorkflowEvent.CANCEL)
        return self.store.reset_report_card_submission(key)

    def _reset(self, key: WorkflowKey) -> List[WorkflowRecord]:
        for record in self.get_for_key(key):
            if record.status != WorkflowStatus.DRAFT:
                next_status(record.status, WorkflowEvent.RESET)
        return self.store.reset_report_card_submission(key)

    @staticmethod
    def _metadata(key: WorkflowKey, record: Optional[WorkflowRecord] = None) -> dict:
        data = {
            "className": key.class_id,
            "subject": key.subject,
            "term": key.term,
            "session": key.session,
        }
        if record is not None:
            data["studentId"] = record.student_id
        return data

    def _notify_review(self, record: WorkflowRecord) -> None:
        name = record.student_name or record.student_id
        if record.status == WorkflowStatus.APPROVED:
            self.notifier.broadcast(
                "Report card published",
                f"{name}'s result has been published to parents",
                audience=["teacher", "parent"],
                kind="success",
                metadata=self._metadata(record.key, record),
            )
        elif record.status == WorkflowStatus.REVOKED:
            self.notifier.broadcast(
                "Report card needs revision",
                f"{name}'s result was returned for correction",
                audience=["teacher"],
                kind="warning",
                metadata=self._metadata(record.key, record),
            )
