import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from reportcards.core.records import normalize_term_label


class WorkflowGuardError(Exception):
    pass


class WorkflowStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REVOKED = "revoked"


class WorkflowEvent(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REVOKE = "revoke"
    CANCEL = "cancel"
    RESET = "reset"


TRANSITIONS: Dict[Tuple[WorkflowStatus, WorkflowEvent], WorkflowStatus] = {
    (WorkflowStatus.DRAFT, WorkflowEvent.SUBMIT): WorkflowStatus.PENDING,
    (WorkflowStatus.REVOKED, WorkflowEvent.SUBMIT): WorkflowStatus.PENDING,
    (WorkflowStatus.PENDING, WorkflowEvent.APPROVE): WorkflowStatus.APPROVED,
    (WorkflowStatus.PENDING, WorkflowEvent.REVOKE): WorkflowStatus.REVOKED,
    (WorkflowStatus.PENDING, WorkflowEvent.CANCEL): WorkflowStatus.DRAFT,
    (WorkflowStatus.PENDING, WorkflowEvent.RESET): WorkflowStatus.DRAFT,
    (WorkflowStatus.APPROVED, WorkflowEvent.RESET): WorkflowStatus.DRAFT,
    (WorkflowStatus.REVOKED, WorkflowEvent.RESET): WorkflowStatus.DRAFT,
}

# Lower rank wins when a key mixes statuses.
STATUS_PRECEDENCE: Dict[WorkflowStatus, int] = {
    WorkflowStatus.REVOKED: 0,
    WorkflowStatus.PENDING: 1,
    WorkflowStatus.APPROVED: 2,
    WorkflowStatus.DRAFT: 3,
}

LOCKED_STATUSES = frozenset({WorkflowStatus.PENDING, WorkflowStatus.APPROVED})

_REJECTIONS: Dict[Tuple[WorkflowStatus, WorkflowEvent], str] = {
    (WorkflowStatus.PENDING, WorkflowEvent.SUBMIT): "results are already awaiting approval",
    (WorkflowStatus.APPROVED, WorkflowEvent.SUBMIT): "results are already approved and published; ask an administrator to reset them first",
    (WorkflowStatus.DRAFT, WorkflowEvent.APPROVE): "results have not been submitted for approval",
    (WorkflowStatus.DRAFT, WorkflowEvent.REVOKE): "results have not been submitted for approval",
    (WorkflowStatus.DRAFT, WorkflowEvent.CANCEL): "there is no submission to cancel",
    (WorkflowStatus.APPROVED, WorkflowEvent.APPROVE): "results are already approved",
    (WorkflowStatus.APPROVED, WorkflowEvent.REVOKE): "approved results can only be reset by an administrator",
    (WorkflowStatus.APPROVED, WorkflowEvent.CANCEL): "approved results can only be reset by an administrator",
    (WorkflowStatus.REVOKED, WorkflowEvent.APPROVE): "results were returned for correction and must be resubmitted",
    (WorkflowStatus.REVOKED, WorkflowEvent.REVOKE): "results were already returned for correction",
    (WorkflowStatus.REVOKED, WorkflowEvent.CANCEL): "results were returned for correction; resubmit them instead",
}


def next_status(current: WorkflowStatus, event: WorkflowEvent) -> WorkflowStatus:
    target = TRANSITIONS.get((current, event))
    if target is None:
        reason = _REJECTIONS.get((current, event), f"'{event.value}' is not allowed from '{current.value}'")
        raise WorkflowGuardError(f"Cannot {event.value}: {reason}.")
    return target


def _segment(value: str) -> str:
    return re.sub(r"\s+", "_", value.strip()).lower()


@dataclass(frozen=True)
class WorkflowKey:
    teacher_id: str
    class_id: str
    subject: str
    term: str
    session: str

    def __post_init__(self) -> None:
        # A blank term stays blank so it is reported as missing.
        term = str(self.term or "").strip()
        object.__setattr__(self, "term", normalize_term_label(term) if term else "")

    def missing_fields(self) -> List[str]:
        labels = (
            ("teacher_id", "teacher"),
            ("class_id", "class"),
            ("subject", "subject"),
            ("term", "term"),
            ("session", "session"),
        )
        return [label for name, label in labels if not str(getattr(self, name) or "").strip()]

    def record_id(self, student_id: str) -> str:
        parts = [student_id, self.class_id, self.subject, self.term, self.session, self.teacher_id]
        return "::".join(_segment(str(part)) for part in parts)

    def matches(self, record: "WorkflowRecord") -> bool:
        return (
            record.teacher_id == self.teacher_id
            and record.class_id == self.class_id
            and record.subject == self.subject
            and record.term == self.term
            and record.session == self.session
        )

    def describe(self) -> str:
        return f"{self.class_id} {self.subject} ({self.term}, {self.session})"


@dataclass(frozen=True)
class WorkflowRecord:
    id: str
    student_id: str
    class_id: str
    subject: str
    term: str
    session: str
    teacher_id: str
    status: WorkflowStatus
    updated_at: datetime
    student_name: str = ""
    teacher_name: str = ""
    submitted_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    feedback: Optional[str] = None
    admin_id: Optional[str] = None
    admin_name: Optional[str] = None

    @property
    def key(self) -> WorkflowKey:
        return WorkflowKey(self.teacher_id, self.class_id, self.subject, self.term, self.session)


@dataclass(frozen=True)
class WorkflowSummary:
    status: WorkflowStatus
    message: Optional[str] = None
    submitted_at: Optional[datetime] = None


def key_status(records: Iterable[WorkflowRecord]) -> WorkflowStatus:
    statuses = [record.status for record in records]
    if not statuses:
        return WorkflowStatus.DRAFT
    return min(statuses, key=STATUS_PRECEDENCE.__getitem__)


def summarize(records: Iterable[WorkflowRecord]) -> WorkflowSummary:
    records = list(records)
    status = key_status(records)
    if status == WorkflowStatus.DRAFT:
        return WorkflowSummary(status=status)
    leading = next(record for record in records if record.status == status)
    message = leading.feedback if status == WorkflowStatus.REVOKED else None
    return WorkflowSummary(status=status, message=message, submitted_at=leading.submitted_at)


def approved_report_keys(records: Iterable[WorkflowRecord]) -> Set[str]:
    keys: Set[str] = set()
    for record in records:
        if record.status != WorkflowStatus.APPROVED:
            continue
        keys.add(record.student_id)
        if record.student_id.strip().isdigit():
            keys.add(str(int(record.student_id)))
        if record.class_id:
            keys.add(f"{record.student_id}::{record.class_id}")
    return keys
