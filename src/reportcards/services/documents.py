"""Stored document shapes and the coercion boundary for loading them.

Older records store numbers as strings, use camelCase keys from the first
version of the gradebook, or omit derived fields entirely. Everything that
comes out of a store passes through these models so the engine only ever sees
well-typed records.
"""

from datetime import datetime, timezone
import logging
import re
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from reportcards.core.records import AssessmentResult, StudentMarksRecord, SubjectAssessment, normalize_term_label
from reportcards.core.scores import ComponentScores, round_half_up, to_number
from reportcards.core.workflow import WorkflowRecord, WorkflowStatus

logger = logging.getLogger(__name__)


def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_iso(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def _to_int(value: Any) -> int:
    return round_half_up(to_number(value))


def _to_optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        match = re.match(r"\s*(\d+)", value)
        return int(match.group(1)) if match else None
    number = to_number(value)
    return round_half_up(number) if number > 0 else None


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class StoredSubjectDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    subject: str = ""
    class_id: str = Field(default="", validation_alias=_aliases("class_id", "className", "classId"))
    first_test: int = Field(default=0, validation_alias=_aliases("first_test", "ca1", "firstCA", "firstTest"))
    second_test: int = Field(default=0, validation_alias=_aliases("second_test", "ca2", "secondCA", "secondTest"))
    assignment: int = Field(default=0, validation_alias=_aliases("assignment", "noteAssignment"))
    exam: int = Field(default=0, validation_alias=_aliases("exam", "examScore", "exam_score"))
    continuous_total: Optional[int] = Field(default=None, validation_alias=_aliases("continuous_total", "caTotal"))
    grand_total: Optional[int] = Field(default=None, validation_alias=_aliases("grand_total", "total", "grandTotal"))
    obtainable_total: int = Field(default=100, validation_alias=_aliases("obtainable_total", "totalObtainable"))
    obtained_total: Optional[int] = Field(default=None, validation_alias=_aliases("obtained_total", "totalObtained"))
    average_percent: Optional[int] = Field(default=None, validation_alias=_aliases("average_percent", "averageScore"))
    grade: str = ""
    remark: str = ""
    teacher_remark: str = Field(default="", validation_alias=_aliases("teacher_remark", "teacherRemark"))
    position: Optional[int] = None

    @field_validator("subject", "class_id", "grade", "remark", "teacher_remark", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _to_text(value)

    @field_validator("first_test", "second_test", "assignment", "exam", mode="before")
    @classmethod
    def _score(cls, value: Any) -> int:
        return max(0, _to_int(value))

    @field_validator("continuous_total", "grand_total", "obtained_total", "average_percent", mode="before")
    @classmethod
    def _optional_total(cls, value: Any) -> Optional[int]:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return max(0, _to_int(value))

    @field_validator("obtainable_total", mode="before")
    @classmethod
    def _obtainable(cls, value: Any) -> int:
        number = _to_int(value)
        return number if number > 0 else 100

    @field_validator("position", mode="before")
    @classmethod
    def _position(cls, value: Any) -> Optional[int]:
        return _to_optional_int(value)

    def to_assessment(self, record: "StoredMarksDocument", name: str) -> SubjectAssessment:
        scores = ComponentScores(self.first_test, self.second_test, self.assignment, self.exam)
        continuous = self.continuous_total
        if continuous is None:
            continuous = self.first_test + self.second_test + self.assignment
        grand = self.grand_total if self.grand_total is not None else continuous + self.exam
        result = AssessmentResult(
            continuous_total=continuous,
            grand_total=grand,
            obtainable_total=self.obtainable_total,
            obtained_total=self.obtained_total if self.obtained_total is not None else grand,
            average_percent=self.average_percent if self.average_percent is not None else 0,
            grade=self.grade,
            remark=self.remark,
            position=self.position,
        )
        return SubjectAssessment(
            student_id=record.student_id,
            class_id=self.class_id or record.class_id,
            subject=self.subject or name,
            term=record.term,
            session=record.session,
            student_name=record.student_name,
            scores=scores,
            obtainable_total=self.obtainable_total,
            teacher_remark=self.teacher_remark,
            result=result,
        )

    @classmethod
    def from_assessment(cls, assessment: SubjectAssessment) -> "StoredSubjectDocument":
        result = assessment.result
        return cls(
            subject=assessment.subject,
            class_id=assessment.class_id,
            first_test=assessment.scores.first_test,
            second_test=assessment.scores.second_test,
            assignment=assessment.scores.assignment,
            exam=assessment.scores.exam,
            continuous_total=result.continuous_total if result else None,
            grand_total=result.grand_total if result else None,
            obtainable_total=assessment.obtainable_total,
            obtained_total=result.obtained_total if result else None,
            average_percent=result.average_percent if result else None,
            grade=result.grade if result else "",
            remark=result.remark if result else "",
            teacher_remark=assessment.teacher_remark,
            position=result.position if result else None,
        )


class StoredMarksDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    student_id: str = Field(validation_alias=_aliases("student_id", "studentId"))
    student_name: str = Field(default="", validation_alias=_aliases("student_name", "studentName"))
    class_id: str = Field(default="", validation_alias=_aliases("class_id", "className", "classId"))
    term: str
    session: str
    subjects: Dict[str, StoredSubjectDocument] = Field(default_factory=dict)
    overall_average: int = Field(default=0, validation_alias=_aliases("overall_average", "overallAverage"))
    overall_position: Optional[int] = Field(default=None, validation_alias=_aliases("overall_position", "overallPosition"))
    status: str = ""
    number_in_class: int = Field(default=0, validation_alias=_aliases("number_in_class", "numberInClass"))
    last_updated: Optional[datetime] = Field(default=None, validation_alias=_aliases("last_updated", "lastUpdated"))

    @field_validator("student_id", "session", mode="before")
    @classmethod
    def _required_text(cls, value: Any) -> str:
        text = _to_text(value)
        if not text:
            raise ValueError("must not be empty")
        return text

    @field_validator("student_name", "class_id", "status", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _to_text(value)

    @field_validator("term", mode="before")
    @classmethod
    def _term(cls, value: Any) -> str:
        return normalize_term_label(_to_text(value))

    @field_validator("subjects", mode="before")
    @classmethod
    def _subjects(cls, value: Any) -> Dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @field_validator("overall_average", "number_in_class", mode="before")
    @classmethod
    def _number(cls, value: Any) -> int:
        return max(0, _to_int(value))

    @field_validator("overall_position", mode="before")
    @classmethod
    def _position(cls, value: Any) -> Optional[int]:
        return _to_optional_int(value)

    @field_validator("last_updated", mode="before")
    @classmethod
    def _timestamp(cls, value: Any) -> Optional[datetime]:
        return from_iso(value)

    def to_record(self) -> StudentMarksRecord:
        return StudentMarksRecord(
            student_id=self.student_id,
            term=self.term,
            session=self.session,
            class_id=self.class_id,
            student_name=self.student_name,
            subjects={name: doc.to_assessment(self, name) for name, doc in self.subjects.items()},
            overall_average=self.overall_average,
            overall_position=self.overall_position,
            status=self.status,
            number_in_class=self.number_in_class,
            last_updated=self.last_updated,
        )

    @classmethod
    def from_record(cls, record: StudentMarksRecord) -> "StoredMarksDocument":
        return cls(
            student_id=record.student_id,
            student_name=record.student_name,
            class_id=record.class_id,
            term=record.term,
            session=record.session,
            subjects={name: StoredSubjectDocument.from_assessment(a) for name, a in record.subjects.items()},
            overall_average=record.overall_average,
            overall_position=record.overall_position,
            status=record.status,
            number_in_class=record.number_in_class,
            last_updated=record.last_updated,
        )


class StoredWorkflowDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    student_id: str = Field(validation_alias=_aliases("student_id", "studentId"))
    student_name: str = Field(default="", validation_alias=_aliases("student_name", "studentName"))
    class_id: str = Field(validation_alias=_aliases("class_id", "className", "classId"))
    subject: str
    term: str
    session: str
    teacher_id: str = Field(default="", validation_alias=_aliases("teacher_id", "teacherId"))
    teacher_name: str = Field(default="", validation_alias=_aliases("teacher_name", "teacherName"))
    status: WorkflowStatus = WorkflowStatus.DRAFT
    submitted_at: Optional[datetime] = Field(default=None, validation_alias=_aliases("submitted_at", "submittedAt"))
    updated_at: Optional[datetime] = Field(default=None, validation_alias=_aliases("updated_at", "updatedAt"))
    published_at: Optional[datetime] = Field(default=None, validation_alias=_aliases("published_at", "publishedAt"))
    feedback: Optional[str] = None
    admin_id: Optional[str] = Field(default=None, validation_alias=_aliases("admin_id", "adminId"))
    admin_name: Optional[str] = Field(default=None, validation_alias=_aliases("admin_name", "adminName"))

    @field_validator("id", "student_id", "session", mode="before")
    @classmethod
    def _required_text(cls, value: Any) -> str:
        text = _to_text(value)
        if not text:
            raise ValueError("must not be empty")
        return text

    @field_validator("student_name", "class_id", "subject", "teacher_id", "teacher_name", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _to_text(value)

    @field_validator("term", mode="before")
    @classmethod
    def _term(cls, value: Any) -> str:
        return normalize_term_label(_to_text(value))

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> WorkflowStatus:
        if isinstance(value, WorkflowStatus):
            return value
        try:
            return WorkflowStatus(_to_text(value).lower())
        except ValueError:
            return WorkflowStatus.DRAFT

    @field_validator("submitted_at", "updated_at", "published_at", mode="before")
    @classmethod
    def _timestamp(cls, value: Any) -> Optional[datetime]:
        return from_iso(value)

    def to_record(self) -> WorkflowRecord:
        return WorkflowRecord(
            id=self.id,
            student_id=self.student_id,
            class_id=self.class_id,
            subject=self.subject,
            term=self.term,
            session=self.session,
            teacher_id=self.teacher_id,
            status=self.status,
            updated_at=self.updated_at or datetime.now(timezone.utc),
            student_name=self.student_name,
            teacher_name=self.teacher_name,
            submitted_at=self.submitted_at,
            published_at=self.published_at,
            feedback=self.feedback,
            admin_id=self.admin_id,
            admin_name=self.admin_name,
        )

    @classmethod
    def from_record(cls, record: WorkflowRecord) -> "StoredWorkflowDocument":
        return cls(
            id=record.id,
            student_id=record.student_id,
            student_name=record.student_name,
            class_id=record.class_id,
            subject=record.subject,
            term=record.term,
            session=record.session,
            teacher_id=record.teacher_id,
            teacher_name=record.teacher_name,
            status=record.status,
            submitted_at=record.submitted_at,
            updated_at=record.updated_at,
            published_at=record.published_at,
            feedback=record.feedback,
            admin_id=record.admin_id,
            admin_name=record.admin_name,
        )


def load_marks_record(data: Any) -> Optional[StudentMarksRecord]:
    try:
        return StoredMarksDocument.model_validate(data).to_record()
    except ValidationError as exc:
        logger.warning("Skipping malformed marks record: %s", exc.errors(include_url=False))
        return None


def dump_marks_record(record: StudentMarksRecord) -> Dict[str, Any]:
    payload = StoredMarksDocument.from_record(record).model_dump(mode="json")
    payload["last_updated"] = to_iso(record.last_updated)
    return payload


def load_workflow_record(data: Any) -> Optional[WorkflowRecord]:
    try:
        return StoredWorkflowDocument.model_validate(data).to_record()
    except ValidationError as exc:
        logger.warning("Skipping malformed workflow record: %s", exc.errors(include_url=False))
        return None


def dump_workflow_record(record: WorkflowRecord) -> Dict[str, Any]:
    payload = StoredWorkflowDocument.from_record(record).model_dump(mode="json")
    for name in ("submitted_at", "updated_at", "published_at"):
        payload[name] = to_iso(getattr(record, name))
    return payload
