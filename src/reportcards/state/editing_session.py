from dataclasses import dataclass, field
from typing import List, Optional

from reportcards.core.records import SubjectAssessment, normalize_term_label
from reportcards.core.scores import ComponentMaxima
from reportcards.core.workflow import WorkflowKey


@dataclass
class EditingSession:
    teacher_id: str = ""
    teacher_name: str = ""
    class_id: str = ""
    subject: str = ""
    term: str = ""
    session: str = ""
    maxima: ComponentMaxima = field(default_factory=ComponentMaxima)
    cohort: List[SubjectAssessment] = field(default_factory=list)
    dirty: bool = False

    @property
    def key(self) -> WorkflowKey:
        return WorkflowKey(self.teacher_id, self.class_id, self.subject, self.term, self.session)

    @property
    def term_label(self) -> str:
        return normalize_term_label(self.term)

    def missing_selection(self) -> List[str]:
        return self.key.missing_fields()

    @property
    def has_selection(self) -> bool:
        return not self.missing_selection()

    def find(self, student_id: str) -> Optional[SubjectAssessment]:
        for assessment in self.cohort:
            if assessment.student_id == student_id:
                return assessment
        return None

    def select(self, class_id: str, subject: str, term: str, session: str) -> None:
        self.class_id = class_id
        self.subject = subject
        self.term = term
        self.session = session
        self.cohort = []
        self.dirty = False
