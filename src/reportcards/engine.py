from dataclasses import dataclass, field
from typing import Optional

from reportcards.config.log_setup import configure_logging
from reportcards.config.settings import Settings, settings as default_settings
from reportcards.core.grading import GradeScale
from reportcards.core.scores import ComponentMaxima
from reportcards.services.cumulative_service import CumulativeSummaryService
from reportcards.services.gradebook_service import GradebookService
from reportcards.services.notifier import WorkflowNotifier
from reportcards.services.persistence import InMemoryPersistence, PersistenceAdapter, PersistenceError
from reportcards.services.workflow_service import WorkflowService
from reportcards.state.editing_session import EditingSession


def build_persistence(config: Settings) -> PersistenceAdapter:
    if config.storage == "memory":
        return InMemoryPersistence()
    if config.storage == "sqlite":
        from reportcards.services.sqlite_store import SqlitePersistence

        return SqlitePersistence(config.sqlite_path)
    if config.storage == "appwrite":
        from reportcards.services.appwrite_store import AppwritePersistence

        return AppwritePersistence.from_settings(config)
    raise PersistenceError(f"Unknown REPORTCARDS_STORAGE '{config.storage}'; use memory, sqlite or appwrite.")


@dataclass
class ReportCardEngine:
    store: PersistenceAdapter
    maxima: ComponentMaxima = field(default_factory=ComponentMaxima)
    scale: GradeScale = field(default_factory=GradeScale)
    notifier: Optional[WorkflowNotifier] = None

    def __post_init__(self) -> None:
        self.workflow = WorkflowService(self.store, self.notifier)
        self.gradebook = GradebookService(self.store, self.workflow, self.scale)
        self.cumulative = CumulativeSummaryService(self.store, self.scale)

    @classmethod
    def from_settings(cls, config: Settings = default_settings) -> "ReportCardEngine":
        configure_logging(config.log_level)
        return cls(
            store=build_persistence(config),
            maxima=config.component_maxima(),
            scale=config.grade_scale(),
            notifier=WorkflowNotifier.from_settings(config),
        )

    def open_session(
        self,
        teacher_id: str,
        teacher_name: str,
        class_id: str,
        subject: str,
        term: str,
        session: str,
    ) -> EditingSession:
        return EditingSession(
            teacher_id=teacher_id,
            teacher_name=teacher_name,
            class_id=class_id,
            subject=subject,
            term=term,
            session=session,
            maxima=self.maxima,
        )
