from dataclasses import dataclass
import os
from dotenv import load_dotenv

from reportcards.core.grading import GradeScale
from reportcards.core.scores import ComponentMaxima


load_dotenv()


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    max_first_test: float = _float_env("REPORTCARDS_MAX_FIRST_TEST", 20)
    max_second_test: float = _float_env("REPORTCARDS_MAX_SECOND_TEST", 20)
    max_assignment: float = _float_env("REPORTCARDS_MAX_ASSIGNMENT", 20)
    max_exam: float = _float_env("REPORTCARDS_MAX_EXAM", 40)
    grade_bands: str = os.getenv("REPORTCARDS_GRADE_BANDS", "")

    storage: str = os.getenv("REPORTCARDS_STORAGE", "memory").strip().lower()
    sqlite_path: str = os.getenv("REPORTCARDS_SQLITE_PATH", "reportcards.db")

    appwrite_endpoint: str = os.getenv("APPWRITE_ENDPOINT", "")
    appwrite_project_id: str = os.getenv("APPWRITE_PROJECT_ID", "")
    appwrite_api_key: str = os.getenv("APPWRITE_API_KEY") or os.getenv("APPWRITE_FUNCTION_API_KEY", "")
    appwrite_database_id: str = os.getenv("APPWRITE_DATABASE_ID", "")
    appwrite_marks_collection_id: str = os.getenv("APPWRITE_MARKS_COLLECTION_ID", "student_marks")
    appwrite_workflow_collection_id: str = os.getenv("APPWRITE_WORKFLOW_COLLECTION_ID", "report_card_workflow")

    notify_url: str = os.getenv("REPORTCARDS_NOTIFY_URL", "")
    notify_timeout: float = _float_env("REPORTCARDS_NOTIFY_TIMEOUT", 15)

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def component_maxima(self) -> ComponentMaxima:
        return ComponentMaxima(
            first_test=self.max_first_test,
            second_test=self.max_second_test,
            assignment=self.max_assignment,
            exam=self.max_exam,
        )

    def grade_scale(self) -> GradeScale:
        return GradeScale.parse(self.grade_bands)


settings = Settings()
