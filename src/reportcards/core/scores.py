import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Tuple, Union

SCORE_FIELDS: Tuple[str, ...] = ("first_test", "second_test", "assignment", "exam")

# Keys seen in older stored records and form payloads.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "first_test": ("first_test", "firstTest", "firstCA", "ca1", "first_ca", "test1"),
    "second_test": ("second_test", "secondTest", "secondCA", "ca2", "second_ca", "test2"),
    "assignment": ("assignment", "noteAssignment", "note_assignment", "ca3"),
    "exam": ("exam", "examScore", "exam_score", "finalExam", "final_exam"),
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def to_number(value: Any) -> float:
    """Coerce a loosely-typed score value to a finite float, or 0.0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            value = float(text)
        except ValueError:
            return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


@dataclass(frozen=True)
class ComponentMaxima:
    first_test: float = 20
    second_test: float = 20
    assignment: float = 20
    exam: float = 40

    def limit(self, field: str) -> int:
        maximum = to_number(getattr(self, field, 0))
        if maximum <= 0:
            return 0
        return round_half_up(maximum)

    def is_enabled(self, field: str) -> bool:
        return self.limit(field) > 0

    @property
    def total(self) -> int:
        return sum(self.limit(name) for name in SCORE_FIELDS)


@dataclass(frozen=True)
class ComponentScores:
    first_test: int = 0
    second_test: int = 0
    assignment: int = 0
    exam: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in SCORE_FIELDS}


@dataclass(frozen=True)
class AssessmentTotals:
    continuous_total: int
    grand_total: int


def _lookup(raw: Mapping[str, Any], field: str) -> Any:
    for key in FIELD_ALIASES[field]:
        if key in raw:
            return raw[key]
    return None


def clamp_score(value: Any, maximum: int) -> int:
    if maximum <= 0:
        return 0
    number = to_number(value)
    if number <= 0:
        return 0
    if number >= maximum:
        return maximum
    return min(round_half_up(number), maximum)


def normalize(raw: Union[Mapping[str, Any], ComponentScores, None], maxima: ComponentMaxima) -> ComponentScores:
    if raw is None:
        raw = {}
    elif isinstance(raw, ComponentScores):
        raw = raw.as_dict()
    return ComponentScores(
        **{name: clamp_score(_lookup(raw, name), maxima.limit(name)) for name in SCORE_FIELDS}
    )


def aggregate(scores: ComponentScores) -> AssessmentTotals:
    continuous = scores.first_test + scores.second_test + scores.assignment
    return AssessmentTotals(continuous_total=continuous, grand_total=continuous + scores.exam)


@dataclass(frozen=True)
class ColumnConfig:
    id: str
    name: str
    type: str
    max_score: float
    order: int


DEFAULT_COLUMNS: Tuple[ColumnConfig, ...] = (
    ColumnConfig("column_ca1", "1st Test", "test", 10, 1),
    ColumnConfig("column_ca2", "2nd Test", "test", 10, 2),
    ColumnConfig("column_assignment", "Note / Assignment", "assignment", 20, 3),
    ColumnConfig("column_exam", "Exam", "exam", 60, 4),
)

_COLUMN_SLOTS: Dict[Tuple[str, int], str] = {
    ("test", 1): "first_test",
    ("test", 2): "second_test",
    ("assignment", 1): "assignment",
    ("exam", 1): "exam",
}


def normalize_column_type(value: Any) -> str:
    if not isinstance(value, str):
        return "custom"
    normalized = value.strip().lower()
    if normalized in ("test", "exam", "assignment", "project"):
        return normalized
    return "custom"


def maxima_from_columns(columns: Iterable[ColumnConfig]) -> ComponentMaxima:
    ordered = sorted(columns, key=lambda column: column.order)
    if not ordered:
        ordered = list(DEFAULT_COLUMNS)

    limits = {name: 0.0 for name in SCORE_FIELDS}
    occurrences: Dict[str, int] = {}
    for column in ordered:
        column_type = normalize_column_type(column.type)
        occurrences[column_type] = occurrences.get(column_type, 0) + 1
        slot = _COLUMN_SLOTS.get((column_type, occurrences[column_type]))
        if slot is None:
            continue
        limits[slot] = max(0.0, to_number(column.max_score))
    return ComponentMaxima(**limits)
