from dataclasses import dataclass
from typing import Dict, Iterable, Tuple

from reportcards.core.scores import round_half_up, to_number


class GradeScaleError(Exception):
    pass


@dataclass(frozen=True)
class GradeBand:
    minimum: int
    letter: str
    remark: str = ""


DEFAULT_GRADE_BANDS: Tuple[GradeBand, ...] = (
    GradeBand(90, "A", "Outstanding performance"),
    GradeBand(80, "B", "Very good work"),
    GradeBand(70, "C", "Good effort"),
    GradeBand(60, "D", "Fair - room for growth"),
    GradeBand(0, "F", "Requires urgent attention"),
)


@dataclass(frozen=True)
class GradeDistribution:
    counts: Dict[str, int]
    total: int
    passes: int
    pass_rate: int


def percentage(obtained: float, obtainable: float) -> int:
    obtained = to_number(obtained)
    obtainable = to_number(obtainable)
    if obtainable <= 0:
        return 0
    ratio = max(0.0, min(obtained / obtainable, 1.0))
    return round_half_up(ratio * 100)


class GradeScale:
    def __init__(self, bands: Iterable[GradeBand] = DEFAULT_GRADE_BANDS) -> None:
        ordered = sorted(bands, key=lambda band: band.minimum, reverse=True)
        if not ordered:
            raise GradeScaleError("Grade scale needs at least one band.")

        letters = [band.letter for band in ordered]
        if len(set(letters)) != len(letters):
            raise GradeScaleError(f"Grade letters must be unique: {', '.join(letters)}")

        minima = [band.minimum for band in ordered]
        if len(set(minima)) != len(minima):
            raise GradeScaleError("Grade bands must have distinct minimum percentages.")
        if minima[0] > 100:
            raise GradeScaleError(f"Band {ordered[0].letter} starts above 100%.")
        if minima[-1] != 0:
            raise GradeScaleError(
                f"Lowest band {ordered[-1].letter} must start at 0% so every score has a grade."
            )

        self.bands: Tuple[GradeBand, ...] = tuple(ordered)

    @classmethod
    def parse(cls, text: str) -> "GradeScale":
        """Build a scale from ``"90:A,80:B,0:F"``; an empty string gives the default scale."""
        items = [item.strip() for item in text.split(",") if item.strip()]
        if not items:
            return cls()

        defaults = {band.letter: band.remark for band in DEFAULT_GRADE_BANDS}
        bands = []
        for item in items:
            minimum, sep, letter = item.partition(":")
            if not sep or not letter.strip():
                raise GradeScaleError(f"Invalid grade band '{item}'; expected MIN:LETTER.")
            try:
                value = int(minimum.strip())
            except ValueError as exc:
                raise GradeScaleError(f"Invalid minimum in grade band '{item}'.") from exc
            letter = letter.strip().upper()
            bands.append(GradeBand(value, letter, defaults.get(letter, "")))
        return cls(bands)

    @property
    def lowest(self) -> GradeBand:
        return self.bands[-1]

    def grade_for_percentage(self, value: float) -> str:
        score = max(0, min(round_half_up(to_number(value)), 100))
        for band in self.bands:
            if score >= band.minimum:
                return band.letter
        return self.lowest.letter

    def classify(self, total_obtained: float, total_obtainable: float) -> str:
        if to_number(total_obtainable) > 0:
            return self.grade_for_percentage(percentage(total_obtained, total_obtainable))
        # Records without an obtainable total are graded on the raw total.
        return self.grade_for_percentage(total_obtained)

    def remark_for(self, letter: str) -> str:
        wanted = letter.strip().upper()
        for band in self.bands:
            if band.letter.upper() == wanted:
                return band.remark
        return ""

    def is_pass(self, letter: str) -> bool:
        return letter.strip().upper() != self.lowest.letter.upper()

    def distribution(self, percentages: Iterable[float]) -> GradeDistribution:
        counts = {band.letter: 0 for band in self.bands}
        total = 0
        for value in percentages:
            counts[self.grade_for_percentage(value)] += 1
            total += 1
        passes = total - counts[self.lowest.letter]
        pass_rate = round_half_up(passes / total * 100) if total else 0
        return GradeDistribution(counts=counts, total=total, passes=passes, pass_rate=pass_rate)


default_scale = GradeScale()
