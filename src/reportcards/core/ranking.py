from dataclasses import replace
from typing import Iterable, List, Sequence

from reportcards.core.grading import GradeScale, default_scale
from reportcards.core.records import AssessmentResult, StudentMarksRecord, SubjectAssessment
from reportcards.core.scores import ComponentMaxima, aggregate, normalize, round_half_up


def average_percent(obtained: int, obtainable: int) -> int:
    if obtained <= 0 or obtainable <= 0:
        return 0
    return round_half_up(obtained / obtainable * 100)


def evaluate(
    assessment: SubjectAssessment,
    maxima: ComponentMaxima,
    scale: GradeScale = default_scale,
) -> SubjectAssessment:
    scores = normalize(assessment.scores, maxima)
    totals = aggregate(scores)
    obtainable = assessment.obtainable_total if assessment.obtainable_total > 0 else maxima.total
    grade = scale.classify(totals.grand_total, obtainable)
    previous = assessment.result
    result = AssessmentResult(
        continuous_total=totals.continuous_total,
        grand_total=totals.grand_total,
        obtainable_total=obtainable,
        obtained_total=totals.grand_total,
        average_percent=average_percent(totals.grand_total, obtainable),
        grade=grade,
        remark=scale.remark_for(grade),
        position=previous.position if previous else None,
    )
    return replace(assessment, scores=scores, obtainable_total=obtainable, result=result)


def _ranking_total(assessment: SubjectAssessment) -> int:
    result = assessment.result
    if result is None:
        return 0
    return result.obtained_total if result.obtained_total else result.grand_total


def rank(cohort: Sequence[SubjectAssessment]) -> List[SubjectAssessment]:
    """Annotate each assessment with its 1-based position in the cohort.

    Sorting is stable, so equal totals keep their input order and receive
    distinct consecutive positions. The returned list follows the input order.
    """
    order = sorted(range(len(cohort)), key=lambda index: _ranking_total(cohort[index]), reverse=True)
    positions = {index: place for place, index in enumerate(order, start=1)}

    ranked: List[SubjectAssessment] = []
    for index, assessment in enumerate(cohort):
        result = assessment.result
        if result is None:
            result = AssessmentResult(0, 0, assessment.obtainable_total, 0, 0, "", "")
        result = replace(
            result,
            position=positions[index],
            obtained_total=result.grand_total,
            average_percent=average_percent(result.grand_total, result.obtainable_total),
        )
        ranked.append(replace(assessment, result=result))
    return ranked


def recompute_cohort(
    cohort: Iterable[SubjectAssessment],
    maxima: ComponentMaxima,
    scale: GradeScale = default_scale,
) -> List[SubjectAssessment]:
    return rank([evaluate(assessment, maxima, scale) for assessment in cohort])


def rank_overall(records: Sequence[StudentMarksRecord]) -> List[StudentMarksRecord]:
    order = sorted(range(len(records)), key=lambda index: records[index].overall_average, reverse=True)
    positions = {index: place for place, index in enumerate(order, start=1)}
    return [
        replace(record, overall_position=positions[index], number_in_class=len(records))
        for index, record in enumerate(records)
    ]
