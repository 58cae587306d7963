"""
Multi-judge grade aggregation.

Combines independent per-judge grades of the same transcript into one
AggregatedGrade: category averages, inter-judge disagreement, and the
review decision. Pure computation; no I/O.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from patient_grading.config import MissingCategoryPolicy
from patient_grading.models import (
    AggregatedCategoryScore,
    AggregatedGrade,
    JudgeGrade,
    JudgeScore,
    Rubric,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_DISAGREEMENT_THRESHOLD = Decimal("0.2")

_CENTS = Decimal("0.01")


class AggregationError(Exception):
    """Base class for aggregation failures."""


class InvalidInputError(AggregationError):
    """Raised when aggregate() is called with unusable input."""


class MissingCategoryError(InvalidInputError):
    """Raised under the strict policy when a judge omitted a category."""

    def __init__(self, model: str, category: str):
        self.model = model
        self.category = category
        super().__init__(f"Judge '{model}' did not score category '{category}'")


def round_half_up(value: Decimal, quantum: Decimal = _CENTS) -> Decimal:
    """Round to the given quantum, halves away from zero."""
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def format_points(value: Decimal) -> str:
    """Render points without trailing zeros, e.g. 7.50 -> 7.5."""
    return f"{value.normalize():f}"


def calculate_disagreement(scores: Sequence[Decimal], max_points: Decimal) -> Decimal:
    """
    Range of the scores as a fraction of the category's max points.

    Zero when fewer than two judges scored or the category is worth nothing.
    """
    if len(scores) <= 1 or max_points == 0:
        return Decimal(0)
    return (max(scores) - min(scores)) / max_points


class GradeAggregator:
    """
    Aggregates the grades of several judges into one result.

    The category list is canonical: it comes from the rubric when one is
    given, otherwise from the first judge's grade. Categories a judge
    reports beyond that list are ignored, and every judge must score a
    category out of its canonical max points.
    """

    def __init__(
        self,
        threshold: Decimal | float = DEFAULT_DISAGREEMENT_THRESHOLD,
        missing_category_policy: MissingCategoryPolicy = MissingCategoryPolicy.PERMISSIVE,
    ):
        self._threshold = self._check_threshold(threshold)
        self._missing_category_policy = missing_category_policy

    @property
    def threshold(self) -> Decimal:
        return self._threshold

    def aggregate(
        self,
        judge_grades: Sequence[JudgeGrade],
        threshold: Decimal | float | None = None,
        rubric: Rubric | None = None,
    ) -> AggregatedGrade:
        """
        Aggregate judge grades into a single grade.

        Args:
            judge_grades: Non-empty grades produced against the same rubric.
            threshold: Disagreement fraction above which a category is
                flagged. Uses the aggregator's threshold if None.
            rubric: Canonical category order and max points. Without it the
                first judge's categories and max score are used.

        Returns:
            The aggregated grade.

        Raises:
            InvalidInputError: If judge_grades is empty or the threshold is
                outside [0, 1].
            InvalidInputError: If a judge scored a category out of different
                max points than the canonical ones.
            MissingCategoryError: Under the strict policy, if a judge did
                not score a canonical category.
        """
        if not judge_grades:
            raise InvalidInputError("Cannot aggregate empty judge grades")

        limit = self._threshold if threshold is None else self._check_threshold(threshold)

        if rubric is not None:
            canonical = [(c.name, c.max_points) for c in rubric.categories]
            max_score = rubric.total_points
        else:
            canonical = [(cs.category, cs.max_points) for cs in judge_grades[0].category_scores]
            max_score = judge_grades[0].max_score

        average_scores = tuple(
            self._aggregate_category(category, max_points, judge_grades)
            for category, max_points in canonical
        )

        total_score = round_half_up(sum((s.average_score for s in average_scores), Decimal(0)))

        # max_score of zero is a caller error; the division raises.
        percentage_score = int(round_half_up(total_score / max_score * 100, Decimal(1)))

        flagged = tuple(s.category for s in average_scores if s.disagreement_percent > limit)

        if flagged:
            logger.info(
                "Judges disagreed beyond %s on: %s", limit, ", ".join(flagged)
            )

        return AggregatedGrade(
            average_scores=average_scores,
            total_score=total_score,
            max_score=max_score,
            percentage_score=percentage_score,
            requires_review=bool(flagged),
            flagged_categories=flagged,
            judge_grades=tuple(judge_grades),
            disagreement_threshold=limit,
            graded_at=utcnow(),
        )

    def _aggregate_category(
        self, category: str, max_points: Decimal, judge_grades: Sequence[JudgeGrade]
    ) -> AggregatedCategoryScore:
        """Average one category across all judges and measure their spread."""
        judge_scores: list[JudgeScore] = []

        for grade in judge_grades:
            category_score = grade.score_for(category)
            if category_score is None:
                if self._missing_category_policy == MissingCategoryPolicy.STRICT:
                    raise MissingCategoryError(grade.model, category)
                logger.debug("Judge %s omitted '%s'; counting it as 0", grade.model, category)
                judge_scores.append(JudgeScore(model=grade.model, score=Decimal(0), reasoning=""))
            elif category_score.max_points != max_points:
                raise InvalidInputError(
                    f"Judge '{grade.model}' scored '{category}' out of "
                    f"{category_score.max_points}, expected {max_points}"
                )
            else:
                judge_scores.append(
                    JudgeScore(
                        model=grade.model,
                        score=category_score.score,
                        reasoning=category_score.reasoning,
                    )
                )

        scores = [js.score for js in judge_scores]
        average = sum(scores, Decimal(0)) / len(scores)

        return AggregatedCategoryScore(
            category=category,
            average_score=round_half_up(average),
            max_points=max_points,
            disagreement_percent=round_half_up(calculate_disagreement(scores, max_points)),
            judge_scores=tuple(judge_scores),
        )

    @staticmethod
    def _check_threshold(threshold: Decimal | float) -> Decimal:
        value = threshold if isinstance(threshold, Decimal) else Decimal(str(threshold))
        if not value.is_finite() or not Decimal(0) <= value <= Decimal(1):
            raise InvalidInputError(f"Disagreement threshold must be within [0, 1], got {threshold}")
        return value

    @staticmethod
    def summarize(grade: AggregatedGrade) -> str:
        """One-line score summary, plus a review warning when judges disagreed."""
        summary = (
            f"Score: {format_points(grade.total_score)}/{format_points(grade.max_score)} "
            f"({grade.percentage_score}%)"
        )

        if grade.requires_review:
            summary += (
                "\n⚠️ Requires Review - Judges disagreed on: "
                + ", ".join(grade.flagged_categories)
            )

        return summary


def aggregate_grades(
    judge_grades: Sequence[JudgeGrade],
    threshold: Decimal | float = DEFAULT_DISAGREEMENT_THRESHOLD,
    rubric: Rubric | None = None,
    missing_category_policy: MissingCategoryPolicy = MissingCategoryPolicy.PERMISSIVE,
) -> AggregatedGrade:
    """Aggregate judge grades with a one-off aggregator."""
    aggregator = GradeAggregator(threshold, missing_category_policy)
    return aggregator.aggregate(judge_grades, rubric=rubric)


def get_grading_summary(grade: AggregatedGrade) -> str:
    """Human-readable summary of an aggregated grade."""
    return GradeAggregator.summarize(grade)
