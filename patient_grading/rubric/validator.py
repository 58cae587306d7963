"""
Rubric validation module.

Checks that a rubric is complete and consistent enough for judges to
score it and for the aggregator to compare their scores.
"""

from decimal import Decimal
from typing import Sequence

from patient_grading.models import Rubric, RubricCategory


class RubricValidationError(Exception):
    """Raised when rubric validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        message = "Rubric validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(message)


class RubricValidator:
    """
    Validates rubrics for completeness and consistency.

    Checks:
    1. Every category has a name, description and criteria
    2. Every category is worth points
    3. No duplicate category names
    4. Declared total points match the categories
    """

    # Minimum criteria length for judges to have something to apply
    MIN_CRITERIA_LENGTH = 10

    def validate(self, rubric: Rubric) -> tuple[bool, list[str]]:
        """
        Validate a rubric and return any issues found.

        Args:
            rubric: The rubric to validate.

        Returns:
            Tuple of (is_valid, list of issues).
        """
        issues: list[str] = []

        for i, category in enumerate(rubric.categories, start=1):
            issues.extend(self._validate_category(category, i))

        issues.extend(self._check_duplicates(rubric.categories))
        issues.extend(self._validate_total_points(rubric))

        return len(issues) == 0, issues

    def validate_or_raise(self, rubric: Rubric) -> None:
        """
        Validate a rubric and raise if invalid.

        Raises:
            RubricValidationError: If validation fails.
        """
        is_valid, issues = self.validate(rubric)
        if not is_valid:
            raise RubricValidationError(issues)

    def _validate_category(self, category: RubricCategory, index: int) -> list[str]:
        """Validate a single category."""
        issues: list[str] = []
        prefix = f"Category {index} ({category.name})"

        if len(category.name.strip()) < 2:
            issues.append(f"{prefix}: Name is too short")

        if not category.description.strip():
            issues.append(f"{prefix}: Description is empty")

        if len(category.criteria.strip()) < self.MIN_CRITERIA_LENGTH:
            issues.append(
                f"{prefix}: Criteria are too short (minimum {self.MIN_CRITERIA_LENGTH} characters). "
                "Judges score against the criteria text."
            )

        # A zero-point category can never show judge disagreement.
        if category.max_points <= 0:
            issues.append(f"{prefix}: Max points must be greater than 0")

        return issues

    def _check_duplicates(self, categories: Sequence[RubricCategory]) -> list[str]:
        """Check for names that collide once surrounding whitespace is ignored."""
        issues: list[str] = []
        seen_names: dict[str, int] = {}

        for i, category in enumerate(categories, start=1):
            name_lower = category.name.lower().strip()
            if name_lower in seen_names:
                issues.append(
                    f"Duplicate category name: '{category.name}' "
                    f"(appears at positions {seen_names[name_lower]} and {i})"
                )
            else:
                seen_names[name_lower] = i

        return issues

    def _validate_total_points(self, rubric: Rubric) -> list[str]:
        """Validate total points are consistent with the categories."""
        issues: list[str] = []

        if rubric.total_points != rubric.category_points:
            issues.append(
                f"Total points ({rubric.total_points}) do not match the sum of "
                f"category points ({rubric.category_points})"
            )

        if rubric.passing_threshold is not None and rubric.passing_threshold > rubric.total_points:
            issues.append(
                f"Passing threshold ({rubric.passing_threshold}) exceeds "
                f"total points ({rubric.total_points})"
            )

        if rubric.total_points > Decimal("1000"):
            issues.append(
                f"Total points ({rubric.total_points}) is unusually high. "
                "Consider if this is intentional."
            )

        return issues
