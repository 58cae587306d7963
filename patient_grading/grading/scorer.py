"""
Response parser for judge output.

Parses the JSON response of a judge and reconciles it against the rubric.
The rubric's category list is authoritative: categories are reordered to
match it, unknown ones are dropped, and missing ones are scored zero.
"""

import json
import re
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from patient_grading.models import CategoryScore, JudgeGrade, Rubric, utcnow

MISSING_REASONING = "No reasoning provided"


class ScoringError(Exception):
    """Raised when score parsing or validation fails."""

    def __init__(self, message: str, raw_response: str | None = None):
        self.raw_response = raw_response
        super().__init__(message)


class JudgeCategoryScore(BaseModel):
    """One category entry as the judge reports it."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    category: str
    score: float
    max_points: float | None = Field(default=None, alias="maxPoints")
    reasoning: str | None = None


class JudgeResponse(BaseModel):
    """The JSON structure every judge is asked to return."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    category_scores: list[JudgeCategoryScore] = Field(..., alias="categoryScores")
    total_score: float | None = Field(default=None, alias="totalScore")
    overall_feedback: str = Field(default="", alias="overallFeedback")


class ResponseParser:
    """
    Parses judge responses into JudgeGrades.

    Ensures:
    1. Response contains a JSON object with the expected fields
    2. Every rubric category has exactly one score, in rubric order
    3. Scores are within 0..max_points
    4. The total is recomputed from the category scores
    """

    def parse(self, response: str, rubric: Rubric, model: str) -> JudgeGrade:
        """
        Parse a judge response into a JudgeGrade.

        Args:
            response: Raw judge response (expected JSON).
            rubric: The rubric used for grading.
            model: Identifier of the judge that produced the response.

        Returns:
            JudgeGrade reconciled against the rubric.

        Raises:
            ScoringError: If parsing or validation fails.
        """
        json_str = self._extract_json(response)

        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ScoringError(f"Invalid JSON in response: {e}", raw_response=response) from e

        try:
            parsed = JudgeResponse.model_validate(data)
        except ValidationError as e:
            raise ScoringError(
                f"Response does not match the grading schema: {e}", raw_response=response
            ) from e

        return self.reconcile(parsed, rubric, model, response)

    def reconcile(
        self, parsed: JudgeResponse, rubric: Rubric, model: str, raw_response: str = ""
    ) -> JudgeGrade:
        """
        Rebuild the category scores in rubric order.

        Categories are matched ignoring case. A rubric category the judge
        did not address scores 0 with a placeholder reasoning.
        """
        reported: dict[str, JudgeCategoryScore] = {}
        for item in parsed.category_scores:
            reported.setdefault(item.category.strip().lower(), item)

        category_scores: list[CategoryScore] = []
        for category in rubric.categories:
            item = reported.get(category.name.lower())
            if item is None:
                score = Decimal(0)
                reasoning = MISSING_REASONING
            else:
                score = self._parse_decimal(item.score, category.name, raw_response)
                reasoning = MISSING_REASONING if item.reasoning is None else item.reasoning

            if score < 0:
                raise ScoringError(
                    f"Negative score for '{category.name}': {score}", raw_response=raw_response
                )
            if score > category.max_points:
                raise ScoringError(
                    f"Score for '{category.name}' ({score}) exceeds max ({category.max_points})",
                    raw_response=raw_response,
                )

            category_scores.append(
                CategoryScore(
                    category=category.name,
                    score=score,
                    max_points=category.max_points,
                    reasoning=reasoning,
                )
            )

        return JudgeGrade(
            model=model,
            category_scores=tuple(category_scores),
            total_score=sum((cs.score for cs in category_scores), Decimal(0)),
            max_score=rubric.total_points,
            overall_feedback=parsed.overall_feedback,
            graded_at=utcnow(),
        )

    def _extract_json(self, response: str) -> str:
        """
        Extract JSON from response, handling common formats.

        Args:
            response: Raw response text.

        Returns:
            Extracted JSON string.
        """
        # Remove markdown code block if present
        json_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", response)
        if json_match:
            return json_match.group(1).strip()

        brace_start = response.find("{")
        if brace_start == -1:
            raise ScoringError("No JSON object found in response", raw_response=response)

        # Find matching closing brace
        depth = 0
        for i, char in enumerate(response[brace_start:], start=brace_start):
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return response[brace_start : i + 1]

        raise ScoringError("Unclosed JSON object in response", raw_response=response)

    def _parse_decimal(self, value: Any, field_name: str, raw_response: str) -> Decimal:
        """Parse a value as Decimal."""
        try:
            if isinstance(value, Decimal):
                return value
            parsed = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ScoringError(
                f"Invalid numeric value for {field_name}: {value}", raw_response=raw_response
            ) from e
        if not parsed.is_finite():
            raise ScoringError(
                f"Invalid numeric value for {field_name}: {value}", raw_response=raw_response
            )
        return parsed
