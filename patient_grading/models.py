"""
Pydantic models for the patient grading system.

These models define the schemas for:
- Rubrics and the grading input sent to the judges
- Per-judge grades and the aggregated multi-judge grade
- The submission record that receives the grading result

Score fields are Decimals so that the 2-decimal rounding rules are exact.
All models are frozen; the aggregator never mutates its inputs.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)


def _to_decimal(v: Any) -> Decimal:
    """Convert numeric values to Decimal without float artifacts."""
    if isinstance(v, Decimal):
        return v
    if isinstance(v, bool):
        raise ValueError("Boolean is not a valid score")
    return Decimal(str(v))


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# ==============================================================================
# Rubric Models
# ==============================================================================


class RubricCategory(BaseModel):
    """
    A single scoring category within a rubric.

    The criteria text is free-form guidance handed to the judges verbatim.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Name of the category (e.g., 'History Taking')",
    )

    description: str = Field(
        default="",
        description="Short description of what the category evaluates",
    )

    max_points: Decimal = Field(
        ...,
        ge=0,
        le=1000,
        description="Maximum points for this category",
    )

    criteria: str = Field(
        default="",
        description="Free-text criteria the judges apply",
    )

    @field_validator("max_points", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal for precision."""
        return _to_decimal(v)


class Rubric(BaseModel):
    """
    An ordered set of scoring categories plus a total-points figure.

    The category order is canonical: judge grades and aggregated grades
    list categories in this order.
    """

    model_config = ConfigDict(frozen=True)

    title: str = Field(
        default="Grading Rubric",
        min_length=1,
        max_length=500,
        description="Title of the rubric",
    )

    categories: tuple[RubricCategory, ...] = Field(
        ...,
        min_length=1,
        description="Ordered scoring categories",
    )

    total_points: Decimal = Field(
        ...,
        gt=0,
        description="Declared total points of the rubric",
    )

    passing_threshold: Decimal | None = Field(
        default=None,
        ge=0,
        description="Optional passing score",
    )

    @field_validator("total_points", "passing_threshold", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal | None:
        """Convert numeric values to Decimal for precision."""
        if v is None:
            return None
        return _to_decimal(v)

    @model_validator(mode="after")
    def validate_no_duplicate_names(self) -> "Rubric":
        """Ensure no duplicate category names."""
        names = [c.name.lower() for c in self.categories]
        if len(names) != len(set(names)):
            duplicates = {c.name for c in self.categories if names.count(c.name.lower()) > 1}
            raise ValueError(f"Duplicate category names found: {duplicates}")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def category_points(self) -> Decimal:
        """Sum of the categories' maximum points."""
        return sum((c.max_points for c in self.categories), Decimal(0))

    @property
    def category_names(self) -> tuple[str, ...]:
        """Category names in canonical order."""
        return tuple(c.name for c in self.categories)

    def find_category(self, name: str) -> RubricCategory | None:
        """Look up a category by name, ignoring case."""
        wanted = name.strip().lower()
        for category in self.categories:
            if category.name.lower() == wanted:
                return category
        return None


# ==============================================================================
# Grading Input Models
# ==============================================================================


class TranscriptMessage(BaseModel):
    """One turn of the interview. "user" is the student, "assistant" the patient."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class PatientContext(BaseModel):
    """Who the simulated patient is."""

    model_config = ConfigDict(frozen=True)

    name: str
    age: int = Field(..., ge=0, le=150)
    chief_complaint: str = Field(
        ...,
        validation_alias=AliasChoices("chief_complaint", "chiefComplaint"),
    )


class GradingInput(BaseModel):
    """Everything a judge needs to grade one transcript."""

    model_config = ConfigDict(frozen=True)

    transcript: tuple[TranscriptMessage, ...]
    rubric: Rubric
    patient_context: PatientContext | None = None


# ==============================================================================
# Judge Grade Models
# ==============================================================================


class CategoryScore(BaseModel):
    """
    One judge's score for one rubric category.

    Includes the score and the judge's reasoning.
    """

    model_config = ConfigDict(frozen=True)

    category: str = Field(..., min_length=1)

    score: Decimal = Field(..., ge=0, description="Points awarded (0 to max_points)")

    max_points: Decimal = Field(..., ge=0, description="Maximum points for the category")

    reasoning: str = Field(default="", description="Judge's evidence for the score")

    @field_validator("score", "max_points", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal for precision."""
        return _to_decimal(v)

    @model_validator(mode="after")
    def validate_points_range(self) -> "CategoryScore":
        """Ensure the score doesn't exceed max points."""
        if self.score > self.max_points:
            raise ValueError(
                f"Score ({self.score}) for '{self.category}' cannot exceed "
                f"max points ({self.max_points})"
            )
        return self


class JudgeGrade(BaseModel):
    """
    One judge's complete grading of a transcript.

    ``total_score`` is whatever the builder of the grade computed; the
    response parser always recomputes it from the category scores.
    """

    model_config = ConfigDict(frozen=True)

    model: str = Field(..., min_length=1, description="Judge identifier")

    category_scores: tuple[CategoryScore, ...]

    total_score: Decimal

    max_score: Decimal = Field(..., ge=0)

    overall_feedback: str = ""

    graded_at: datetime = Field(default_factory=utcnow)

    @field_validator("total_score", "max_score", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal for precision."""
        return _to_decimal(v)

    def score_for(self, category: str) -> CategoryScore | None:
        """Return this judge's score for a category, matched by exact name."""
        for category_score in self.category_scores:
            if category_score.category == category:
                return category_score
        return None


# ==============================================================================
# Aggregated Grade Models
# ==============================================================================


class JudgeScore(BaseModel):
    """A single judge's contribution to an aggregated category."""

    model_config = ConfigDict(frozen=True)

    model: str
    score: Decimal
    reasoning: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal for precision."""
        return _to_decimal(v)


class AggregatedCategoryScore(BaseModel):
    """Cross-judge summary for one rubric category."""

    model_config = ConfigDict(frozen=True)

    category: str
    average_score: Decimal
    max_points: Decimal
    disagreement_percent: Decimal = Field(
        ...,
        ge=0,
        description="Range of judge scores as a fraction of max points",
    )
    judge_scores: tuple[JudgeScore, ...]

    @field_validator("average_score", "max_points", "disagreement_percent", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal for precision."""
        return _to_decimal(v)


class AggregatedGrade(BaseModel):
    """
    Final result of grading one submission with several judges.

    Computed fresh on every grading run; a re-run replaces it wholesale.
    """

    model_config = ConfigDict(frozen=True)

    average_scores: tuple[AggregatedCategoryScore, ...]
    total_score: Decimal
    max_score: Decimal
    percentage_score: int
    requires_review: bool
    flagged_categories: tuple[str, ...]
    judge_grades: tuple[JudgeGrade, ...]
    disagreement_threshold: Decimal
    graded_at: datetime = Field(default_factory=utcnow)

    @field_validator("total_score", "max_score", "disagreement_threshold", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal for precision."""
        return _to_decimal(v)


# ==============================================================================
# Submission Models
# ==============================================================================


class SubmissionStatus(str, Enum):
    """Review state of a submitted transcript."""

    PENDING = "pending"
    REVIEWED = "reviewed"
    GRADED = "graded"


class Submission(BaseModel):
    """
    A finalized transcript a student sent to an instructor.

    The AI grading fields mirror an AggregatedGrade: ``rubric_scores`` holds
    the averaged category scores and ``ai_grades`` the individual judge grades.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    student_id: str
    instructor_id: str
    transcript: tuple[TranscriptMessage, ...] = ()
    rubric: Rubric | None = None
    patient_context: PatientContext | None = None

    status: SubmissionStatus = SubmissionStatus.PENDING
    feedback: str | None = None
    grade: str | None = None
    reviewed_at: datetime | None = None

    rubric_scores: tuple[AggregatedCategoryScore, ...] | None = None
    ai_grades: tuple[JudgeGrade, ...] | None = None
    requires_review: bool = False
    auto_graded: bool = False
    ai_graded_at: datetime | None = None
    disagreement_threshold: Decimal | None = None

    @field_validator("disagreement_threshold", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal | None:
        """Convert numeric values to Decimal for precision."""
        if v is None:
            return None
        return _to_decimal(v)

    def grading_input(self) -> GradingInput:
        """Build the judge input for this submission. Requires a rubric."""
        if self.rubric is None:
            raise ValueError(f"Submission {self.id} has no rubric")
        return GradingInput(
            transcript=self.transcript,
            rubric=self.rubric,
            patient_context=self.patient_context,
        )
