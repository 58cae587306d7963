"""
Grading Module.

Multi-judge LLM grading of interview transcripts: judge invocation,
response parsing, aggregation of judge grades, and orchestration.
"""

from patient_grading.grading.aggregator import (
    DEFAULT_DISAGREEMENT_THRESHOLD,
    AggregationError,
    GradeAggregator,
    InvalidInputError,
    MissingCategoryError,
    aggregate_grades,
    get_grading_summary,
)
from patient_grading.grading.engine import (
    AuthorizationError,
    GradingError,
    GradingOrchestrator,
    MissingRubricError,
    SubmissionNotFoundError,
)
from patient_grading.grading.judges import JudgeError, JudgeInvoker, UnknownJudgeError
from patient_grading.grading.llm_client import LLMClient, LLMError
from patient_grading.grading.prompt_builder import PromptBuilder
from patient_grading.grading.scorer import ResponseParser, ScoringError

__all__ = [
    "DEFAULT_DISAGREEMENT_THRESHOLD",
    "AggregationError",
    "AuthorizationError",
    "GradeAggregator",
    "GradingError",
    "GradingOrchestrator",
    "InvalidInputError",
    "JudgeError",
    "JudgeInvoker",
    "LLMClient",
    "LLMError",
    "MissingCategoryError",
    "MissingRubricError",
    "PromptBuilder",
    "ResponseParser",
    "ScoringError",
    "SubmissionNotFoundError",
    "UnknownJudgeError",
    "aggregate_grades",
    "get_grading_summary",
]
