"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules.
"""

import json
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Generator

import pytest

from patient_grading.config import Settings
from patient_grading.models import (
    CategoryScore,
    GradingInput,
    JudgeGrade,
    PatientContext,
    Rubric,
    RubricCategory,
    Submission,
    TranscriptMessage,
)

JudgeGradeFactory = Callable[..., JudgeGrade]


# ==============================================================================
# Directory Fixtures
# ==============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ==============================================================================
# Rubric and Transcript Fixtures
# ==============================================================================


@pytest.fixture
def sample_rubric() -> Rubric:
    """A two-category interview rubric worth 20 points."""
    return Rubric(
        title="Interview Rubric",
        categories=(
            RubricCategory(
                name="History Taking",
                description="Gathering relevant patient information",
                max_points=10,
                criteria="Asked appropriate questions, obtained comprehensive history",
            ),
            RubricCategory(
                name="Communication Skills",
                description="Interpersonal and communication abilities",
                max_points=10,
                criteria="Clear communication, active listening, empathy",
            ),
        ),
        total_points=20,
    )


@pytest.fixture
def sample_transcript() -> tuple[TranscriptMessage, ...]:
    """A short student/patient exchange."""
    return (
        TranscriptMessage(role="user", content="Hi, I'm a medical student. What brings you in today?"),
        TranscriptMessage(role="assistant", content="I've had chest pain since this morning."),
        TranscriptMessage(role="user", content="I'm sorry to hear that. Can you describe the pain?"),
        TranscriptMessage(role="assistant", content="It's a pressure, right in the middle of my chest."),
    )


@pytest.fixture
def sample_patient_context() -> PatientContext:
    return PatientContext(name="John Carter", age=58, chief_complaint="Chest pain")


@pytest.fixture
def sample_grading_input(
    sample_rubric: Rubric,
    sample_transcript: tuple[TranscriptMessage, ...],
    sample_patient_context: PatientContext,
) -> GradingInput:
    return GradingInput(
        transcript=sample_transcript,
        rubric=sample_rubric,
        patient_context=sample_patient_context,
    )


@pytest.fixture
def sample_submission(
    sample_rubric: Rubric,
    sample_transcript: tuple[TranscriptMessage, ...],
    sample_patient_context: PatientContext,
) -> Submission:
    return Submission(
        id="sub-1",
        student_id="student-1",
        instructor_id="instructor-1",
        transcript=sample_transcript,
        rubric=sample_rubric,
        patient_context=sample_patient_context,
    )


# ==============================================================================
# Judge Grade Fixtures
# ==============================================================================


@pytest.fixture
def judge_grade_factory() -> JudgeGradeFactory:
    """
    Build JudgeGrades from ``{category: (score, max_points)}`` mappings.

    ``max_score`` defaults to the sum of the category max points.
    """

    def make(model: str, scores: dict[str, tuple[Any, Any]], max_score: Any = None) -> JudgeGrade:
        category_scores = tuple(
            CategoryScore(
                category=name,
                score=score,
                max_points=max_points,
                reasoning=f"{model} reasoning for {name}",
            )
            for name, (score, max_points) in scores.items()
        )
        return JudgeGrade(
            model=model,
            category_scores=category_scores,
            total_score=sum((cs.score for cs in category_scores), Decimal(0)),
            max_score=(
                max_score
                if max_score is not None
                else sum((cs.max_points for cs in category_scores), Decimal(0))
            ),
            overall_feedback=f"Feedback from {model}",
        )

    return make


# ==============================================================================
# LLM Response Fixtures
# ==============================================================================


def _judge_response(scores: dict[str, Any], feedback: str = "Solid interview.") -> str:
    """Render a judge response in the JSON shape the prompt asks for."""
    return json.dumps(
        {
            "categoryScores": [
                {
                    "category": name,
                    "score": score,
                    "maxPoints": 10,
                    "reasoning": f"Evidence for {name}",
                }
                for name, score in scores.items()
            ],
            "totalScore": sum(scores.values()),
            "overallFeedback": feedback,
        }
    )


@pytest.fixture
def sample_llm_response() -> str:
    """Judge response scoring both sample rubric categories."""
    return _judge_response({"History Taking": 8, "Communication Skills": 9})


@pytest.fixture
def make_judge_response() -> Callable[..., str]:
    """Factory for judge responses with chosen category scores."""
    return _judge_response


@pytest.fixture
def fake_resolver() -> Callable[[dict[str, str]], Callable]:
    """
    Build a resolver that answers each model with a canned response.

    Unknown models raise KeyError, like the real resolver. The calls made
    are recorded on the returned resolver's ``calls`` list.
    """

    def build(responses: dict[str, str]):
        calls: list[tuple[str, str, str]] = []

        def resolve(model: str):
            if model not in responses:
                raise KeyError(model)

            async def judge(system_prompt: str, user_prompt: str) -> str:
                calls.append((model, system_prompt, user_prompt))
                return responses[model]

            return judge

        resolve.calls = calls  # type: ignore[attr-defined]
        return resolve

    return build


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with mocked values."""
    return Settings(
        llm_api_key="test-api-key-for-testing",
        llm_base_url="https://test.api.local/",
        judge_models=("judge-a", "judge-b"),
        llm_temperature=0.0,
        llm_max_retries=2,
        judge_timeout_seconds=5.0,
        disagreement_threshold=0.2,
    )
