"""
Unit tests for the grading orchestrator.

Tests authorization, status transitions, persistence of the AI grading
fields and instructor feedback, with fake judges and an in-memory store.
"""

import asyncio
import gc
from decimal import Decimal

import pytest

from patient_grading.config import Settings
from patient_grading.grading import (
    AuthorizationError,
    GradeAggregator,
    GradingError,
    GradingOrchestrator,
    JudgeInvoker,
    MissingRubricError,
    SubmissionNotFoundError,
)
from patient_grading.models import Submission, SubmissionStatus
from patient_grading.storage import InMemorySubmissionStore


@pytest.fixture
def store(sample_submission: Submission) -> InMemorySubmissionStore:
    return InMemorySubmissionStore([sample_submission])


@pytest.fixture
def build_orchestrator(store, fake_resolver, make_judge_response, test_settings: Settings):
    """Orchestrator whose judges answer with the given History Taking scores."""

    def build(history_scores: dict[str, int]) -> GradingOrchestrator:
        resolver = fake_resolver(
            {
                model: make_judge_response({"History Taking": score, "Communication Skills": 9})
                for model, score in history_scores.items()
            }
        )
        invoker = JudgeInvoker(resolver, default_models=tuple(history_scores))
        return GradingOrchestrator(store, invoker=invoker, settings=test_settings)

    return build


class TestRunAIGrading:
    """Tests for run_ai_grading."""

    async def test_agreeing_judges_mark_reviewed(self, build_orchestrator, store) -> None:
        """Test a grade without flags is stored and the submission is reviewed."""
        orchestrator = build_orchestrator({"judge-a": 8, "judge-b": 6})

        grade = await orchestrator.run_ai_grading("sub-1", "instructor-1")
        stored = store.get("sub-1")

        assert grade.requires_review is False
        assert grade.total_score == Decimal(16)
        assert grade.percentage_score == 80
        assert stored.status == SubmissionStatus.REVIEWED
        assert stored.auto_graded is True
        assert stored.requires_review is False
        assert stored.rubric_scores == grade.average_scores
        assert stored.ai_grades == grade.judge_grades
        assert stored.ai_graded_at == grade.graded_at
        assert stored.disagreement_threshold == Decimal("0.2")

    async def test_disagreeing_judges_leave_pending(self, build_orchestrator, store) -> None:
        """Test a flagged grade keeps the submission pending for review."""
        orchestrator = build_orchestrator({"judge-a": 8, "judge-b": 2})

        grade = await orchestrator.run_ai_grading("sub-1", "instructor-1")
        stored = store.get("sub-1")

        assert grade.flagged_categories == ("History Taking",)
        assert stored.status == SubmissionStatus.PENDING
        assert stored.requires_review is True

    async def test_explicit_models_override_defaults(self, build_orchestrator) -> None:
        orchestrator = build_orchestrator({"judge-a": 8, "judge-b": 6})

        grade = await orchestrator.run_ai_grading("sub-1", "instructor-1", models=["judge-b"])

        assert [jg.model for jg in grade.judge_grades] == ["judge-b"]

    async def test_rerun_replaces_previous_result(self, store, fake_resolver, make_judge_response, test_settings) -> None:
        """Test a second run overwrites the stored fields wholesale."""
        first = JudgeInvoker(
            fake_resolver({"judge-a": make_judge_response({"History Taking": 2, "Communication Skills": 9})}),
            default_models=("judge-a",),
        )
        second = JudgeInvoker(
            fake_resolver({"judge-b": make_judge_response({"History Taking": 10, "Communication Skills": 10})}),
            default_models=("judge-b",),
        )

        await GradingOrchestrator(store, invoker=first, settings=test_settings).run_ai_grading(
            "sub-1", "instructor-1"
        )
        await GradingOrchestrator(store, invoker=second, settings=test_settings).run_ai_grading(
            "sub-1", "instructor-1"
        )
        stored = store.get("sub-1")

        assert [jg.model for jg in stored.ai_grades] == ["judge-b"]
        assert stored.rubric_scores[0].average_score == Decimal(10)

    async def test_custom_aggregator_threshold(self, store, fake_resolver, make_judge_response, test_settings) -> None:
        """Test the stored threshold is the one the aggregator used."""
        invoker = JudgeInvoker(
            fake_resolver(
                {
                    "judge-a": make_judge_response({"History Taking": 8, "Communication Skills": 9}),
                    "judge-b": make_judge_response({"History Taking": 6, "Communication Skills": 9}),
                }
            ),
            default_models=("judge-a", "judge-b"),
        )
        orchestrator = GradingOrchestrator(
            store, invoker=invoker, aggregator=GradeAggregator(threshold=0.1), settings=test_settings
        )

        grade = await orchestrator.run_ai_grading("sub-1", "instructor-1")

        assert grade.requires_review is True
        assert store.get("sub-1").disagreement_threshold == Decimal("0.1")

    async def test_wrong_instructor_rejected(self, build_orchestrator, store, sample_submission) -> None:
        """Test only the assigned instructor may run grading."""
        orchestrator = build_orchestrator({"judge-a": 8})

        with pytest.raises(AuthorizationError, match="not assigned to you"):
            await orchestrator.run_ai_grading("sub-1", "instructor-2")

        assert store.get("sub-1") == sample_submission

    async def test_missing_submission(self, build_orchestrator) -> None:
        orchestrator = build_orchestrator({"judge-a": 8})

        with pytest.raises(SubmissionNotFoundError, match="Submission not found"):
            await orchestrator.run_ai_grading("sub-404", "instructor-1")

    async def test_missing_rubric(self, build_orchestrator, store, sample_submission) -> None:
        store.save(sample_submission.model_copy(update={"id": "sub-2", "rubric": None}))
        orchestrator = build_orchestrator({"judge-a": 8})

        with pytest.raises(MissingRubricError):
            await orchestrator.run_ai_grading("sub-2", "instructor-1")

    async def test_judge_failure_leaves_submission_untouched(
        self, store, fake_resolver, sample_llm_response, sample_submission, test_settings
    ) -> None:
        """Test nothing is written when a judge fails."""
        invoker = JudgeInvoker(
            fake_resolver({"judge-a": sample_llm_response, "judge-b": "no grade today"}),
            default_models=("judge-a", "judge-b"),
        )
        orchestrator = GradingOrchestrator(store, invoker=invoker, settings=test_settings)

        with pytest.raises(GradingError, match="could not be completed"):
            await orchestrator.run_ai_grading("sub-1", "instructor-1")

        assert store.get("sub-1") == sample_submission

    @pytest.fixture
    def tracked_orchestrator(self, store, make_judge_response, test_settings):
        """Orchestrator whose single judge sleeps and records how many calls overlap."""
        response = make_judge_response({"History Taking": 8, "Communication Skills": 9})
        counts = {"active": 0, "peak": 0}

        async def slow_judge(system_prompt: str, user_prompt: str) -> str:
            counts["active"] += 1
            counts["peak"] = max(counts["peak"], counts["active"])
            await asyncio.sleep(0.01)
            counts["active"] -= 1
            return response

        invoker = JudgeInvoker(lambda model: slow_judge, default_models=("judge-a",))
        return GradingOrchestrator(store, invoker=invoker, settings=test_settings), counts

    async def test_concurrent_runs_are_serialized(self, tracked_orchestrator, store) -> None:
        """Test overlapping runs for one submission never judge at the same time."""
        orchestrator, counts = tracked_orchestrator

        first, second = await asyncio.gather(
            orchestrator.run_ai_grading("sub-1", "instructor-1"),
            orchestrator.run_ai_grading("sub-1", "instructor-1"),
        )

        assert counts["peak"] == 1
        assert store.get("sub-1").ai_graded_at == max(first.graded_at, second.graded_at)

    async def test_different_submissions_run_in_parallel(
        self, tracked_orchestrator, store, sample_submission
    ) -> None:
        """Test the lock is held per submission, not per orchestrator."""
        store.save(sample_submission.model_copy(update={"id": "sub-2"}))
        orchestrator, counts = tracked_orchestrator

        await asyncio.gather(
            orchestrator.run_ai_grading("sub-1", "instructor-1"),
            orchestrator.run_ai_grading("sub-2", "instructor-1"),
        )

        assert counts["peak"] == 2

    async def test_locks_released_after_runs(self, build_orchestrator) -> None:
        """Test finished runs leave no per-submission lock behind."""
        orchestrator = build_orchestrator({"judge-a": 8})

        await orchestrator.run_ai_grading("sub-1", "instructor-1")
        await orchestrator.record_instructor_feedback("sub-1", "instructor-1", "See notes.")
        gc.collect()

        assert len(orchestrator._locks) == 0


class TestGradingResults:
    """Tests for get_ai_grading_results."""

    async def test_results_rebuilt_from_submission(self, build_orchestrator) -> None:
        """Test the stored fields reproduce the aggregated grade."""
        orchestrator = build_orchestrator({"judge-a": 8, "judge-b": 2})
        grade = await orchestrator.run_ai_grading("sub-1", "instructor-1")

        result = orchestrator.get_ai_grading_results("sub-1", "student-1")

        assert result == grade

    def test_not_yet_graded(self, build_orchestrator) -> None:
        orchestrator = build_orchestrator({"judge-a": 8})

        assert orchestrator.get_ai_grading_results("sub-1", "instructor-1") is None

    def test_other_users_rejected(self, build_orchestrator) -> None:
        orchestrator = build_orchestrator({"judge-a": 8})

        with pytest.raises(AuthorizationError):
            orchestrator.get_ai_grading_results("sub-1", "student-2")


class TestInstructorFeedback:
    """Tests for record_instructor_feedback."""

    async def test_feedback_with_grade(self, build_orchestrator, store) -> None:
        """Test entering a grade finalizes the submission."""
        orchestrator = build_orchestrator({"judge-a": 8})
        await orchestrator.run_ai_grading("sub-1", "instructor-1")

        updated = await orchestrator.record_instructor_feedback(
            "sub-1", "instructor-1", "Good rapport, explore risk factors.", grade="B+"
        )

        assert updated.status == SubmissionStatus.GRADED
        assert updated.grade == "B+"
        assert updated.reviewed_at is not None
        assert updated.auto_graded is True
        assert store.get("sub-1") == updated

    async def test_feedback_without_grade(self, build_orchestrator) -> None:
        orchestrator = build_orchestrator({"judge-a": 8})

        updated = await orchestrator.record_instructor_feedback("sub-1", "instructor-1", "See notes.")

        assert updated.status == SubmissionStatus.REVIEWED
        assert updated.grade is None
        assert updated.feedback == "See notes."

    async def test_feedback_requires_assigned_instructor(self, build_orchestrator) -> None:
        orchestrator = build_orchestrator({"judge-a": 8})

        with pytest.raises(AuthorizationError):
            await orchestrator.record_instructor_feedback("sub-1", "student-1", "Nice work")
