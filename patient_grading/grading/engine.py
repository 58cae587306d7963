"""
Grading orchestrator.

Runs AI grading for a submitted transcript: checks the caller is the
assigned instructor, invokes every judge, aggregates their grades, and
stores the result on the submission together with its new status.
"""

import asyncio
import logging
import weakref
from decimal import Decimal

from patient_grading.config import Settings, get_settings
from patient_grading.grading.aggregator import GradeAggregator, round_half_up
from patient_grading.grading.judges import JudgeError, JudgeInvoker
from patient_grading.grading.llm_client import LLMClient
from patient_grading.models import (
    AggregatedGrade,
    Submission,
    SubmissionStatus,
    utcnow,
)
from patient_grading.storage import SubmissionStore

logger = logging.getLogger(__name__)


class GradingError(Exception):
    """Raised when a grading operation cannot be completed."""


class SubmissionNotFoundError(GradingError):
    """Raised when the submission does not exist."""

    def __init__(self, submission_id: str):
        self.submission_id = submission_id
        super().__init__("Submission not found")


class AuthorizationError(GradingError):
    """Raised when the caller may not act on the submission."""


class MissingRubricError(GradingError):
    """Raised when the submission has no rubric to grade against."""


class GradingOrchestrator:
    """
    Coordinates judges, aggregation and persistence for submissions.

    Grading runs for the same submission are serialized by a
    per-submission lock; the last run to finish owns the stored result.
    """

    def __init__(
        self,
        store: SubmissionStore,
        invoker: JudgeInvoker | None = None,
        aggregator: GradeAggregator | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Where submissions are loaded from and saved to.
            invoker: Judge invoker. Built from settings if not provided.
            aggregator: Grade aggregator. Built from settings if not provided.
            settings: Configuration settings. Uses global settings if not provided.
        """
        self._store = store
        self._settings = settings or get_settings()
        self._invoker = invoker or self._build_invoker(self._settings)
        self._aggregator = aggregator or GradeAggregator(
            threshold=self._settings.disagreement_threshold,
            missing_category_policy=self._settings.missing_category_policy,
        )
        # Entries vanish once no run holds or awaits the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @staticmethod
    def _build_invoker(settings: Settings) -> JudgeInvoker:
        client = LLMClient(settings)
        return JudgeInvoker(
            resolver=client.resolve_judge,
            default_models=settings.judge_models,
            timeout=settings.judge_timeout_seconds,
            failure_policy=settings.judge_failure_policy,
        )

    def _lock_for(self, submission_id: str) -> asyncio.Lock:
        lock = self._locks.get(submission_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[submission_id] = lock
        return lock

    def _load(self, submission_id: str) -> Submission:
        submission = self._store.get(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(submission_id)
        return submission

    @staticmethod
    def _require_instructor(submission: Submission, instructor_id: str) -> None:
        if submission.instructor_id != instructor_id:
            raise AuthorizationError("Unauthorized: This submission is not assigned to you")

    async def run_ai_grading(
        self, submission_id: str, instructor_id: str, models: list[str] | None = None
    ) -> AggregatedGrade:
        """
        Grade a submission with every judge and store the aggregated result.

        The prior AI grading fields are replaced wholesale. Status becomes
        ``pending`` when review is required, otherwise ``reviewed``; only an
        instructor-entered grade moves a submission to ``graded``.

        Args:
            submission_id: Submission to grade.
            instructor_id: Caller; must be the assigned instructor.
            models: Judge identifiers. Uses the configured judges if None.

        Returns:
            The aggregated grade that was stored.

        Raises:
            SubmissionNotFoundError: If the submission does not exist.
            AuthorizationError: If the caller is not the assigned instructor.
            MissingRubricError: If no rubric is attached.
            GradingError: If the judges could not complete grading. The
                stored submission is left untouched.
        """
        async with self._lock_for(submission_id):
            submission = self._load(submission_id)
            self._require_instructor(submission, instructor_id)

            if submission.rubric is None:
                raise MissingRubricError("No grading rubric configured for this submission")

            grading_input = submission.grading_input()
            logger.info("Running AI grading for submission %s", submission_id)

            try:
                judge_grades = await self._invoker.run_all_judges(grading_input, models)
            except JudgeError as e:
                logger.error("AI grading failed for submission %s: %s", submission_id, e)
                raise GradingError(f"AI grading could not be completed: {e}") from e

            grade = self._aggregator.aggregate(judge_grades, rubric=submission.rubric)

            updated = submission.model_copy(
                update={
                    "rubric_scores": grade.average_scores,
                    "ai_grades": grade.judge_grades,
                    "requires_review": grade.requires_review,
                    "auto_graded": True,
                    "ai_graded_at": grade.graded_at,
                    "disagreement_threshold": grade.disagreement_threshold,
                    "status": (
                        SubmissionStatus.PENDING
                        if grade.requires_review
                        else SubmissionStatus.REVIEWED
                    ),
                }
            )
            self._store.save(updated)

            logger.info(
                "Submission %s AI graded: %s",
                submission_id,
                self._aggregator.summarize(grade).replace("\n", " "),
            )
            return grade

    def get_ai_grading_results(self, submission_id: str, user_id: str) -> AggregatedGrade | None:
        """
        Rebuild the stored AI grade of a submission.

        The assigned instructor and the submitting student may read it.
        Returns None if the submission has not been AI graded.
        """
        submission = self._load(submission_id)
        if user_id not in (submission.instructor_id, submission.student_id):
            raise AuthorizationError("Unauthorized: You cannot view this grading result")

        if not submission.auto_graded or not submission.rubric_scores or not submission.ai_grades:
            return None

        average_scores = submission.rubric_scores
        threshold = submission.disagreement_threshold
        if threshold is None:
            threshold = self._aggregator.threshold

        total_score = round_half_up(sum((s.average_score for s in average_scores), Decimal(0)))
        if submission.rubric is not None:
            max_score = submission.rubric.total_points
        else:
            max_score = sum((s.max_points for s in average_scores), Decimal(0))
        flagged = tuple(s.category for s in average_scores if s.disagreement_percent > threshold)

        return AggregatedGrade(
            average_scores=average_scores,
            total_score=total_score,
            max_score=max_score,
            percentage_score=int(round_half_up(total_score / max_score * 100, Decimal(1))),
            requires_review=submission.requires_review,
            flagged_categories=flagged,
            judge_grades=submission.ai_grades,
            disagreement_threshold=threshold,
            graded_at=submission.ai_graded_at or utcnow(),
        )

    async def record_instructor_feedback(
        self,
        submission_id: str,
        instructor_id: str,
        feedback: str,
        grade: str | None = None,
    ) -> Submission:
        """
        Store the instructor's feedback and optional final grade.

        Status becomes ``graded`` when a grade is given, otherwise ``reviewed``.
        """
        async with self._lock_for(submission_id):
            submission = self._load(submission_id)
            self._require_instructor(submission, instructor_id)

            updated = submission.model_copy(
                update={
                    "feedback": feedback,
                    "grade": grade or None,
                    "status": SubmissionStatus.GRADED if grade else SubmissionStatus.REVIEWED,
                    "reviewed_at": utcnow(),
                }
            )
            self._store.save(updated)

        logger.info("Instructor %s reviewed submission %s", instructor_id, submission_id)
        return updated
