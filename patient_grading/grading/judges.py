"""
Judge invocation.

Runs every configured judge model over the same grading input
concurrently and waits for all of them. Judges are looked up through an
injected resolver so tests can substitute deterministic fakes.
"""

import asyncio
import logging
from typing import Callable, Sequence

from patient_grading.config import JudgeFailurePolicy
from patient_grading.grading.llm_client import JudgeCallable, LLMError
from patient_grading.grading.prompt_builder import PromptBuilder
from patient_grading.grading.scorer import ResponseParser, ScoringError
from patient_grading.models import GradingInput, JudgeGrade

logger = logging.getLogger(__name__)

JudgeResolver = Callable[[str], JudgeCallable]


class JudgeError(Exception):
    """Raised when judge calls fail under the active failure policy."""

    def __init__(self, message: str, failures: dict[str, Exception] | None = None):
        self.failures = failures or {}
        super().__init__(message)


class UnknownJudgeError(JudgeError):
    """Raised when the resolver has no judge for a model identifier."""

    def __init__(self, model: str):
        self.model = model
        super().__init__(f"Unknown judge model: '{model}'")


class JudgeInvoker:
    """
    Fans a grading input out to several judges.

    Each judge returns a JudgeGrade whose categories enumerate the rubric
    in canonical order with a recomputed total.
    """

    def __init__(
        self,
        resolver: JudgeResolver,
        default_models: Sequence[str] = (),
        parser: ResponseParser | None = None,
        timeout: float | None = None,
        failure_policy: JudgeFailurePolicy = JudgeFailurePolicy.FAIL_FAST,
    ):
        """
        Args:
            resolver: Maps a model identifier to an async judge callable.
            default_models: Judges used when run_all_judges gets no models.
            parser: Response parser. A fresh one if not provided.
            timeout: Seconds allowed per judge call; None waits indefinitely.
            failure_policy: Whether one failed judge fails the whole run.
        """
        self._resolver = resolver
        self._default_models = tuple(default_models)
        self._parser = parser or ResponseParser()
        self._timeout = timeout
        self._failure_policy = failure_policy

    def resolve(self, model: str) -> JudgeCallable:
        try:
            return self._resolver(model)
        except KeyError as e:
            raise UnknownJudgeError(model) from e

    async def grade_with_model(self, model: str, grading_input: GradingInput) -> JudgeGrade:
        """
        Grade the input with a single judge.

        Raises:
            UnknownJudgeError: If the model cannot be resolved.
            LLMError: If the judge call fails or times out.
            ScoringError: If the judge's response is unusable.
        """
        judge = self.resolve(model)
        system_prompt, user_prompt = PromptBuilder.build_messages(grading_input)

        logger.debug("Calling judge %s", model)
        try:
            if self._timeout is None:
                raw_response = await judge(system_prompt, user_prompt)
            else:
                raw_response = await asyncio.wait_for(
                    judge(system_prompt, user_prompt), timeout=self._timeout
                )
        except asyncio.TimeoutError as e:
            raise LLMError(
                f"Judge {model} timed out after {self._timeout}s", cause=e, retryable=True
            ) from e

        grade = self._parser.parse(raw_response, grading_input.rubric, model)
        logger.info("Judge %s scored %s/%s", model, grade.total_score, grade.max_score)
        return grade

    async def run_all_judges(
        self, grading_input: GradingInput, models: Sequence[str] | None = None
    ) -> list[JudgeGrade]:
        """
        Run all judges in parallel.

        Under fail-fast the first failed judge cancels the ones still
        running; under fail-soft every judge is awaited.

        Args:
            grading_input: Transcript, rubric and patient context.
            models: Judge identifiers. Uses the default models if None.

        Returns:
            One JudgeGrade per successful judge, in ``models`` order.

        Raises:
            UnknownJudgeError: If any model cannot be resolved.
            JudgeError: If any judge failed (fail-fast) or all failed (fail-soft).
        """
        judge_models = tuple(models) if models is not None else self._default_models
        if not judge_models:
            raise JudgeError("No judge models configured")

        # Resolve up front so configuration errors surface before any call.
        for model in judge_models:
            self.resolve(model)

        if self._failure_policy == JudgeFailurePolicy.FAIL_FAST:
            results = await self._gather_until_failure(grading_input, judge_models)
        else:
            results = await asyncio.gather(
                *(self.grade_with_model(model, grading_input) for model in judge_models),
                return_exceptions=True,
            )

        grades: list[JudgeGrade] = []
        failures: dict[str, Exception] = {}
        for model, result in zip(judge_models, results):
            if result is None:
                continue
            if isinstance(result, (LLMError, ScoringError, JudgeError)):
                failures[model] = result
            elif isinstance(result, BaseException):
                raise result
            else:
                grades.append(result)

        if failures:
            for model, error in failures.items():
                logger.warning("Judge %s failed: %s", model, error)

            if self._failure_policy == JudgeFailurePolicy.FAIL_FAST or not grades:
                failed = ", ".join(failures)
                raise JudgeError(f"Judge grading failed for: {failed}", failures=failures)

            logger.warning(
                "Continuing with %d of %d judges", len(grades), len(judge_models)
            )

        return grades

    async def _gather_until_failure(
        self, grading_input: GradingInput, judge_models: Sequence[str]
    ) -> list[JudgeGrade | BaseException | None]:
        """
        Run the judges concurrently, cancelling the rest once one fails.

        Returns one entry per model: its grade, its exception, or None if it
        was cancelled after another judge failed.
        """
        tasks = [
            asyncio.ensure_future(self.grade_with_model(model, grading_input))
            for model in judge_models
        ]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        if pending:
            logger.info("Cancelling %d running judges after a failure", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        results: list[JudgeGrade | BaseException | None] = []
        for task in tasks:
            if task not in done:
                results.append(None)
            elif task.exception() is not None:
                results.append(task.exception())
            else:
                results.append(task.result())
        return results
