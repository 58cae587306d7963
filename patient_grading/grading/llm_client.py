"""
LLM Client for the judge models.

Provides an async wrapper around the OpenAI SDK pointed at any
OpenAI-compatible endpoint. Includes retry logic and error handling.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from openai import APIConnectionError, APIStatusError, AsyncOpenAI, RateLimitError

from patient_grading.config import Settings, get_settings

logger = logging.getLogger(__name__)

JudgeCallable = Callable[[str, str], Awaitable[str]]
"""An async judge: (system_prompt, user_prompt) -> raw response text."""


class LLMError(Exception):
    """Raised when LLM API call fails."""

    def __init__(self, message: str, cause: Exception | None = None, retryable: bool = False):
        self.cause = cause
        self.retryable = retryable
        super().__init__(message)


class LLMClient:
    """
    Client for the OpenAI-compatible judge endpoint.

    One client serves every configured judge model; ``resolve_judge``
    binds a model identifier to an async callable.
    Implements retry logic with exponential backoff.
    """

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None):
        """
        Initialize the LLM client.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            client: Preconfigured SDK client, mainly for tests.
        """
        self._settings = settings or get_settings()
        self._client = client or AsyncOpenAI(
            api_key=self._settings.llm_api_key,
            base_url=self._settings.llm_base_url,
            max_retries=0,
        )

        # Retry configuration
        self._max_retries = self._settings.llm_max_retries
        self._base_delay = 1.0  # seconds
        self._max_delay = 30.0  # seconds

    def resolve_judge(self, model: str) -> JudgeCallable:
        """
        Bind a configured judge model to an async callable.

        Raises:
            KeyError: If the model is not one of the configured judges.
        """
        if model not in self._settings.judge_models:
            raise KeyError(model)

        async def judge(system_prompt: str, user_prompt: str) -> str:
            return await self.generate(model, system_prompt, user_prompt)

        return judge

    async def generate(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """
        Generate a response from one judge model.

        Args:
            model: Judge model identifier.
            system_prompt: System message defining the judge's role.
            user_prompt: User message with the rubric and transcript.
            temperature: Override temperature (uses config default if None).
            max_tokens: Override maximum tokens in response.

        Returns:
            The generated text response.

        Raises:
            LLMError: If generation fails after all retries.
        """
        temp = temperature if temperature is not None else self._settings.llm_temperature
        tokens = max_tokens or self._settings.llm_max_tokens

        messages: list[dict[str, str]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        return await self._call_with_retry(model, messages, temp, tokens)

    async def _call_with_retry(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> str:
        """
        Call the API with exponential backoff retry.

        Returns:
            Generated text.

        Raises:
            LLMError: If all retries fail.
        """
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                response = await self._client.chat.completions.create(
                    model=model,
                    messages=messages,  # type: ignore[arg-type]
                    temperature=temperature,
                    max_tokens=max_tokens,
                    response_format={"type": "json_object"},
                )

                if response.choices and response.choices[0].message.content:
                    return response.choices[0].message.content

                raise LLMError(f"Empty response from {model}")

            except RateLimitError as e:
                last_error = e
                if attempt < self._max_retries:
                    await self._backoff(model, attempt, "rate limited")
                    continue
                raise LLMError(
                    f"Rate limit exceeded for {model} after {self._max_retries} retries",
                    cause=e,
                    retryable=True,
                ) from e

            except APIConnectionError as e:
                last_error = e
                if attempt < self._max_retries:
                    await self._backoff(model, attempt, "connection failed")
                    continue
                raise LLMError(
                    f"Connection to {model} failed after {self._max_retries} retries",
                    cause=e,
                    retryable=True,
                ) from e

            except APIStatusError as e:
                # Don't retry on client errors (4xx except 429)
                if 400 <= e.status_code < 500 and e.status_code != 429:
                    raise LLMError(
                        f"API error from {model}: {e.message}",
                        cause=e,
                        retryable=False,
                    ) from e

                last_error = e
                if attempt < self._max_retries:
                    await self._backoff(model, attempt, f"status {e.status_code}")
                    continue
                raise LLMError(
                    f"API error from {model} after {self._max_retries} retries: {e.message}",
                    cause=e,
                    retryable=True,
                ) from e

            except LLMError:
                raise

            except Exception as e:
                raise LLMError(f"Unexpected error from {model}: {e}", cause=e, retryable=False) from e

        raise LLMError(f"Failed after {self._max_retries} retries", cause=last_error)

    async def _backoff(self, model: str, attempt: int, reason: str) -> None:
        delay = self._calculate_delay(attempt)
        logger.warning(
            "Judge %s %s (attempt %d/%d); retrying in %.1fs",
            model, reason, attempt + 1, self._max_retries + 1, delay,
        )
        await asyncio.sleep(delay)

    def _calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for exponential backoff.

        Args:
            attempt: Current attempt number (0-indexed).

        Returns:
            Delay in seconds.
        """
        delay = self._base_delay * (2**attempt)
        return min(delay, self._max_delay)

    async def health_check(self) -> bool:
        """
        Check if the API is reachable with the first configured judge.

        Returns:
            True if API is healthy, False otherwise.
        """
        try:
            response = await self._client.chat.completions.create(
                model=self._settings.judge_models[0],
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=5,
            )
            return bool(response.choices)
        except Exception as e:
            logger.warning("Health check failed: %s", e)
            return False
