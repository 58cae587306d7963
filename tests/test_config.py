"""Unit tests for settings validation."""

import pytest
from pydantic import ValidationError

from patient_grading.config import JudgeFailurePolicy, MissingCategoryPolicy, Settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, test_settings: Settings) -> None:
        """Test policies default to permissive aggregation and fail-fast judging."""
        assert test_settings.missing_category_policy == MissingCategoryPolicy.PERMISSIVE
        assert test_settings.judge_failure_policy == JudgeFailurePolicy.FAIL_FAST
        assert test_settings.log_level == "INFO"

    def test_base_url_trailing_slash_removed(self, test_settings: Settings) -> None:
        assert test_settings.llm_base_url == "https://test.api.local"

    def test_log_level_normalized(self) -> None:
        settings = Settings(llm_api_key="test-api-key-for-testing", log_level="debug")

        assert settings.log_level == "DEBUG"

    def test_unknown_log_level(self) -> None:
        with pytest.raises(ValidationError, match="Unknown log level"):
            Settings(llm_api_key="test-api-key-for-testing", log_level="chatty")

    def test_threshold_bounds(self) -> None:
        with pytest.raises(ValidationError):
            Settings(llm_api_key="test-api-key-for-testing", disagreement_threshold=1.5)

    def test_policies_from_strings(self) -> None:
        settings = Settings(
            llm_api_key="test-api-key-for-testing",
            missing_category_policy="strict",
            judge_failure_policy="fail_soft",
        )

        assert settings.missing_category_policy == MissingCategoryPolicy.STRICT
        assert settings.judge_failure_policy == JudgeFailurePolicy.FAIL_SOFT
