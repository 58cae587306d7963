"""
Configuration management for the patient grading system.

Uses Pydantic Settings for type-safe configuration loading from environment variables.
All configuration is validated at startup to fail fast on misconfiguration.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MissingCategoryPolicy(str, Enum):
    """How the aggregator treats a judge that omitted a rubric category."""

    PERMISSIVE = "permissive"  # Missing category counts as a zero score
    STRICT = "strict"  # Missing category is an input error


class JudgeFailurePolicy(str, Enum):
    """How a grading run treats individual judge failures."""

    FAIL_FAST = "fail_fast"  # First failed judge cancels the rest and fails the run
    FAIL_SOFT = "fail_soft"  # Continue with the judges that succeeded


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings are validated at startup. Missing required fields
    will raise clear validation errors.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # LLM API Configuration
    # ==========================================================================
    llm_api_key: str = Field(
        ...,
        description="API key for the OpenAI-compatible judge endpoint",
        min_length=10,
    )

    llm_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai",
        description="Base URL for the OpenAI-compatible judge endpoint",
    )

    judge_models: tuple[str, ...] = Field(
        default=("gemini-2.5-flash", "gemini-2.5-pro"),
        min_length=1,
        description="Model identifiers used as independent judges",
    )

    llm_temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Temperature for judge generation (0.0 = deterministic)",
    )

    llm_max_tokens: int = Field(
        default=8192,
        ge=256,
        description="Maximum tokens in a judge response",
    )

    llm_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for transient judge endpoint failures",
    )

    judge_timeout_seconds: float | None = Field(
        default=120.0,
        gt=0,
        description="Timeout for a single judge call, including retries",
    )

    # ==========================================================================
    # Aggregation Configuration
    # ==========================================================================
    disagreement_threshold: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Judge score range (fraction of category max) above which a category is flagged",
    )

    missing_category_policy: MissingCategoryPolicy = Field(
        default=MissingCategoryPolicy.PERMISSIVE,
        description="Treatment of a judge grade that omits a rubric category",
    )

    judge_failure_policy: JudgeFailurePolicy = Field(
        default=JudgeFailurePolicy.FAIL_FAST,
        description="Treatment of individual judge failures during a grading run",
    )

    # ==========================================================================
    # Logging Configuration
    # ==========================================================================
    log_level: str = Field(
        default="INFO",
        description="Log level for the patient_grading loggers",
    )

    @field_validator("llm_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base URL doesn't have trailing slash."""
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    """
    return Settings()
