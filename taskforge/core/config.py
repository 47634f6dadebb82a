"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import TYPE_CHECKING, Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from taskforge.core.timeouts import TimeoutManager
    from taskforge.decomposition.models import RDDConfig
    from taskforge.epics.dependency_manager import EpicDependencyConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    # Anthropic API
    anthropic_api_key: SecretStr | None = Field(
        default=None,
        description="Anthropic API key, required when the Anthropic client is used",
    )
    taskforge_llm_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Model used for analysis, splitting and dependency inference",
    )
    taskforge_llm_max_tokens: int = Field(
        default=4000,
        ge=256,
        description="Maximum tokens per generation",
    )

    # Logging / output
    taskforge_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    taskforge_log_dir: str = Field(
        default="logs",
        description="Directory for rotating log files",
    )
    taskforge_debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    taskforge_output_dir: str = Field(
        default="./output",
        description="Root directory for dependency graph artifacts",
    )

    # Storage
    taskforge_database_url: str = Field(
        default="sqlite+aiosqlite:///./taskforge.db",
        description="SQLAlchemy async database URL for the SQL task store",
    )

    # Recursive decomposition
    taskforge_max_depth: int = Field(
        default=5,
        ge=1,
        le=10,
        description="Maximum recursion depth for decomposition",
    )
    taskforge_max_sub_tasks: int = Field(
        default=48,
        ge=2,
        description="Maximum number of subtasks accepted from one split",
    )
    taskforge_min_confidence: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Minimum confidence for accepting an atomic judgement",
    )
    taskforge_epic_time_limit_hours: float = Field(
        default=8.0,
        gt=0,
        description="Maximum cumulative hours of the tasks in one epic",
    )

    # Epic dependency thresholds
    taskforge_epic_min_dependency_strength: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Minimum strength for materializing an epic dependency",
    )
    taskforge_epic_requires_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    taskforge_epic_blocks_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    taskforge_epic_merge_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    taskforge_epic_split_task_threshold: int = Field(default=10, ge=1)
    taskforge_epic_merge_max_tasks: int = Field(default=5, ge=1)

    # Timeout classes (seconds)
    taskforge_llm_request_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for one generative-text request",
    )
    taskforge_task_decomposition_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Timeout for one split of a task",
    )
    taskforge_recursive_task_decomposition_timeout: float = Field(
        default=900.0,
        gt=0,
        description="Deadline for a whole recursive decomposition",
    )

    # Retry policy for rate-limited requests
    taskforge_max_retries: int = Field(default=3, ge=0, le=10)
    taskforge_initial_retry_delay: float = Field(default=1.0, ge=0)
    taskforge_max_retry_delay: float = Field(default=30.0, ge=0)
    taskforge_backoff_multiplier: float = Field(default=2.0, ge=1.0)

    # Operation registry
    taskforge_long_running_operation_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Age after which an in-flight operation is reported as long-running",
    )
    taskforge_stale_operation_seconds: float = Field(
        default=900.0,
        gt=0,
        description="Age after which an in-flight operation is dropped by cleanup",
    )

    # Sessions / scheduling
    taskforge_session_retention_hours: float = Field(
        default=24.0,
        gt=0,
        description="How long finished sessions are kept before cleanup",
    )
    taskforge_scheduler_slots: int = Field(
        default=3,
        ge=1,
        le=64,
        description="Number of concurrent execution slots used by the scheduler",
    )
    taskforge_default_schedule_algorithm: str = Field(
        default="hybrid_optimal",
        description="Scheduling algorithm applied after a decomposition completes",
    )

    @property
    def artifacts_dir(self) -> str:
        """Directory where dependency graph artifacts are written."""
        return f"{self.taskforge_output_dir.rstrip('/')}/dependency-graphs"

    def rdd_config(self) -> "RDDConfig":
        """Build the decomposition engine configuration from settings."""
        from taskforge.decomposition.models import RDDConfig

        return RDDConfig(
            max_depth=self.taskforge_max_depth,
            max_sub_tasks=self.taskforge_max_sub_tasks,
            min_confidence=self.taskforge_min_confidence,
            epic_time_limit=self.taskforge_epic_time_limit_hours,
        )

    def epic_config(self) -> "EpicDependencyConfig":
        """Build the epic dependency manager configuration from settings."""
        from taskforge.epics.dependency_manager import EpicDependencyConfig

        return EpicDependencyConfig(
            min_dependency_strength=self.taskforge_epic_min_dependency_strength,
            requires_threshold=self.taskforge_epic_requires_threshold,
            blocks_threshold=self.taskforge_epic_blocks_threshold,
            merge_strength_threshold=self.taskforge_epic_merge_threshold,
            split_task_threshold=self.taskforge_epic_split_task_threshold,
            merge_max_tasks=self.taskforge_epic_merge_max_tasks,
        )

    def timeout_manager(self) -> "TimeoutManager":
        """Build a timeout manager from the configured timeout classes."""
        from taskforge.core.timeouts import TimeoutManager

        return TimeoutManager.from_settings(self)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from environment.

    Example:
        >>> settings = get_settings()
        >>> settings.taskforge_max_sub_tasks
        48
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
