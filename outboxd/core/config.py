"""Dispatcher configuration, read from ``OUTBOX_*`` environment variables."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from outboxd.core.event import DEFAULT_MAX_RETRIES


class DispatcherConfig(BaseSettings):
    """Tunables for one dispatcher invocation.

    Every field can be set through the environment, e.g.
    ``OUTBOX_BATCH_LIMIT=100`` or ``OUTBOX_STALE_CLAIM_TIMEOUT_SECONDS=900``.
    """

    # Max events claimed per invocation
    batch_limit: int = Field(default=50, ge=1)
    # Ceiling applied when a producer omits max_retries
    default_max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1)
    # Base unit of the exponential backoff
    base_backoff_seconds: float = Field(default=60.0, gt=0)
    backoff_jitter: float = Field(default=0.0, ge=0.0, lt=1.0)
    max_backoff_seconds: float | None = Field(default=None, gt=0)

    handler_timeout_seconds: float = Field(default=30.0, gt=0)
    # Wall-clock budget for one run_once(); None means unbounded
    run_budget_seconds: float | None = Field(default=None, gt=0)
    concurrency: int = Field(default=1, ge=1)
    # Processing events older than this are handed back to pending; None disables it
    stale_claim_timeout_seconds: float | None = Field(default=None, gt=0)

    store_url: str = Field(default="memory://")
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True)
    # Origins allowed to call the HTTP trigger from a browser
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    model_config = SettingsConfigDict(env_prefix="OUTBOX_", env_file=".env", extra="ignore")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"log_level must be a standard logging level, got {v!r}")
        return v


@lru_cache
def get_config() -> DispatcherConfig:
    """Process-wide configuration loaded once from the environment."""
    return DispatcherConfig()
