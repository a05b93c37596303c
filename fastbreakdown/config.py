"""Runtime configuration for fastbreakdown.

Values are read from ``FASTBREAKDOWN_*`` environment variables (or a ``.env``
file in the working directory) and can be overridden per call.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BreakDownSettings(BaseSettings):
    """Settings shared by the engine and the batch orchestrator."""

    model_config = SettingsConfigDict(
        env_prefix="FASTBREAKDOWN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Hard cap on the worker pool, whatever the caller asks for
    max_workers: int = Field(default=32, ge=1)
    # Used instead of the physical core count when set
    default_concurrency: Optional[int] = Field(default=None, ge=1)
    retry_backoff: float = Field(default=0.5, ge=0.0)
    batch_timeout: Optional[float] = Field(default=None, gt=0.0)
    rtol: float = Field(default=1e-6, gt=0.0)
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> BreakDownSettings:
    """Return the process-wide settings instance (read once)."""
    return BreakDownSettings()


__all__ = ["BreakDownSettings", "get_settings"]
