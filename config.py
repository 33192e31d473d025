"""
Configuration settings for the algolingo review engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Persistence
    # ========================================
    review_state_dir: Path = Field(
        default=Path.home() / ".algolingo" / "review",
        description="Directory holding the serialized ledger, retention and marker blobs",
    )

    # ========================================
    # Retention Scheduler
    # ========================================
    review_history_limit: int = Field(
        default=10,
        description="Number of evaluations kept in each retention history",
    )
    review_max_interval_days: int = Field(
        default=30,
        description="Hard cap on the review interval",
    )

    # ========================================
    # Mistake Ledger
    # ========================================
    review_fingerprint_length: int = Field(
        default=50,
        description="Context prefix length used when fingerprinting mistakes",
    )

    # ========================================
    # Runs & Queue
    # ========================================
    review_xp_per_correct: int = Field(
        default=10,
        description="XP granted for each correct check",
    )
    review_mistake_limit: int | None = Field(
        default=None,
        description="Optional lives limit for skip/exam runs (None disables)",
    )
    review_queue_delay_seconds: float = Field(
        default=0.5,
        description="Pause between a finished run and the next queued run",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    def get_scheduler_config(self) -> dict:
        """Get retention scheduler configuration as a dictionary."""
        return {
            "history_limit": self.review_history_limit,
            "max_interval": self.review_max_interval_days,
        }

    def get_run_config(self) -> dict:
        """Get run state machine configuration as a dictionary."""
        return {
            "xp_per_correct": self.review_xp_per_correct,
            "mistake_limit": self.review_mistake_limit,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
