"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: str = Field(default="development")
    app_debug: bool = Field(default=False)
    app_log_level: str = Field(default="INFO")
    log_file: Optional[Path] = Field(default=None)

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)

    # Storage
    reports_dir: Path = Field(default=Path("./data/reports"))
    audit_max_entries: int = Field(default=10000, ge=1)

    # Scoring weights (additive, non-negative)
    score_weight_exact_amount: float = Field(default=1.0, ge=0)
    score_weight_amount_tolerance: float = Field(default=0.8, ge=0)
    score_weight_same_date: float = Field(default=0.5, ge=0)
    score_weight_date_proximity: float = Field(default=0.3, ge=0)
    score_weight_reference: float = Field(default=0.9, ge=0)
    score_weight_description: float = Field(default=0.1, ge=0)
    max_score: float = Field(default=1.0, gt=0)

    # Thresholds
    auto_match_threshold: float = Field(default=0.9, ge=0)
    suggest_threshold: float = Field(default=0.6, ge=0)

    # Amount / date signals
    amount_epsilon_cents: int = Field(default=1, ge=0)
    amount_tolerance_ratio: float = Field(default=0.01, ge=0)
    date_proximity_days: int = Field(default=3, ge=0)
    description_similarity_threshold: float = Field(default=0.7, ge=0, le=1)

    # Candidate search
    date_window_days: int = Field(default=30, ge=0)
    candidate_amount_tolerance: float = Field(default=0.01, ge=0)
    max_group_size: int = Field(default=5, ge=2)
    search_max_iterations: int = Field(default=20000, ge=1)
    search_time_budget_seconds: float = Field(default=0.5, gt=0)
    max_candidates_per_anchor: int = Field(default=10, ge=1)

    # Concurrency
    commit_retries: int = Field(default=1, ge=0)

    def amount_tolerance_cents(self, amount_cents: int) -> int:
        """
        Maximum difference still scored as a near match.
        Returns: max(epsilon, amount * tolerance_ratio)
        """
        relative_limit = int(abs(amount_cents) * self.amount_tolerance_ratio)
        return max(self.amount_epsilon_cents, relative_limit)

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
