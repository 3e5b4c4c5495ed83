"""
Central configuration for the match sync services.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Root settings shared across the engine and the API."""

    model_config = SettingsConfigDict(
        env_prefix="MS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = "INFO"
    instance_id: str = Field(default="", description="Pod/container ID bound to every log line")

    # ── Match API (upstream) ─────────────────────────────────
    api_base_url: str = "https://api.harnosandshf.se"
    request_timeout_s: float = 5.0

    # ── Polling ──────────────────────────────────────────────
    live_upcoming_poll_interval_s: float = 1.0
    live_poll_interval_s: float = 1.0
    old_poll_interval_s: float = 30.0
    live_upcoming_limit: int = 80
    live_limit: int = 10
    old_limit: int = 60
    refresh_min_age_s: float = 0.5
    missing_match_grace_s: float = 60.0

    # ── Status heuristics ────────────────────────────────────
    live_window_minutes: int = 150
    finished_duration_minutes: int = 120
    match_duration_minutes: int = 90
    finished_retention_hours: float = 3.0
    technical_issue_grace_minutes: int = 15

    # ── Clock / detail view ──────────────────────────────────
    clock_tick_interval_s: float = 1.0
    detail_refresh_interval_s: float = 5.0

    # ── Club ─────────────────────────────────────────────────
    club_name: str = "Härnösands HF"
    club_timezone: str = "Europe/Stockholm"

    # ── API ──────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["*"]

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = True
    metrics_port: int = 9090

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def data_endpoint(self) -> str:
        return f"{self.api_base_url}/matcher/data"

    def detail_endpoint(self, api_match_id: str) -> str:
        return f"{self.api_base_url}/matcher/match/{api_match_id}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings."""
    return Settings()
