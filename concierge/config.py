"""
Central configuration for concierge.
Uses Pydantic BaseSettings for type-safe configuration from environment variables.
"""

import os
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env relative to this file (concierge/config.py → project root)
_ENV_FILE = Path(__file__).parent.parent / ".env"


def _load_env_file() -> None:
    """
    Load .env into os.environ, but only for keys that are currently unset
    or set to empty strings. This ensures .env values win over blank shell
    env vars (e.g. ANTHROPIC_API_KEY='') while still allowing explicit
    non-empty shell overrides.
    """
    if not _ENV_FILE.exists():
        return
    from dotenv import dotenv_values
    for key, value in dotenv_values(_ENV_FILE).items():
        if value and not os.environ.get(key):
            os.environ[key] = value


# Run at import time so Settings() sees the correct values
_load_env_file()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Anthropic
    anthropic_api_key: str = ""
    model_chat: str = "claude-sonnet-4-6"
    model_decision: str = "claude-haiku-4-5-20251001"
    anthropic_max_tokens: int = 1024

    # Environment
    azure_environment: bool = False
    data_dir: str = "./data"

    # Logging
    log_level: str = "INFO"
    health_port: int = 8080

    # Scheduler (cron in scheduler_timezone)
    scheduler_timezone: str = "UTC"
    incremental_sync_cron: str = "*/15 * * * *"
    full_sync_cron: str = "0 2 * * *"
    proactive_cron: str = "*/5 * * * *"
    full_sync_stagger_minutes: int = 5
    # Comma-separated seconds between automatic retries of a failed job
    job_retry_delays_raw: str = "60,300,600"

    # ── Sync engine ─────────────────────────────────────────────────────────────
    fetch_concurrency: int = 5
    fetch_pacing_seconds: float = 0.05
    fetch_chunk_size: int = 20
    remote_call_timeout: float = 30.0
    list_page_size: int = 100
    page_delay_seconds: float = 1.0
    upsert_max_attempts: int = 3

    # Incremental overlap windows (safety re-scan before the last sync)
    mail_overlap_minutes: int = 5
    calendar_overlap_days: int = 1
    crm_overlap_minutes: int = 5

    # Full-sync / calendar windows
    full_sync_lookback_days: int = 365
    calendar_first_sync_lookback_days: int = 180
    calendar_lookahead_days: int = 365
    calendar_full_lookahead_days: int = 730

    # Delay between pipeline steps for one user (burst-rate protection)
    incremental_step_delay_seconds: float = 2.0
    full_step_delay_seconds: float = 5.0

    # How long shutdown waits for in-flight sync units before cancelling them
    shutdown_timeout_seconds: float = 30.0

    # ── Retrieval / chat ────────────────────────────────────────────────────────
    vector_enabled: bool = True
    retrieval_default_k: int = 5
    retrieval_broad_k: int = 20
    keyword_fallback_limit: int = 10
    chat_history_window: int = 10

    # ── Proactive agent ─────────────────────────────────────────────────────────
    proactive_window_minutes: int = 5
    proactive_max_items: int = 10

    # ── HubSpot ─────────────────────────────────────────────────────────────────
    hubspot_base_url: str = "https://api.hubapi.com"

    # ── Circuit breaker ─────────────────────────────────────────────────────────
    cb_failure_threshold: int = 5
    cb_recovery_timeout: float = 60.0

    # ── Claude client ───────────────────────────────────────────────────────────
    claude_max_retries: int = 3
    claude_retry_base_delay: float = 2.0

    @model_validator(mode="after")
    def configure_data_dir(self) -> "Settings":
        if self.azure_environment and self.data_dir == "./data":
            self.data_dir = "/data"
        return self

    @property
    def job_retry_delays(self) -> list[float]:
        """Parse the comma-separated retry delays into seconds."""
        raw = self.job_retry_delays_raw
        if not raw:
            return []
        return [float(x.strip()) for x in raw.split(",") if x.strip()]

    @property
    def db_path(self) -> str:
        return os.path.join(self.data_dir, "concierge.db")

    @property
    def logs_dir(self) -> str:
        return os.path.join(self.data_dir, "logs")


def get_settings() -> "Settings":
    """Return the application settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


_settings: Settings | None = None


class _SettingsProxy:
    """Lazy proxy so `from concierge.config import settings` works without eager init."""
    def __getattr__(self, name):
        return getattr(get_settings(), name)


settings = _SettingsProxy()  # type: ignore[assignment]
