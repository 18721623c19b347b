from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TRIAGE_",
        case_sensitive=False,
    )

    # ── Groq LLM ────────────────────────────────────────────────
    groq_api_key: str = ""
    groq_model: str = "llama-3.3-70b-versatile"
    groq_temperature: float = 0.1
    groq_max_tokens: int = 4096

    # ── Rate Limiter ────────────────────────────────────────────
    rate_limit_requests_per_minute: int = 30
    rate_limit_burst_size: int = 5

    # ── Retrieval Sub-Agents ────────────────────────────────────
    log_search_max_iterations: int = Field(default=12, ge=1)
    code_search_max_iterations: int = Field(default=8, ge=1)
    fallback_window_hours: int = 24
    fallback_log_limit: int = 500
    known_services: list[str] = Field(default_factory=list)
    label_lookback_minutes: int = 60

    # ── Reasoning / Review Cycle ───────────────────────────────
    max_reasoning_requests: int = Field(default=5, ge=0)
    max_review_rounds: int = Field(default=3, ge=1)

    # ── Codebase Context ────────────────────────────────────────
    repo_path: str = "."
    system_overview: str = ""


# Singleton
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
