from functools import lru_cache
from typing import ClassVar

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict

from incident_insights.models import InsightKind


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Generative-text backend
    llm_provider: str = "openai"  # "openai" or "anthropic"
    openai_api_key: str = ""
    openai_model: str = "openai/gpt-4o-mini"
    openai_base_url: str = ""  # Optional OpenAI-compatible proxy URL (e.g. OpenRouter)
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5"
    ai_temperature: float = 0.7
    ai_max_tokens: int = 4000
    ai_max_retries: int = 2
    ai_retry_delay_seconds: float = 1.0

    # SQLite store for incidents, insight cache, reports and audit entries
    database_path: str = "incident_insights.db"

    # Upstream incident API (optional; an empty string means read incidents from SQLite)
    incident_api_url: str = ""

    # Time zone used for weekday/hour bucketing and scheduled report periods
    reference_timezone: str = "America/Sao_Paulo"

    # Insight cache TTLs per kind
    ttl_critical_area_seconds: int = 3600
    ttl_trend_seconds: int = 21600
    ttl_pattern_seconds: int = 86400
    ttl_prediction_seconds: int = 43200
    ttl_explanation_seconds: int = 86400

    # Report schedule (empty string disables that job)
    report_daily_cron: str = "0 6 * * *"
    report_weekly_cron: str = "0 8 * * sun"
    report_monthly_cron: str = "0 9 1 * *"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @property
    def active_model(self) -> str:
        return self.anthropic_model if self.llm_provider == "anthropic" else self.openai_model

    @property
    def ai_configured(self) -> bool:
        """Whether the active provider has an API key."""
        key = self.anthropic_api_key if self.llm_provider == "anthropic" else self.openai_api_key
        return bool(key.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()


class EngineConfig(BaseModel):
    """Immutable configuration handed to the insight and report orchestrators."""

    model_config = ConfigDict(frozen=True)

    model_name: str
    ttl_seconds: dict[InsightKind, int]
    max_retries: int = 2
    retry_delay_seconds: float = 1.0
    reference_timezone: str = "America/Sao_Paulo"

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        return cls(
            model_name=settings.active_model,
            ttl_seconds={
                InsightKind.CRITICAL_AREA: settings.ttl_critical_area_seconds,
                InsightKind.TREND: settings.ttl_trend_seconds,
                InsightKind.PATTERN: settings.ttl_pattern_seconds,
                InsightKind.PREDICTION: settings.ttl_prediction_seconds,
                InsightKind.EXPLANATION: settings.ttl_explanation_seconds,
            },
            max_retries=settings.ai_max_retries,
            retry_delay_seconds=settings.ai_retry_delay_seconds,
            reference_timezone=settings.reference_timezone,
        )

    def ttl_for(self, kind: InsightKind) -> int:
        return self.ttl_seconds.get(kind, 3600)
