"""
Configuration Management for Chat Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Thresholds that drive the confirmation gate and the context cache
(confidence cut-offs, window sizes, TTLs) live next to the connection
settings so the whole runtime behaviour is visible in one place.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="Gemini API key (unset = development stub mode)"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=2048,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for a single model call"
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for retryable calls (summaries, conversation)"
    )

    @property
    def is_development(self) -> bool:
        """No API key means the stub model is used."""
        return not self.api_key


class DatabaseSettings(BaseSettings):
    """Relational storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite:///./data/chatledger.db",
        description="SQLAlchemy database URL"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements"
    )


class RedisSettings(BaseSettings):
    """Expiring key-value store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore"
    )

    url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )
    namespace: str = Field(
        default="chatledger:",
        description="Prefix applied to every key this app writes"
    )


class ConversationSettings(BaseSettings):
    """Context window and session state configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CONTEXT_",
        extra="ignore"
    )

    window_limit: int = Field(
        default=20,
        ge=2,
        description="Turns allowed in the live window before a fold"
    )
    keep_last: int = Field(
        default=5,
        ge=1,
        description="Turns retained in the window after a fold"
    )
    ttl_seconds: int = Field(
        default=3600,
        ge=60,
        description="Context window TTL, reset on every write"
    )
    sweep_interval_seconds: int = Field(
        default=60,
        ge=1,
        description="How often the sweeper scans context keys"
    )
    sweep_low_water_seconds: int = Field(
        default=120,
        ge=1,
        description="Remaining TTL below which the sweeper folds a context"
    )
    max_summary_chars: int = Field(
        default=1200,
        ge=100,
        description="Hard bound on the stored summary length"
    )
    session_ttl_seconds: int = Field(
        default=86400,
        ge=60,
        description="TTL of per-target session state (pending batch, undo ids)"
    )

    @model_validator(mode="after")
    def validate_window(self) -> "ConversationSettings":
        """The retained tail must be smaller than the window."""
        if self.keep_last >= self.window_limit:
            raise ValueError("keep_last must be smaller than window_limit")
        return self


class LedgerSettings(BaseSettings):
    """Confidence gate, budget and target rules."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    auto_commit_confidence: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Parsed candidates at or above this commit without asking"
    )
    tool_min_confidence: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Tool-driven writes below this are rejected"
    )
    rounding_unit: int = Field(
        default=1000,
        ge=1,
        description="Bucket allocations are rounded to this unit"
    )
    small_amount_threshold: int = Field(
        default=1000,
        ge=0,
        description="Expenses below this are treated as unit-ambiguous"
    )
    small_amount_multiplier: int = Field(
        default=1000,
        ge=1,
        description="Scale applied to a unit-ambiguous amount for the suggestion"
    )
    top_categories: int = Field(
        default=5,
        ge=1,
        description="Categories listed in a budget summary"
    )
    group_tiers: str = Field(
        default="family",
        description="Comma-separated tiers allowed to provision a group"
    )
    default_tier: str = Field(
        default="standard",
        description="Tier assigned to users registered from chat"
    )

    @field_validator("group_tiers")
    @classmethod
    def normalize_tiers(cls, v: str) -> str:
        return ",".join(t.strip().lower() for t in v.split(",") if t.strip())

    @property
    def group_tier_set(self) -> set[str]:
        """Get group tiers as a set."""
        return set(self.group_tiers.split(",")) if self.group_tiers else set()


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    timezone: str = Field(
        default="Asia/Jakarta",
        description="Timezone used for the sweeper scheduler"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def redis(self) -> RedisSettings:
        return RedisSettings()

    @property
    def conversation(self) -> ConversationSettings:
        return ConversationSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("gemini", "database", "redis", "conversation", "ledger", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
