"""Configuration package."""

from chatledger.config.settings import (
    AppSettings,
    ConversationSettings,
    DatabaseSettings,
    GeminiSettings,
    LedgerSettings,
    RedisSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ConversationSettings",
    "DatabaseSettings",
    "GeminiSettings",
    "LedgerSettings",
    "RedisSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
