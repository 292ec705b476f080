"""Configuration package."""

from ledger_assistant.config.settings import (
    AccountCodeSettings,
    EngineSettings,
    GeminiSettings,
    GoogleSheetsSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AccountCodeSettings",
    "EngineSettings",
    "GeminiSettings",
    "GoogleSheetsSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
