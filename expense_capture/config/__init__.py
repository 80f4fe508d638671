"""Configuration package."""

from expense_capture.config.settings import (
    ApiSettings,
    AppSettings,
    ParserSettings,
    QueueSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "ApiSettings",
    "AppSettings",
    "ParserSettings",
    "QueueSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
