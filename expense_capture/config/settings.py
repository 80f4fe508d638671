"""
Configuration Management for Expense Capture

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The queue bounds, the backend location and the banking-app allowlist are
all deployment data, so each concern gets its own env-prefixed section.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_BANKING_APPS = [
    "com.google.android.apps.walletnfcrel",  # Google Wallet
    "com.samsung.android.spay",  # Samsung Pay
    "com.c6bank.app",  # C6 Bank
    "com.nu.production",  # Nubank
    "br.com.itau",  # Itaú
    "br.com.bradesco",  # Bradesco
    "com.santander.app",  # Santander
]


class ApiSettings(BaseSettings):
    """Remote expense backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EXPENSE_API_",
        extra="ignore"
    )

    base_url: str = Field(
        ...,
        description="Base URL of the expense backend"
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Timeout applied to every remote call"
    )
    submit_path: str = Field(
        default="/api/external/drafts",
        description="Endpoint receiving new drafts/entries"
    )
    cards_path: str = Field(default="/api/cards")
    users_path: str = Field(default="/api/users")
    destinations_path: str = Field(default="/api/external/destinations")
    token: Optional[str] = Field(
        default=None,
        description="Static bearer token (normally supplied by the host app)"
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class QueueSettings(BaseSettings):
    """Offline submission queue configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EXPENSE_QUEUE_",
        extra="ignore"
    )

    storage_key: str = Field(
        default="@expense_capture:draft_queue",
        description="Namespaced key holding the queued submissions"
    )
    max_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Automatic attempts before an item is dead-lettered"
    )
    base_delay_ms: int = Field(
        default=2000,
        ge=0,
        description="Backoff base delay; attempt n waits base * 2^(n-1)"
    )
    poll_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Periodic drain interval"
    )


class StorageSettings(BaseSettings):
    """On-device key-value storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EXPENSE_STORAGE_",
        extra="ignore"
    )

    data_dir: Path = Field(
        default=Path(".expense_capture"),
        description="Directory holding one JSON file per storage key"
    )
    drafts_key: str = Field(default="@expense_capture:local_drafts")
    audit_key: str = Field(default="@expense_capture:logs")
    default_card_key: str = Field(default="@expense_capture:default_card")
    draft_only_key: str = Field(default="@expense_capture:draft_only_mode")
    max_audit_events: int = Field(
        default=1000,
        ge=10,
        description="Audit events kept in the local ring buffer"
    )


class ParserSettings(BaseSettings):
    """Heuristic parser configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EXPENSE_PARSER_",
        extra="ignore"
    )

    banking_apps: list[str] = Field(
        default_factory=lambda: list(DEFAULT_BANKING_APPS),
        description="App identifiers whose notifications may create expenses"
    )
    description_placeholder: str = Field(default="Despesa")
    notification_placeholder: str = Field(
        default="Estabelecimento não identificado"
    )
    mock_card_prefix: str = Field(
        default="mock-",
        description="Card ids with this prefix are sample data and never sent"
    )


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
    log_level: str = Field(
        default="INFO",
        description="Minimum level for local structured logs"
    )

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def api(self) -> ApiSettings:
        return ApiSettings()

    @property
    def queue(self) -> QueueSettings:
        return QueueSettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def parser(self) -> ParserSettings:
        return ParserSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with an extra
    "<name>_error" entry for each section that failed.
    """
    results = {}

    settings = get_settings()

    for name in ("api", "queue", "storage", "parser", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
