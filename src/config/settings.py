"""
Configuration Management for Live Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets remote store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Worksheet names within the spreadsheet, one per table
    expenses_sheet_name: str = Field(default="expenses")
    income_sheet_name: str = Field(default="income")
    categories_sheet_name: str = Field(default="categories")
    budgets_sheet_name: str = Field(default="budgets")
    savings_goals_sheet_name: str = Field(default="savings_goals")
    groups_sheet_name: str = Field(default="groups")
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    # Sheets has no push channel, so subscriptions poll
    poll_interval_seconds: float = Field(
        default=15.0,
        ge=1.0,
        le=600.0,
        description="How often a subscription re-reads its worksheet"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v

    def sheet_name_for(self, table: str) -> str:
        """Worksheet name for a remote store table."""
        return getattr(self, f"{table}_sheet_name")


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration (used only for spending tips)."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=1024,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Model temperature"
    )

    # Retry policy for 429 / 5xx responses
    max_attempts: int = Field(
        default=5,
        ge=1,
        le=10,
        description="Attempt ceiling before giving up"
    )
    backoff_base_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="First retry delay; doubles on every attempt"
    )


class SyncSettings(BaseSettings):
    """
    Live sync engine configuration.

    Controls the backoff used when subscriptions or fetches fail,
    and the defaults of the derived views.
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        extra="ignore"
    )

    backoff_base_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="First retry delay for subscriptions and fetches"
    )
    backoff_cap_seconds: float = Field(
        default=32.0,
        gt=0.0,
        description="Upper bound for a single retry delay"
    )
    max_attempts: int = Field(
        default=6,
        ge=1,
        le=20,
        description="Attempt ceiling before degraded mode is signalled"
    )
    trend_window_days: int = Field(
        default=30,
        ge=1,
        le=366,
        description="Default length of the trailing trend series"
    )
    report_range: str = Field(
        default="all-time",
        description="Date range preset used when assembling reports"
    )

    @field_validator('report_range')
    @classmethod
    def validate_report_range(cls, v: str) -> str:
        allowed = {"last-7-days", "last-30-days", "last-3-months", "last-year", "all-time"}
        if v not in allowed:
            raise ValueError(f"Unknown report range: {v}. Allowed: {sorted(allowed)}")
        return v


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

    # Environment
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
    currency_code: str = Field(
        default="INR",
        min_length=3,
        max_length=3,
        description="Currency used when formatting amounts for prompts"
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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

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

    for name in ("google_sheets", "gemini", "sync", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
