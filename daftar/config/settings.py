"""
Configuration Management for Daftar

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which knobs exist and ensures every value
is validated at startup rather than deep inside a ledger operation.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Ledger storage and business rule configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DAFTAR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    database_path: str = Field(
        default="daftar.db",
        description="Path to the SQLite database file"
    )
    default_currency: str = Field(
        default="YER",
        min_length=3,
        max_length=3,
        description="Currency used for new categories and first-run settings"
    )
    supported_currencies: str = Field(
        default="YER,SAR,USD,EUR",
        description="Comma-separated list of currencies offered to the user"
    )
    max_transaction_amount: float = Field(
        default=1_000_000_000.0,
        gt=0,
        description="Upper bound for a single transaction amount (sanity check)"
    )

    @field_validator('default_currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        """Currency codes are stored upper-case."""
        return v.strip().upper()

    @field_validator('database_path')
    @classmethod
    def validate_database_path(cls, v: str) -> str:
        """Warn if the database directory doesn't exist (it is not created for you)."""
        if v != ":memory:" and not Path(v).expanduser().resolve().parent.exists():
            import warnings
            warnings.warn(
                f"Database directory for {v} does not exist. "
                "Create it before opening the ledger."
            )
        return v

    @property
    def supported_currencies_list(self) -> list[str]:
        """Get supported currencies as a list."""
        return [c.strip().upper() for c in self.supported_currencies.split(",") if c.strip()]


class SecuritySettings(BaseSettings):
    """PIN hashing and attempt throttling configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DAFTAR_SECURITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    pin_max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Consecutive failures allowed before the cool-down starts"
    )
    pin_lockout_base_seconds: float = Field(
        default=30.0,
        gt=0,
        description="First cool-down length; doubles on each further failure"
    )
    pin_lockout_max_seconds: float = Field(
        default=900.0,
        gt=0,
        description="Upper bound for a single cool-down"
    )
    pin_bcrypt_rounds: int = Field(
        default=12,
        ge=4,
        le=31,
        description="bcrypt cost for newly set PINs; stored hashes keep their own"
    )


class LoggingSettings(BaseSettings):
    """Structured logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DAFTAR_LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum log level"
    )
    json_output: bool = Field(
        default=True,
        description="Render logs as JSON lines (False = human-readable console)"
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
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def security(self) -> SecuritySettings:
        return SecuritySettings()

    @property
    def logging(self) -> LoggingSettings:
        return LoggingSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()
