"""Configuration package."""

from daftar.config.settings import (
    LedgerSettings,
    LoggingSettings,
    SecuritySettings,
    Settings,
    get_settings,
)

__all__ = [
    "LedgerSettings",
    "LoggingSettings",
    "SecuritySettings",
    "Settings",
    "get_settings",
]
