"""Access control: PIN gate and the settings record it reads."""

from daftar.security.gate import (
    AccessGate,
    LockState,
    check_pin,
    hash_pin,
    is_valid_pin_format,
)
from daftar.security.settings_service import AppSettingsService

__all__ = [
    "AccessGate",
    "AppSettingsService",
    "LockState",
    "check_pin",
    "hash_pin",
    "is_valid_pin_format",
]
