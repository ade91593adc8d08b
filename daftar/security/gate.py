"""
Access Gate

Guards the ledger behind an optional numeric PIN.

DESIGN DECISION: The gate never raises on a wrong PIN.
Every outcome is a boolean so a caller cannot crash the unlock screen
with bad input. Only a bcrypt hash of the PIN is stored. The hash carries
its own salt and cost, so a PIN set under one cost setting still verifies
after the setting changes.

Throttling: after `pin_max_attempts` consecutive failures the gate
refuses attempts for a cool-down that doubles with every further
failure, up to `pin_lockout_max_seconds`. Attempts during a cool-down
return False without hashing. A success resets the counter.
"""

import re
import time
from enum import Enum
from typing import Callable, Optional

import bcrypt
import structlog

from daftar.audit import AuditLogger
from daftar.config import SecuritySettings
from daftar.models.ledger import AppSettings


logger = structlog.get_logger(__name__)

_PIN_FORMAT = re.compile(r"[0-9]{4}|[0-9]{6}")

# Keeps base * 2**k inside float range however long the failure streak
_MAX_BACKOFF_EXPONENT = 32


class LockState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


def is_valid_pin_format(candidate: object) -> bool:
    """A PIN is exactly 4 or 6 ASCII digits."""
    return isinstance(candidate, str) and _PIN_FORMAT.fullmatch(candidate) is not None


def hash_pin(pin: str, rounds: int) -> str:
    """bcrypt hash of the PIN with a fresh salt."""
    return bcrypt.hashpw(pin.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_pin(pin: str, pin_hash: str) -> bool:
    """Compare a PIN with a stored bcrypt hash. A malformed hash never matches."""
    try:
        return bcrypt.checkpw(pin.encode("utf-8"), pin_hash.encode("utf-8"))
    except ValueError:
        logger.error("pin_hash_unreadable")
        return False


class AccessGate:
    """
    Lock state for one application session.

    Starts LOCKED when a PIN is enabled, UNLOCKED otherwise. The only
    transition is LOCKED -> UNLOCKED on a correct PIN.
    """

    def __init__(
        self,
        app_settings: AppSettings,
        security: Optional[SecuritySettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._app_settings = app_settings
        self._security = security or SecuritySettings()
        self._audit = audit_logger or AuditLogger()
        self._clock = clock
        self._state = LockState.LOCKED if app_settings.pin_enabled else LockState.UNLOCKED
        self._failures = 0
        self._locked_until: Optional[float] = None

    @property
    def state(self) -> LockState:
        return self._state

    @property
    def is_unlocked(self) -> bool:
        return self._state == LockState.UNLOCKED

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def retry_after(self) -> float:
        """Seconds until the next attempt is accepted (0 when not throttled)."""
        if self._locked_until is None:
            return 0.0
        return max(0.0, self._locked_until - self._clock())

    def refresh(self, app_settings: AppSettings) -> None:
        """Pick up a changed PIN. Never re-locks an unlocked gate."""
        self._app_settings = app_settings

    async def verify_pin_code(self, candidate: str) -> bool:
        """
        Check a PIN attempt and unlock on success.

        Returns True if the gate is (now) unlocked by this PIN, or if no
        PIN is enabled.
        """
        if not self._app_settings.pin_enabled:
            self._state = LockState.UNLOCKED
            return True

        wait = self.retry_after()
        if wait > 0:
            logger.warning("pin_attempt_throttled", retry_after_seconds=round(wait, 1))
            await self._audit.log_pin_throttled(wait)
            return False

        if not is_valid_pin_format(candidate):
            await self._record_failure("malformed")
            return False

        if not check_pin(candidate, self._app_settings.pin_hash or ""):
            await self._record_failure("mismatch")
            return False

        self._failures = 0
        self._locked_until = None
        self._state = LockState.UNLOCKED
        logger.info("pin_verified")
        await self._audit.log_pin_verified()
        return True

    async def _record_failure(self, reason: str) -> None:
        self._failures += 1
        beyond = self._failures - self._security.pin_max_attempts
        if beyond >= 0:
            delay = min(
                self._security.pin_lockout_base_seconds * 2 ** min(beyond, _MAX_BACKOFF_EXPONENT),
                self._security.pin_lockout_max_seconds,
            )
            self._locked_until = self._clock() + delay
            logger.warning("pin_cooldown_started", failures=self._failures, seconds=delay)
        else:
            logger.info("pin_rejected", failures=self._failures, reason=reason)
        await self._audit.log_pin_rejected(self._failures, reason)
