"""
Application settings record.

Owns the singleton AppSettings row: creates it with defaults on first
run, applies partial updates, and sets or clears the PIN. The PIN itself
never leaves this module; only its bcrypt hash is stored.
"""

from typing import Any, Optional

import structlog
from pydantic import ValidationError

from daftar.audit import AuditLogger
from daftar.config import LedgerSettings, SecuritySettings
from daftar.errors import InvalidInputError
from daftar.models.ledger import AppSettings, utc_now
from daftar.security.gate import hash_pin, is_valid_pin_format
from daftar.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)

EDITABLE_FIELDS = frozenset({
    "company_name_ar",
    "company_name_en",
    "phone_number",
    "address",
    "default_currency",
})


class AppSettingsService:
    """Load and change the settings record."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        security: Optional[SecuritySettings] = None,
        ledger: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._security = security or SecuritySettings()
        self._ledger = ledger or LedgerSettings()
        self._audit = audit_logger or AuditLogger()

    async def load(self) -> AppSettings:
        """Return the settings record, creating it with defaults on first run."""
        settings = await self._storage.get_app_settings()
        if settings is None:
            settings = AppSettings(default_currency=self._ledger.default_currency)
            await self._storage.save_app_settings(settings)
            logger.info("app_settings_created", default_currency=settings.default_currency)
        return settings

    async def update(self, **fields: Any) -> AppSettings:
        """
        Change company details or the default currency.

        Raises:
            InvalidInputError: Unknown field, invalid value or unsupported currency
        """
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise InvalidInputError(f"Cannot update settings field(s): {', '.join(sorted(unknown))}")
        if "default_currency" in fields:
            currency = str(fields["default_currency"]).strip().upper()
            if currency not in self._ledger.supported_currencies_list:
                raise InvalidInputError(f"Unsupported currency: {currency}")

        current = await self.load()
        updated = self._validate({**current.model_dump(), **fields, "updated_at": utc_now()})
        await self._storage.save_app_settings(updated)
        await self._audit.log_settings_updated(sorted(fields))
        return updated

    async def set_pin(self, pin: str) -> AppSettings:
        """
        Enable the PIN (or replace it).

        Raises:
            InvalidInputError: If the PIN is not 4 or 6 digits
        """
        if not is_valid_pin_format(pin):
            raise InvalidInputError("PIN must be 4 or 6 digits")
        current = await self.load()
        updated = current.model_copy(update={
            "pin_enabled": True,
            "pin_hash": hash_pin(pin, self._security.pin_bcrypt_rounds),
            "updated_at": utc_now(),
        })
        await self._storage.save_app_settings(updated)
        await self._audit.log_pin_changed(True)
        return updated

    async def disable_pin(self) -> AppSettings:
        current = await self.load()
        updated = current.model_copy(update={
            "pin_enabled": False,
            "pin_hash": None,
            "updated_at": utc_now(),
        })
        await self._storage.save_app_settings(updated)
        await self._audit.log_pin_changed(False)
        return updated

    @staticmethod
    def _validate(data: dict[str, Any]) -> AppSettings:
        try:
            return AppSettings(**data)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid settings: {e.errors()[0].get('msg')}") from e
