"""
Ledger Session

Ties the components together for one application session:
storage -> ledger store -> statistics/search read models, plus the
settings record and the access gate that guards them.

DESIGN DECISION: Nothing here is a module-level singleton.
Every session owns its own store, caches and lock state, so two
sessions over two databases never share anything.

Usage:
    async with create_session("daftar.db") as session:
        if await session.gate.verify_pin_code("1234"):
            await session.store.create_transaction(...)
"""

from datetime import date
from typing import Optional

import structlog

from daftar.audit import AuditLogger
from daftar.config import Settings, get_settings
from daftar.ledger import LedgerStore, build_account_statement
from daftar.models.ledger import AppSettings
from daftar.models.reports import AccountStatement
from daftar.queries import TransactionSearchEngine
from daftar.security import AccessGate, AppSettingsService
from daftar.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    SqliteAuditStorage,
    SqliteConnection,
    SqliteLedgerStorage,
)
from daftar.stats import StatisticsAggregator


logger = structlog.get_logger(__name__)


class LedgerSession:
    """
    Async context manager owning the storage lifecycle.

    Components are available between __aenter__ and __aexit__.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_storage: Optional[AuditStorageInterface] = None,
        settings: Optional[Settings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings()
        self.audit_storage = audit_storage
        self.audit_logger = AuditLogger(audit_storage)
        self.store = LedgerStore(storage, self.audit_logger, self._settings.ledger)
        self.stats = StatisticsAggregator(self.store, self.audit_logger)
        self.search = TransactionSearchEngine(self.store)
        self.settings_service = AppSettingsService(
            storage,
            security=self._settings.security,
            ledger=self._settings.ledger,
            audit_logger=self.audit_logger,
        )
        self.gate: Optional[AccessGate] = None
        self.app_settings: Optional[AppSettings] = None

    async def open(self) -> "LedgerSession":
        await self._storage.open()
        self.app_settings = await self.settings_service.load()
        self.gate = AccessGate(
            self.app_settings,
            security=self._settings.security,
            audit_logger=self.audit_logger,
        )
        logger.info("session_opened", locked=not self.gate.is_unlocked)
        return self

    async def close(self) -> None:
        await self._storage.close()
        logger.info("session_closed")

    async def __aenter__(self) -> "LedgerSession":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def is_unlocked(self) -> bool:
        return self.gate is not None and self.gate.is_unlocked

    async def build_account_statement(
        self,
        account_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> AccountStatement:
        return await build_account_statement(self.store, account_id, date_from, date_to)

    async def set_pin(self, pin: str) -> AppSettings:
        """Enable or replace the PIN; the current lock state is kept."""
        self.app_settings = await self.settings_service.set_pin(pin)
        if self.gate is not None:
            self.gate.refresh(self.app_settings)
        return self.app_settings

    async def disable_pin(self) -> AppSettings:
        self.app_settings = await self.settings_service.disable_pin()
        if self.gate is not None:
            self.gate.refresh(self.app_settings)
        return self.app_settings


def create_session(
    database_path: Optional[str] = None,
    in_memory: bool = False,
    settings: Optional[Settings] = None,
) -> LedgerSession:
    """
    Factory function to create a session and its storage.

    Args:
        database_path: SQLite file; defaults to the configured path
        in_memory: Use throwaway in-memory storage instead of SQLite
        settings: Settings override (mostly for tests)

    Returns:
        An unopened LedgerSession; use it with `async with`.
    """
    settings = settings or get_settings()
    if in_memory:
        return LedgerSession(InMemoryLedgerStorage(), InMemoryAuditStorage(), settings)

    connection = SqliteConnection(database_path or settings.ledger.database_path)
    return LedgerSession(
        SqliteLedgerStorage(connection=connection),
        SqliteAuditStorage(connection),
        settings,
    )


__all__ = ["LedgerSession", "create_session"]
