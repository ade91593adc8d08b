"""Services package."""

from daftar.services.storage import (
    AccountState,
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerChangeSet,
    LedgerStorageInterface,
    NotFoundError,
    SqliteAuditStorage,
    SqliteConnection,
    SqliteLedgerStorage,
    StorageError,
)

__all__ = [
    # Storage services
    "AccountState",
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "LedgerChangeSet",
    "LedgerStorageInterface",
    "NotFoundError",
    "SqliteAuditStorage",
    "SqliteConnection",
    "SqliteLedgerStorage",
    "StorageError",
]
