"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
SQLite is the durable backend; the in-memory backend serves tests and
throwaway sessions. Both honor the same change-set contract.
"""

from daftar.services.storage.interface import (
    AccountState,
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerChangeSet,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from daftar.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
)
from daftar.services.storage.sqlite import (
    SqliteAuditStorage,
    SqliteConnection,
    SqliteLedgerStorage,
)

__all__ = [
    # Interfaces
    "AccountState",
    "AuditStorageInterface",
    "LedgerChangeSet",
    "LedgerStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    # SQLite implementation
    "SqliteAuditStorage",
    "SqliteConnection",
    "SqliteLedgerStorage",
]
