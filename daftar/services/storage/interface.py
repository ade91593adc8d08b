"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap SQLite for another durable store later
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
The one non-trivial contract is commit(): a change set (insert/update/
delete of one transaction, every recomputed snapshot, the account's
cached balance and the sequence high-water mark) is applied atomically
or not at all.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from daftar.errors import LedgerError, NotFoundError
from daftar.models.audit import AuditEvent
from daftar.models.ledger import Account, AppSettings, Category, Transaction


class AccountState(BaseModel):
    """Storage-side bookkeeping for one account."""

    account_id: int
    balance: Decimal = Decimal("0")
    revision: int = Field(
        default=0,
        ge=0,
        description="Incremented on every committed change to the account's chain"
    )


class LedgerChangeSet(BaseModel):
    """
    One atomic unit of ledger writes for a single account.

    At most one of insert / replace / delete_id is set.
    snapshot_updates maps existing transaction ids to their new running
    balance. The commit fails with ConcurrentModificationError if the
    account revision is no longer expected_revision.
    """

    account_id: int
    expected_revision: int = Field(ge=0)
    insert: Optional[Transaction] = None
    replace: Optional[Transaction] = None
    delete_id: Optional[int] = None
    snapshot_updates: dict[int, Decimal] = Field(default_factory=dict)
    account_balance: Decimal
    sequence_high_water: Optional[int] = None

    @model_validator(mode='after')
    def validate_single_record_change(self) -> 'LedgerChangeSet':
        changed = [x for x in (self.insert, self.replace, self.delete_id) if x is not None]
        if len(changed) > 1:
            raise ValueError("A change set touches at most one transaction record")
        for txn in (self.insert, self.replace):
            if txn is not None and txn.account_id != self.account_id:
                raise ValueError("Transaction belongs to a different account")
        return self


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Any storage implementation (SQLite, in-memory, ...) must implement
    these methods. Returned models are copies: mutating them never
    changes stored state.
    """

    @abstractmethod
    async def open(self) -> None:
        """Acquire resources and create the schema if needed."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release resources. Safe to call twice."""
        pass

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_category(self, category: Category) -> Category:
        """Persist a new category and return it with its id assigned."""
        pass

    @abstractmethod
    async def get_category(self, category_id: int) -> Optional[Category]:
        pass

    @abstractmethod
    async def list_categories(self) -> list[Category]:
        """All categories ordered by id."""
        pass

    @abstractmethod
    async def update_category(self, category: Category) -> None:
        """
        Raises:
            NotFoundError: If the category doesn't exist
        """
        pass

    @abstractmethod
    async def delete_category(self, category_id: int) -> bool:
        """Returns True if a row was deleted."""
        pass

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_account(self, account: Account) -> Account:
        """Persist a new account with balance 0 and revision 0."""
        pass

    @abstractmethod
    async def get_account(self, account_id: int) -> Optional[Account]:
        pass

    @abstractmethod
    async def list_accounts(self, category_id: Optional[int] = None) -> list[Account]:
        """Accounts ordered by id, optionally restricted to one category."""
        pass

    @abstractmethod
    async def update_account(self, account: Account) -> None:
        """
        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def delete_account(self, account_id: int) -> bool:
        """Returns True if a row was deleted."""
        pass

    @abstractmethod
    async def get_account_state(self, account_id: int) -> Optional[AccountState]:
        """Cached balance and revision of an account."""
        pass

    @abstractmethod
    async def list_account_states(self) -> dict[int, AccountState]:
        """Cached state of every account, keyed by account id."""
        pass

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def list_transactions(self, account_id: Optional[int] = None) -> list[Transaction]:
        """
        Transactions ordered by (transaction_date, sequence_number).

        Args:
            account_id: Restrict to one account; None returns the whole ledger
        """
        pass

    @abstractmethod
    async def count_transactions(self, account_id: Optional[int] = None) -> int:
        pass

    @abstractmethod
    async def commit(self, changes: LedgerChangeSet) -> Optional[Transaction]:
        """
        Apply a change set atomically.

        Returns:
            The inserted transaction with its id assigned, or the replaced
            transaction, or None for a deletion.

        Raises:
            ConcurrentModificationError: If the account revision moved
            NotFoundError: If the account or a referenced transaction is gone
            StorageError: If the backend fails (nothing is written)
        """
        pass

    @abstractmethod
    async def get_sequence_high_water(self) -> int:
        """Highest sequence number ever committed (0 for an empty ledger)."""
        pass

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_app_settings(self) -> Optional[AppSettings]:
        """The singleton settings record, or None before first run."""
        pass

    @abstractmethod
    async def save_app_settings(self, settings: AppSettings) -> None:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events for one user action, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: int,
    ) -> list[AuditEvent]:
        """All events for one entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(LedgerError):
    """Base exception for storage backend failures."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not open the storage backend."""
    pass

