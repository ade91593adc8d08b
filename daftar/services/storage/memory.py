"""
In-Memory Storage Implementation

Used by tests and by callers that want a throwaway ledger.
Behaves exactly like the durable backend for every contract in the
interface: ordering, copies on read, atomic change sets and revision
checks. Nothing survives close().
"""

from typing import Optional
from uuid import UUID

from daftar.errors import ConcurrentModificationError, NotFoundError
from daftar.models.audit import AuditEvent
from daftar.models.ledger import Account, AppSettings, Category, Transaction
from daftar.services.storage.interface import (
    AccountState,
    AuditStorageInterface,
    LedgerChangeSet,
    LedgerStorageInterface,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Dictionary-backed ledger storage."""

    def __init__(self):
        self._reset()

    def _reset(self) -> None:
        self._categories: dict[int, Category] = {}
        self._accounts: dict[int, Account] = {}
        self._states: dict[int, AccountState] = {}
        self._transactions: dict[int, Transaction] = {}
        self._settings: Optional[AppSettings] = None
        self._sequence_high_water = 0
        self._next_category_id = 1
        self._next_account_id = 1
        self._next_transaction_id = 1

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        self._reset()

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def add_category(self, category: Category) -> Category:
        stored = category.model_copy(update={"id": self._next_category_id})
        self._next_category_id += 1
        self._categories[stored.id] = stored
        return stored.model_copy()

    async def get_category(self, category_id: int) -> Optional[Category]:
        category = self._categories.get(category_id)
        return category.model_copy() if category else None

    async def list_categories(self) -> list[Category]:
        return [self._categories[k].model_copy() for k in sorted(self._categories)]

    async def update_category(self, category: Category) -> None:
        if category.id not in self._categories:
            raise NotFoundError(f"Category not found: {category.id}")
        self._categories[category.id] = category.model_copy()

    async def delete_category(self, category_id: int) -> bool:
        return self._categories.pop(category_id, None) is not None

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def add_account(self, account: Account) -> Account:
        if account.category_id not in self._categories:
            raise NotFoundError(f"Category not found: {account.category_id}")
        stored = account.model_copy(update={"id": self._next_account_id})
        self._next_account_id += 1
        self._accounts[stored.id] = stored
        self._states[stored.id] = AccountState(account_id=stored.id)
        return stored.model_copy()

    async def get_account(self, account_id: int) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return account.model_copy() if account else None

    async def list_accounts(self, category_id: Optional[int] = None) -> list[Account]:
        return [
            self._accounts[k].model_copy()
            for k in sorted(self._accounts)
            if category_id is None or self._accounts[k].category_id == category_id
        ]

    async def update_account(self, account: Account) -> None:
        if account.id not in self._accounts:
            raise NotFoundError(f"Account not found: {account.id}")
        self._accounts[account.id] = account.model_copy()

    async def delete_account(self, account_id: int) -> bool:
        self._states.pop(account_id, None)
        return self._accounts.pop(account_id, None) is not None

    async def get_account_state(self, account_id: int) -> Optional[AccountState]:
        state = self._states.get(account_id)
        return state.model_copy() if state else None

    async def list_account_states(self) -> dict[int, AccountState]:
        return {k: v.model_copy() for k, v in self._states.items()}

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        txn = self._transactions.get(transaction_id)
        return txn.model_copy() if txn else None

    async def list_transactions(self, account_id: Optional[int] = None) -> list[Transaction]:
        selected = [
            txn for txn in self._transactions.values()
            if account_id is None or txn.account_id == account_id
        ]
        selected.sort(key=lambda t: t.order_key)
        return [txn.model_copy() for txn in selected]

    async def count_transactions(self, account_id: Optional[int] = None) -> int:
        if account_id is None:
            return len(self._transactions)
        return sum(1 for txn in self._transactions.values() if txn.account_id == account_id)

    async def commit(self, changes: LedgerChangeSet) -> Optional[Transaction]:
        # Validate everything first; apply only when nothing can fail
        state = self._states.get(changes.account_id)
        if state is None:
            raise NotFoundError(f"Account not found: {changes.account_id}")
        if state.revision != changes.expected_revision:
            raise ConcurrentModificationError(
                changes.account_id, changes.expected_revision, state.revision
            )
        if changes.delete_id is not None and changes.delete_id not in self._transactions:
            raise NotFoundError(f"Transaction not found: {changes.delete_id}")
        if changes.replace is not None and changes.replace.id not in self._transactions:
            raise NotFoundError(f"Transaction not found: {changes.replace.id}")
        for txn_id in changes.snapshot_updates:
            if txn_id not in self._transactions:
                raise NotFoundError(f"Transaction not found: {txn_id}")

        result: Optional[Transaction] = None
        if changes.insert is not None:
            result = changes.insert.model_copy(update={"id": self._next_transaction_id})
            self._next_transaction_id += 1
            self._transactions[result.id] = result
        elif changes.replace is not None:
            result = changes.replace.model_copy()
            self._transactions[result.id] = result
        elif changes.delete_id is not None:
            del self._transactions[changes.delete_id]

        for txn_id, balance in changes.snapshot_updates.items():
            self._transactions[txn_id] = self._transactions[txn_id].model_copy(
                update={"balance": balance}
            )

        self._states[changes.account_id] = AccountState(
            account_id=changes.account_id,
            balance=changes.account_balance,
            revision=state.revision + 1,
        )
        if changes.sequence_high_water is not None:
            self._sequence_high_water = max(self._sequence_high_water, changes.sequence_high_water)

        return result.model_copy() if result else None

    async def get_sequence_high_water(self) -> int:
        return self._sequence_high_water

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def get_app_settings(self) -> Optional[AppSettings]:
        return self._settings.model_copy() if self._settings else None

    async def save_app_settings(self, settings: AppSettings) -> None:
        self._settings = settings.model_copy()


class InMemoryAuditStorage(AuditStorageInterface):
    """List-backed append-only audit log."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event.model_copy())
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        return [e.model_copy() for e in self._events if e.correlation_id == correlation_id]

    async def get_events_by_entity(self, entity_type: str, entity_id: int) -> list[AuditEvent]:
        return [
            e.model_copy() for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return [e.model_copy() for e in reversed(self._events[-limit:])] if limit > 0 else []
