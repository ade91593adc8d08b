"""
Ledger Store

The single writer of transactions and balances.

DESIGN DECISION: Each account's transactions form a chain ordered by
(transaction_date, sequence_number). Every transaction carries the
running balance right after it. Inserting, editing or deleting an entry
re-walks the chain from the first affected position and writes only the
snapshots that actually changed, all in one atomic storage commit.

Concurrency:
- Mutations on one account are serialized by a per-account asyncio.Lock
- Sequence numbers come from a SequenceAllocator with its own lock
- The storage revision check catches writers outside this process;
  a conflicting commit is retried against a fresh chain

Every mutation runs under one correlation id (the caller's, or a new
one) shared by all the audit events it produces. Rejected input is
audited as mutation_failed; anything else that escapes is audited as a
system error and re-raised.
"""

import asyncio
import bisect
from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from daftar.audit import AuditLogger, create_correlation_id
from daftar.config import LedgerSettings
from daftar.dates.hijri import ensure_supported
from daftar.errors import (
    ConcurrentModificationError,
    CurrencyMismatchError,
    DeletionBlockedError,
    InvalidInputError,
    LedgerError,
    NotFoundError,
)
from daftar.ledger.sequence import SequenceAllocator
from daftar.models.ledger import (
    Account,
    AccountWithBalance,
    Category,
    Transaction,
    TransactionType,
)
from daftar.services.storage import LedgerChangeSet, LedgerStorageInterface


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")

AmountLike = Union[Decimal, int, float, str]

_retry_on_conflict = retry(
    retry=retry_if_exception_type(ConcurrentModificationError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.01, min=0.01, max=0.2),
    reraise=True,
)


def _validation_message(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "value"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


def _build(model: type[BaseModel], **data: Any) -> Any:
    """Construct a model, reporting validation problems as InvalidInputError."""
    try:
        return model(**data)
    except ValidationError as e:
        raise InvalidInputError(_validation_message(e)) from e


def _running_balances(chain: list[Transaction], start: int) -> list[Decimal]:
    """
    Recompute snapshots for chain[start:].

    The entry just before `start` is unaffected by the change, so its
    snapshot seeds the walk.
    """
    running = chain[start - 1].balance if start > 0 else ZERO
    balances = []
    for txn in chain[start:]:
        running += txn.signed_amount
        balances.append(running)
    return balances


class LedgerStore:
    """
    Accounts, categories and transactions with running balances.

    Usage:
        store = LedgerStore(storage)
        txn = await store.create_transaction(account_id, "500", "credit", "Opening", date.today())
        balance = await store.get_account_balance(account_id)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or LedgerSettings()
        self._sequence = SequenceAllocator(storage)
        self._account_locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._structure_lock = asyncio.Lock()
        self._revision = 0

    @property
    def storage(self) -> LedgerStorageInterface:
        return self._storage

    @property
    def revision(self) -> int:
        """Incremented after every successful mutation."""
        return self._revision

    def _bump(self) -> None:
        self._revision += 1

    async def _audit_unexpected(
        self,
        operation: str,
        error: Exception,
        entity_id: int,
        correlation_id: Optional[UUID],
    ) -> None:
        logger.error(
            "mutation_crashed",
            operation=operation,
            entity_id=entity_id,
            error_type=type(error).__name__,
            error=str(error),
        )
        await self._audit.log_error(
            type(error).__name__,
            str(error),
            {"operation": operation, "entity_id": entity_id},
            correlation_id,
        )

    # =========================================================================
    # INPUT HELPERS
    # =========================================================================

    def _parse_amount(self, value: AmountLike) -> Decimal:
        if isinstance(value, bool):
            raise InvalidInputError("Amount must be a number")
        try:
            amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidInputError(f"Amount is not a number: {value!r}")
        if not amount.is_finite() or amount <= 0:
            raise InvalidInputError("Amount must be greater than zero")
        if amount > Decimal(str(self._settings.max_transaction_amount)):
            raise InvalidInputError(
                f"Amount exceeds the maximum of {self._settings.max_transaction_amount:,.2f}"
            )
        cents = amount.quantize(CENT)
        if cents != amount:
            raise InvalidInputError("Amount can have at most two decimal places")
        return cents

    @staticmethod
    def _parse_type(value: Union[TransactionType, str]) -> TransactionType:
        try:
            return TransactionType(value)
        except ValueError:
            raise InvalidInputError(f"Unknown transaction type: {value!r}")

    @staticmethod
    def _parse_description(value: Optional[str]) -> str:
        if value is None or not str(value).strip():
            raise InvalidInputError("Description is required")
        return str(value).strip()

    def _parse_currency(self, value: str) -> str:
        currency = (value or "").strip().upper()
        if currency not in self._settings.supported_currencies_list:
            raise InvalidInputError(
                f"Unsupported currency {currency!r}; expected one of "
                f"{', '.join(self._settings.supported_currencies_list)}"
            )
        return currency

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def create_category(
        self,
        name: str,
        currency: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Category:
        currency = self._parse_currency(currency or self._settings.default_currency)
        category = _build(Category, name=name, currency=currency)
        async with self._structure_lock:
            stored = await self._storage.add_category(category)
        self._bump()
        await self._audit.log_category_created(stored.id, stored.name, stored.currency, correlation_id)
        return stored

    async def get_category(self, category_id: int) -> Category:
        category = await self._storage.get_category(category_id)
        if category is None:
            raise NotFoundError(f"Category not found: {category_id}")
        return category

    async def list_categories(self) -> list[Category]:
        return await self._storage.list_categories()

    async def rename_category(
        self,
        category_id: int,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> Category:
        async with self._structure_lock:
            category = await self.get_category(category_id)
            renamed = _build(Category, **{**category.model_dump(), "name": name})
            await self._storage.update_category(renamed)
        self._bump()
        await self._audit.log_category_updated(category_id, {"name": renamed.name}, correlation_id)
        return renamed

    async def change_category_currency(
        self,
        category_id: int,
        currency: str,
        correlation_id: Optional[UUID] = None,
    ) -> Category:
        """
        Change the currency of a category that has no accounts yet.

        Raises:
            InvalidInputError: If the category already owns accounts
        """
        currency = self._parse_currency(currency)
        async with self._structure_lock:
            category = await self.get_category(category_id)
            if category.currency == currency:
                return category
            if await self._storage.list_accounts(category_id):
                raise InvalidInputError(
                    f"Category {category_id} has accounts; its currency cannot change"
                )
            changed = category.model_copy(update={"currency": currency})
            await self._storage.update_category(changed)
        self._bump()
        await self._audit.log_category_updated(category_id, {"currency": currency}, correlation_id)
        return changed

    async def delete_category(
        self,
        category_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Raises:
            NotFoundError: If the category doesn't exist
            DeletionBlockedError: If the category still owns accounts
        """
        async with self._structure_lock:
            await self.get_category(category_id)
            if await self._storage.list_accounts(category_id):
                raise DeletionBlockedError(
                    f"Category {category_id} still has accounts; delete them first"
                )
            await self._storage.delete_category(category_id)
        self._bump()
        await self._audit.log_category_deleted(category_id, correlation_id)

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def create_account(
        self,
        category_id: int,
        name: str,
        phone_number: str,
        notes: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        account = _build(
            Account,
            category_id=category_id,
            name=name,
            phone_number=phone_number,
            notes=notes,
        )
        async with self._structure_lock:
            await self.get_category(category_id)
            stored = await self._storage.add_account(account)
        self._bump()
        await self._audit.log_account_created(stored.id, category_id, stored.name, correlation_id)
        return stored

    async def get_account(self, account_id: int) -> Account:
        account = await self._storage.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return account

    async def list_accounts(self, category_id: Optional[int] = None) -> list[Account]:
        return await self._storage.list_accounts(category_id)

    async def update_account(
        self,
        account_id: int,
        name: Optional[str] = None,
        phone_number: Optional[str] = None,
        notes: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """Change contact details. Fields left as None keep their value."""
        changes = {
            key: value
            for key, value in (("name", name), ("phone_number", phone_number), ("notes", notes))
            if value is not None
        }
        await self.get_account(account_id)
        async with self._account_locks[account_id]:
            account = await self.get_account(account_id)
            if not changes:
                return account
            updated = _build(Account, **{**account.model_dump(), **changes})
            await self._storage.update_account(updated)
        self._bump()
        await self._audit.log_account_updated(account_id, changes, correlation_id)
        return updated

    async def delete_account(
        self,
        account_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Raises:
            NotFoundError: If the account doesn't exist
            DeletionBlockedError: If the account still has transactions
        """
        await self.get_account(account_id)
        async with self._structure_lock:
            async with self._account_locks[account_id]:
                await self.get_account(account_id)
                count = await self._storage.count_transactions(account_id)
                if count:
                    raise DeletionBlockedError(
                        f"Account {account_id} has {count} transactions; delete them first"
                    )
                await self._storage.delete_account(account_id)
        self._account_locks.pop(account_id, None)
        self._bump()
        await self._audit.log_account_deleted(account_id, correlation_id)

    async def get_account_balance(self, account_id: int) -> Decimal:
        """Current balance, read from the cached latest snapshot."""
        state = await self._storage.get_account_state(account_id)
        if state is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return state.balance

    async def get_account_with_balance(self, account_id: int) -> AccountWithBalance:
        account = await self.get_account(account_id)
        balance = await self.get_account_balance(account_id)
        return AccountWithBalance(**account.model_dump(), balance=balance)

    async def list_accounts_with_balance(
        self,
        category_id: Optional[int] = None,
    ) -> list[AccountWithBalance]:
        accounts = await self._storage.list_accounts(category_id)
        states = await self._storage.list_account_states()
        result = []
        for account in accounts:
            state = states.get(account.id)
            balance = state.balance if state else ZERO
            result.append(AccountWithBalance(**account.model_dump(), balance=balance))
        return result

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def get_transaction(self, transaction_id: int) -> Transaction:
        txn = await self._storage.get_transaction(transaction_id)
        if txn is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return txn

    async def get_transactions_by_account(self, account_id: int) -> list[Transaction]:
        """Transactions of one account ordered by (date, sequence)."""
        await self.get_account(account_id)
        return await self._storage.list_transactions(account_id)

    async def list_all_transactions(self) -> list[Transaction]:
        """Every transaction in the ledger ordered by (date, sequence)."""
        return await self._storage.list_transactions()

    async def count_transactions(self, account_id: Optional[int] = None) -> int:
        return await self._storage.count_transactions(account_id)

    async def create_transaction(
        self,
        account_id: int,
        amount: AmountLike,
        type: Union[TransactionType, str],
        description: str,
        transaction_date: Union[date, datetime],
        details: Optional[str] = None,
        currency: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a transaction and update every snapshot after it.

        Raises:
            InvalidInputError: Non-positive amount, blank description, bad date
            NotFoundError: If the account doesn't exist
            CurrencyMismatchError: If currency differs from the category's
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            parsed_amount = self._parse_amount(amount)
            parsed_type = self._parse_type(type)
            parsed_description = self._parse_description(description)
            parsed_date = ensure_supported(transaction_date)

            # Unknown ids must not leave a lock behind
            await self.get_account(account_id)
            async with self._account_locks[account_id]:
                account = await self.get_account(account_id)
                category = await self._storage.get_category(account.category_id)
                if category is None:
                    raise NotFoundError(
                        f"Category {account.category_id} of account {account_id} not found"
                    )
                if currency is not None and currency.strip().upper() != category.currency:
                    raise CurrencyMismatchError(category.currency, currency.strip().upper())

                created, recomputed, new_balance = await self._insert_locked(
                    account_id=account_id,
                    amount=parsed_amount,
                    txn_type=parsed_type,
                    description=parsed_description,
                    details=details,
                    currency=category.currency,
                    transaction_date=parsed_date,
                )
        except LedgerError as e:
            await self._audit.log_mutation_failed("create_transaction", e, account_id, correlation_id)
            raise
        except Exception as e:
            await self._audit_unexpected("create_transaction", e, account_id, correlation_id)
            raise

        self._bump()
        logger.info(
            "transaction_created",
            transaction_id=created.id,
            account_id=account_id,
            sequence_number=created.sequence_number,
            balance=str(created.balance),
        )
        await self._audit.log_transaction_created(
            created.id, account_id, created.sequence_number, str(created.signed_amount), correlation_id
        )
        if recomputed:
            await self._audit.log_balances_recomputed(
                account_id, recomputed, str(new_balance), correlation_id
            )
        return created

    @_retry_on_conflict
    async def _insert_locked(
        self,
        account_id: int,
        amount: Decimal,
        txn_type: TransactionType,
        description: str,
        details: Optional[str],
        currency: str,
        transaction_date: date,
    ) -> tuple[Transaction, int, Decimal]:
        state = await self._storage.get_account_state(account_id)
        if state is None:
            raise NotFoundError(f"Account not found: {account_id}")
        chain = await self._storage.list_transactions(account_id)

        sequence_number = await self._sequence.reserve()
        new_txn = _build(
            Transaction,
            account_id=account_id,
            sequence_number=sequence_number,
            amount=amount,
            type=txn_type,
            description=description,
            details=details,
            currency=currency,
            transaction_date=transaction_date,
        )

        position = bisect.bisect_right([t.order_key for t in chain], new_txn.order_key)
        chain.insert(position, new_txn)
        insert, updates, account_balance = self._plan(chain, position, new_txn)

        created = await self._storage.commit(LedgerChangeSet(
            account_id=account_id,
            expected_revision=state.revision,
            insert=insert,
            snapshot_updates=updates,
            account_balance=account_balance,
            sequence_high_water=sequence_number,
        ))
        return created, len(updates), account_balance

    async def update_transaction(
        self,
        transaction_id: int,
        amount: Optional[AmountLike] = None,
        type: Optional[Union[TransactionType, str]] = None,
        description: Optional[str] = None,
        transaction_date: Optional[Union[date, datetime]] = None,
        details: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Edit a transaction in place.

        The sequence number is kept; a new date moves the entry to its new
        position in the chain. Every snapshot from the earlier of the old
        and new positions is recomputed.

        Fields left as None keep their value. Passing details="" clears the
        details.
        """
        correlation_id = correlation_id or create_correlation_id()
        changes: dict[str, Any] = {}
        try:
            if amount is not None:
                changes["amount"] = self._parse_amount(amount)
            if type is not None:
                changes["type"] = self._parse_type(type)
            if description is not None:
                changes["description"] = self._parse_description(description)
            if transaction_date is not None:
                changes["transaction_date"] = ensure_supported(transaction_date)
            if details is not None:
                changes["details"] = details

            existing = await self.get_transaction(transaction_id)
            async with self._account_locks[existing.account_id]:
                updated, recomputed, new_balance = await self._update_locked(transaction_id, changes)
        except LedgerError as e:
            await self._audit.log_mutation_failed("update_transaction", e, transaction_id, correlation_id)
            raise
        except Exception as e:
            await self._audit_unexpected("update_transaction", e, transaction_id, correlation_id)
            raise

        self._bump()
        logger.info(
            "transaction_updated",
            transaction_id=transaction_id,
            account_id=updated.account_id,
            fields=sorted(changes),
        )
        await self._audit.log_transaction_updated(
            transaction_id,
            updated.account_id,
            {key: str(value) for key, value in changes.items()},
            correlation_id,
        )
        if recomputed:
            await self._audit.log_balances_recomputed(
                updated.account_id, recomputed, str(new_balance), correlation_id
            )
        return updated

    @_retry_on_conflict
    async def _update_locked(
        self,
        transaction_id: int,
        changes: dict[str, Any],
    ) -> tuple[Transaction, int, Decimal]:
        existing = await self.get_transaction(transaction_id)
        account_id = existing.account_id
        state = await self._storage.get_account_state(account_id)
        if state is None:
            raise NotFoundError(f"Account not found: {account_id}")
        chain = await self._storage.list_transactions(account_id)

        old_position = next(i for i, t in enumerate(chain) if t.id == transaction_id)
        edited = _build(Transaction, **{**existing.model_dump(), **changes})
        del chain[old_position]
        new_position = bisect.bisect_right([t.order_key for t in chain], edited.order_key)
        chain.insert(new_position, edited)

        replace, updates, account_balance = self._plan(
            chain, min(old_position, new_position), edited
        )
        updated = await self._storage.commit(LedgerChangeSet(
            account_id=account_id,
            expected_revision=state.revision,
            replace=replace,
            snapshot_updates=updates,
            account_balance=account_balance,
        ))
        return updated, len(updates), account_balance

    async def delete_transaction(
        self,
        transaction_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Remove a transaction and re-walk the entries after it.

        Raises:
            NotFoundError: If the transaction doesn't exist (every time)
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            existing = await self.get_transaction(transaction_id)
            async with self._account_locks[existing.account_id]:
                removed, recomputed, new_balance = await self._delete_locked(transaction_id)
        except LedgerError as e:
            await self._audit.log_mutation_failed("delete_transaction", e, transaction_id, correlation_id)
            raise
        except Exception as e:
            await self._audit_unexpected("delete_transaction", e, transaction_id, correlation_id)
            raise

        self._bump()
        logger.info(
            "transaction_deleted",
            transaction_id=transaction_id,
            account_id=removed.account_id,
            sequence_number=removed.sequence_number,
        )
        await self._audit.log_transaction_deleted(
            transaction_id, removed.account_id, removed.sequence_number, correlation_id
        )
        if recomputed:
            await self._audit.log_balances_recomputed(
                removed.account_id, recomputed, str(new_balance), correlation_id
            )

    @_retry_on_conflict
    async def _delete_locked(self, transaction_id: int) -> tuple[Transaction, int, Decimal]:
        # Re-read under the lock: another task may have removed it meanwhile
        existing = await self.get_transaction(transaction_id)
        account_id = existing.account_id
        state = await self._storage.get_account_state(account_id)
        if state is None:
            raise NotFoundError(f"Account not found: {account_id}")
        chain = await self._storage.list_transactions(account_id)

        position = next(i for i, t in enumerate(chain) if t.id == transaction_id)
        del chain[position]
        _, updates, account_balance = self._plan(chain, position, None)

        await self._storage.commit(LedgerChangeSet(
            account_id=account_id,
            expected_revision=state.revision,
            delete_id=transaction_id,
            snapshot_updates=updates,
            account_balance=account_balance,
        ))
        return existing, len(updates), account_balance

    @staticmethod
    def _plan(
        chain: list[Transaction],
        start: int,
        subject: Optional[Transaction],
    ) -> tuple[Optional[Transaction], dict[int, Decimal], Decimal]:
        """
        Work out the writes for a chain that already reflects the change.

        Returns the subject with its new snapshot, the changed snapshots of
        every other entry from `start` on, and the account's new balance.
        """
        balances = _running_balances(chain, start)
        updates: dict[int, Decimal] = {}
        planned_subject = None
        for txn, balance in zip(chain[start:], balances):
            if txn is subject:
                planned_subject = txn.model_copy(update={"balance": balance})
            elif txn.balance != balance:
                updates[txn.id] = balance

        if balances:
            account_balance = balances[-1]
        elif chain:
            account_balance = chain[-1].balance
        else:
            account_balance = ZERO
        return planned_subject, updates, account_balance
