"""
Tests for the ledger store.

Covers running-balance snapshots, the global sequence, back-dated
inserts, edits, deletions and the blocked-deletion policy.
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal

import pytest

from daftar.audit import create_correlation_id
from daftar.errors import (
    ConcurrentModificationError,
    CurrencyMismatchError,
    DateOutOfRangeError,
    DeletionBlockedError,
    InvalidInputError,
    NotFoundError,
)
from daftar.ledger import LedgerStore
from daftar.models.audit import AuditEventType, AuditSeverity
from daftar.models.ledger import BalanceType, TransactionType
from daftar.services.storage import InMemoryLedgerStorage


class ConflictingStorage(InMemoryLedgerStorage):
    """In-memory storage whose next `conflicts` commits lose a revision race."""

    def __init__(self, conflicts: int = 0):
        super().__init__()
        self.conflicts = conflicts
        self.commit_calls = 0

    async def commit(self, changes):
        self.commit_calls += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            raise ConcurrentModificationError(
                changes.account_id, changes.expected_revision, changes.expected_revision + 1
            )
        return await super().commit(changes)


class BrokenStorage(InMemoryLedgerStorage):
    """In-memory storage whose commits fail with a non-ledger error."""

    async def commit(self, changes):
        raise RuntimeError("disk full")


class TestCreateTransaction:
    """Recording transactions and their snapshots."""

    async def test_first_credit_sets_balance(self, store, account):
        """A credit on an empty account snapshots its own amount."""
        txn = await store.create_transaction(
            account.id, Decimal("500"), TransactionType.CREDIT, "Opening", date(2024, 1, 10)
        )
        assert txn.id is not None
        assert txn.sequence_number == 1
        assert txn.balance == Decimal("500")
        assert txn.currency == "YER"
        assert await store.get_account_balance(account.id) == Decimal("500")

    async def test_backdated_debit_then_delete(self, store, account, check_ledger):
        """Credit 500, debit 200 a day earlier, then delete the debit."""
        credit = await store.create_transaction(
            account.id, 500, "credit", "Sale", date(2024, 1, 10)
        )
        debit = await store.create_transaction(
            account.id, 200, "debit", "Payment", date(2024, 1, 9)
        )

        chain = await store.get_transactions_by_account(account.id)
        assert [t.id for t in chain] == [debit.id, credit.id]
        assert [t.balance for t in chain] == [Decimal("-200"), Decimal("300")]
        assert await store.get_account_balance(account.id) == Decimal("300")

        await store.delete_transaction(debit.id)

        chain = await store.get_transactions_by_account(account.id)
        assert [t.balance for t in chain] == [Decimal("500")]
        assert await store.get_account_balance(account.id) == Decimal("500")
        await check_ledger(store)

    async def test_backdating_shifts_later_snapshots_only(self, store, account):
        """Every later snapshot moves by the new signed amount; earlier ones don't."""
        for day, amount in ((1, 100), (5, 50), (10, 25)):
            await store.create_transaction(account.id, amount, "credit", "c", date(2024, 3, day))
        before = await store.get_transactions_by_account(account.id)

        await store.create_transaction(account.id, 30, "debit", "d", date(2024, 3, 3))

        after = await store.get_transactions_by_account(account.id)
        after_by_id = {t.id: t for t in after}
        assert after_by_id[before[0].id].balance == before[0].balance
        assert after_by_id[before[1].id].balance == before[1].balance - 30
        assert after_by_id[before[2].id].balance == before[2].balance - 30

    async def test_same_day_orders_by_sequence(self, store, account):
        """Entries on one date keep their recording order."""
        first = await store.create_transaction(account.id, 10, "credit", "a", date(2024, 5, 1))
        second = await store.create_transaction(account.id, 20, "debit", "b", date(2024, 5, 1))
        chain = await store.get_transactions_by_account(account.id)
        assert [t.id for t in chain] == [first.id, second.id]
        assert chain[-1].balance == Decimal("-10")

    async def test_datetime_is_reduced_to_date(self, store, account):
        txn = await store.create_transaction(
            account.id, 10, "credit", "a", datetime(2024, 5, 1, 23, 59)
        )
        assert txn.transaction_date == date(2024, 5, 1)

    async def test_accepts_string_amounts(self, store, account):
        txn = await store.create_transaction(account.id, "12.50", "credit", "a", date(2024, 5, 1))
        assert txn.amount == Decimal("12.50")

    @pytest.mark.parametrize("amount", [0, -5, "abc", Decimal("NaN"), True])
    async def test_rejects_bad_amounts(self, store, account, amount):
        with pytest.raises(InvalidInputError):
            await store.create_transaction(account.id, amount, "credit", "x", date(2024, 1, 1))
        assert await store.count_transactions() == 0

    async def test_rejects_more_than_two_decimals(self, store, account):
        with pytest.raises(InvalidInputError):
            await store.create_transaction(account.id, "1.005", "credit", "x", date(2024, 1, 1))

    async def test_rejects_amount_above_maximum(self, store, account):
        with pytest.raises(InvalidInputError, match="maximum"):
            await store.create_transaction(account.id, "2000000000", "credit", "x", date(2024, 1, 1))

    async def test_rejects_blank_description(self, store, account):
        with pytest.raises(InvalidInputError, match="Description"):
            await store.create_transaction(account.id, 10, "credit", "   ", date(2024, 1, 1))

    async def test_rejects_unknown_type(self, store, account):
        with pytest.raises(InvalidInputError):
            await store.create_transaction(account.id, 10, "refund", "x", date(2024, 1, 1))

    async def test_rejects_unsupported_date(self, store, account):
        with pytest.raises(DateOutOfRangeError):
            await store.create_transaction(account.id, 10, "credit", "x", date(1899, 12, 31))
        with pytest.raises(DateOutOfRangeError):
            await store.create_transaction(account.id, 10, "credit", "x", date(2101, 1, 1))

    async def test_unknown_account(self, store):
        with pytest.raises(NotFoundError):
            await store.create_transaction(999, 10, "credit", "x", date(2024, 1, 1))

    async def test_currency_mismatch(self, store, account):
        with pytest.raises(CurrencyMismatchError) as exc_info:
            await store.create_transaction(
                account.id, 10, "credit", "x", date(2024, 1, 1), currency="USD"
            )
        assert exc_info.value.expected == "YER"
        assert exc_info.value.actual == "USD"

    async def test_matching_currency_is_accepted(self, store, account):
        txn = await store.create_transaction(
            account.id, 10, "credit", "x", date(2024, 1, 1), currency="yer"
        )
        assert txn.currency == "YER"

    async def test_failed_mutation_is_audited(self, store, audit_storage):
        with pytest.raises(NotFoundError):
            await store.create_transaction(42, 10, "credit", "x", date(2024, 1, 1))
        events = await audit_storage.get_recent_events()
        assert events[0].event_type == AuditEventType.MUTATION_FAILED
        assert events[0].error_code == "NotFoundError"

    async def test_creation_and_cascade_are_audited(self, store, account, audit_storage):
        await store.create_transaction(account.id, 10, "credit", "a", date(2024, 1, 2))
        backdated = await store.create_transaction(account.id, 5, "debit", "b", date(2024, 1, 1))

        events = await audit_storage.get_events_by_entity("transaction", backdated.id)
        assert [e.event_type for e in events] == [AuditEventType.TRANSACTION_CREATED]
        cascades = await audit_storage.get_events_by_entity("account", account.id)
        assert AuditEventType.BALANCES_RECOMPUTED in [e.event_type for e in cascades]


class TestSequenceNumbers:
    """Ledger-wide numbering."""

    async def test_numbers_are_global_across_accounts(self, store, account, other_account):
        a = await store.create_transaction(account.id, 1, "credit", "a", date(2024, 1, 1))
        b = await store.create_transaction(other_account.id, 1, "credit", "b", date(2024, 1, 1))
        c = await store.create_transaction(account.id, 1, "credit", "c", date(2023, 1, 1))
        assert [a.sequence_number, b.sequence_number, c.sequence_number] == [1, 2, 3]

    async def test_numbers_are_never_reused_after_deletion(self, store, account):
        await store.create_transaction(account.id, 1, "credit", "a", date(2024, 1, 1))
        last = await store.create_transaction(account.id, 1, "credit", "b", date(2024, 1, 2))
        await store.delete_transaction(last.id)

        following = await store.create_transaction(account.id, 1, "credit", "c", date(2024, 1, 3))
        assert following.sequence_number == 3

    async def test_failed_validation_does_not_consume_a_number(self, store, account):
        with pytest.raises(InvalidInputError):
            await store.create_transaction(account.id, 0, "credit", "a", date(2024, 1, 1))
        txn = await store.create_transaction(account.id, 1, "credit", "a", date(2024, 1, 1))
        assert txn.sequence_number == 1

    async def test_concurrent_creates(self, store, account, other_account, check_ledger):
        """Interleaved creates on two accounts keep every invariant."""
        await asyncio.gather(*[
            store.create_transaction(
                (account if i % 2 else other_account).id,
                i + 1,
                "credit" if i % 3 else "debit",
                f"entry {i}",
                date(2024, 1, 1 + (i * 7) % 28),
            )
            for i in range(20)
        ])
        numbers = sorted(t.sequence_number for t in await store.list_all_transactions())
        assert numbers == list(range(1, 21))
        await check_ledger(store)


class TestDeleteTransaction:
    """Deleting entries."""

    async def test_missing_id_fails_every_time(self, store, account):
        await store.create_transaction(account.id, 10, "credit", "a", date(2024, 1, 1))
        revision = store.revision

        for _ in range(2):
            with pytest.raises(NotFoundError):
                await store.delete_transaction(999)

        assert store.revision == revision
        assert await store.count_transactions() == 1
        assert await store.get_account_balance(account.id) == Decimal("10")

    async def test_deleting_only_entry_resets_balance(self, store, account):
        txn = await store.create_transaction(account.id, 10, "credit", "a", date(2024, 1, 1))
        await store.delete_transaction(txn.id)
        assert await store.get_account_balance(account.id) == Decimal("0")
        assert await store.get_transactions_by_account(account.id) == []

    async def test_deleting_last_entry_keeps_earlier_snapshots(self, store, account, check_ledger):
        await store.create_transaction(account.id, 10, "credit", "a", date(2024, 1, 1))
        last = await store.create_transaction(account.id, 4, "debit", "b", date(2024, 1, 2))
        await store.delete_transaction(last.id)
        assert await store.get_account_balance(account.id) == Decimal("10")
        await check_ledger(store)

    async def test_other_sequence_numbers_unchanged(self, store, account):
        first = await store.create_transaction(account.id, 1, "credit", "a", date(2024, 1, 1))
        middle = await store.create_transaction(account.id, 1, "credit", "b", date(2024, 1, 2))
        last = await store.create_transaction(account.id, 1, "credit", "c", date(2024, 1, 3))
        await store.delete_transaction(middle.id)
        remaining = await store.get_transactions_by_account(account.id)
        assert [t.sequence_number for t in remaining] == [first.sequence_number, last.sequence_number]


class TestUpdateTransaction:
    """Editing entries in place."""

    async def test_amount_change_cascades(self, store, account, check_ledger):
        first = await store.create_transaction(account.id, 100, "credit", "a", date(2024, 1, 1))
        await store.create_transaction(account.id, 40, "debit", "b", date(2024, 1, 2))

        updated = await store.update_transaction(first.id, amount=150)

        assert updated.balance == Decimal("150")
        assert updated.sequence_number == first.sequence_number
        assert await store.get_account_balance(account.id) == Decimal("110")
        await check_ledger(store)

    async def test_moving_date_reorders_chain(self, store, account, check_ledger):
        early = await store.create_transaction(account.id, 100, "credit", "a", date(2024, 1, 1))
        late = await store.create_transaction(account.id, 30, "debit", "b", date(2024, 1, 5))

        await store.update_transaction(early.id, transaction_date=date(2024, 1, 10))

        chain = await store.get_transactions_by_account(account.id)
        assert [t.id for t in chain] == [late.id, early.id]
        assert [t.balance for t in chain] == [Decimal("-30"), Decimal("70")]
        await check_ledger(store)

    async def test_flipping_type(self, store, account):
        txn = await store.create_transaction(account.id, 25, "credit", "a", date(2024, 1, 1))
        updated = await store.update_transaction(txn.id, type="debit")
        assert updated.type == TransactionType.DEBIT
        assert await store.get_account_balance(account.id) == Decimal("-25")

    async def test_description_and_details(self, store, account):
        txn = await store.create_transaction(account.id, 25, "credit", "a", date(2024, 1, 1))
        updated = await store.update_transaction(txn.id, description="Rent", details="March")
        assert updated.description == "Rent"
        assert updated.details == "March"
        assert updated.balance == Decimal("25")

    async def test_empty_details_clear_them(self, store, account):
        """details=None keeps the details, details="" clears them."""
        txn = await store.create_transaction(
            account.id, 25, "credit", "a", date(2024, 1, 1), details="March"
        )
        kept = await store.update_transaction(txn.id, amount=30)
        assert kept.details == "March"

        cleared = await store.update_transaction(txn.id, details="")
        assert cleared.details is None
        assert (await store.get_transaction(txn.id)).details is None

    async def test_blank_description_rejected(self, store, account):
        txn = await store.create_transaction(account.id, 25, "credit", "a", date(2024, 1, 1))
        with pytest.raises(InvalidInputError):
            await store.update_transaction(txn.id, description="")
        assert (await store.get_transaction(txn.id)).description == "a"

    async def test_missing_transaction(self, store):
        with pytest.raises(NotFoundError):
            await store.update_transaction(123, amount=5)


class TestCategoriesAndAccounts:
    """Category/account management and the blocked-deletion policy."""

    async def test_category_defaults_to_configured_currency(self, store):
        category = await store.create_category("Suppliers")
        assert category.currency == "YER"

    async def test_unsupported_currency(self, store):
        with pytest.raises(InvalidInputError, match="Unsupported currency"):
            await store.create_category("Crypto", "BTC")

    async def test_rename_category(self, store, category):
        renamed = await store.rename_category(category.id, "Clients")
        assert renamed.name == "Clients"
        assert (await store.get_category(category.id)).name == "Clients"

    async def test_currency_change_blocked_with_accounts(self, store, category, account):
        with pytest.raises(InvalidInputError):
            await store.change_category_currency(category.id, "USD")

    async def test_currency_change_allowed_when_empty(self, store):
        category = await store.create_category("Travel", "YER")
        changed = await store.change_category_currency(category.id, "sar")
        assert changed.currency == "SAR"

    async def test_delete_category_blocked_with_accounts(self, store, category, account):
        with pytest.raises(DeletionBlockedError):
            await store.delete_category(category.id)

    async def test_delete_account_blocked_with_transactions(self, store, account):
        txn = await store.create_transaction(account.id, 5, "credit", "a", date(2024, 1, 1))
        with pytest.raises(DeletionBlockedError):
            await store.delete_account(account.id)

        await store.delete_transaction(txn.id)
        await store.delete_account(account.id)
        with pytest.raises(NotFoundError):
            await store.get_account(account.id)

    async def test_delete_empty_category(self, store):
        category = await store.create_category("Empty", "USD")
        await store.delete_category(category.id)
        with pytest.raises(NotFoundError):
            await store.delete_category(category.id)

    async def test_account_requires_name_and_phone(self, store, category):
        with pytest.raises(InvalidInputError):
            await store.create_account(category.id, "", "777")
        with pytest.raises(InvalidInputError):
            await store.create_account(category.id, "Ali", "  ")

    async def test_account_needs_existing_category(self, store):
        with pytest.raises(NotFoundError):
            await store.create_account(99, "Ali", "777")

    async def test_update_account(self, store, account):
        updated = await store.update_account(account.id, phone_number="711222333", notes="VIP")
        assert updated.phone_number == "711222333"
        assert updated.notes == "VIP"
        assert updated.name == account.name

    async def test_balance_read_models(self, store, account, other_account):
        await store.create_transaction(account.id, 70, "credit", "a", date(2024, 1, 1))
        await store.create_transaction(other_account.id, 20, "debit", "b", date(2024, 1, 1))

        listed = {a.id: a for a in await store.list_accounts_with_balance()}
        assert listed[account.id].balance == Decimal("70")
        assert listed[account.id].balance_type == BalanceType.CREDIT
        assert listed[other_account.id].balance_type == BalanceType.DEBIT

        single = await store.get_account_with_balance(account.id)
        assert single.balance == Decimal("70")

    async def test_unknown_account_balance(self, store):
        with pytest.raises(NotFoundError):
            await store.get_account_balance(5)
        with pytest.raises(NotFoundError):
            await store.get_transactions_by_account(5)

    async def test_revision_counts_mutations(self, store, category):
        start = store.revision
        acct = await store.create_account(category.id, "Ali", "777")
        txn = await store.create_transaction(acct.id, 5, "credit", "a", date(2024, 1, 1))
        await store.delete_transaction(txn.id)
        assert store.revision == start + 3

    async def test_reads_return_copies(self, store, account):
        txn = await store.create_transaction(account.id, 5, "credit", "a", date(2024, 1, 1))
        chain = await store.get_transactions_by_account(account.id)
        chain[0].description = "tampered"
        assert (await store.get_transaction(txn.id)).description == "a"


class TestConflictRetry:
    """Commits that lose a revision race are retried against a fresh chain."""

    @pytest.fixture
    def conflicting(self):
        return ConflictingStorage()

    @pytest.fixture
    def conflict_store(self, conflicting, audit_logger, ledger_settings):
        return LedgerStore(conflicting, audit_logger, ledger_settings)

    @pytest.fixture
    async def conflict_account(self, conflict_store):
        category = await conflict_store.create_category("Customers", "YER")
        return await conflict_store.create_account(category.id, "Ahmed", "777000111")

    async def test_create_retries_with_fresh_number(
        self, conflict_store, conflicting, conflict_account, check_ledger
    ):
        first = await conflict_store.create_transaction(
            conflict_account.id, 100, "credit", "a", date(2024, 1, 10)
        )
        conflicting.conflicts = 1
        calls_before = conflicting.commit_calls

        backdated = await conflict_store.create_transaction(
            conflict_account.id, 40, "debit", "b", date(2024, 1, 5)
        )

        assert conflicting.commit_calls - calls_before == 2
        # The number reserved by the lost attempt is not reused
        assert backdated.sequence_number == first.sequence_number + 2
        assert backdated.balance == Decimal("-40")
        assert (await conflict_store.get_transaction(first.id)).balance == Decimal("60")
        assert await conflict_store.get_account_balance(conflict_account.id) == Decimal("60")
        await check_ledger(conflict_store)

    async def test_delete_retries(self, conflict_store, conflicting, conflict_account, check_ledger):
        a = await conflict_store.create_transaction(conflict_account.id, 10, "credit", "a", date(2024, 1, 1))
        b = await conflict_store.create_transaction(conflict_account.id, 5, "credit", "b", date(2024, 1, 2))
        conflicting.conflicts = 1

        await conflict_store.delete_transaction(a.id)

        assert (await conflict_store.get_transaction(b.id)).balance == Decimal("5")
        await check_ledger(conflict_store)

    async def test_gives_up_after_three_attempts(
        self, conflict_store, conflicting, conflict_account, audit_storage
    ):
        conflicting.conflicts = 10

        with pytest.raises(ConcurrentModificationError):
            await conflict_store.create_transaction(
                conflict_account.id, 10, "credit", "a", date(2024, 1, 1)
            )

        assert conflicting.commit_calls == 3
        assert await conflict_store.count_transactions(conflict_account.id) == 0
        assert await conflict_store.get_account_balance(conflict_account.id) == Decimal("0")
        assert conflict_store.revision == 2
        events = await audit_storage.get_recent_events()
        assert events[0].event_type == AuditEventType.MUTATION_FAILED
        assert events[0].error_code == "ConcurrentModificationError"


class TestMutationAudit:
    """Correlation ids and unexpected failures."""

    async def test_events_share_a_correlation_id(self, store, account, audit_storage):
        await store.create_transaction(account.id, 10, "credit", "a", date(2024, 1, 2))
        backdated = await store.create_transaction(account.id, 5, "debit", "b", date(2024, 1, 1))

        created = (await audit_storage.get_events_by_entity("transaction", backdated.id))[0]
        assert created.correlation_id is not None
        related = await audit_storage.get_events_by_correlation_id(created.correlation_id)
        assert [e.event_type for e in related] == [
            AuditEventType.TRANSACTION_CREATED,
            AuditEventType.BALANCES_RECOMPUTED,
        ]

    async def test_caller_correlation_id_is_kept(self, store, account, audit_storage):
        correlation_id = create_correlation_id()
        txn = await store.create_transaction(
            account.id, 10, "credit", "a", date(2024, 1, 1), correlation_id=correlation_id
        )
        await store.delete_transaction(txn.id, correlation_id=correlation_id)

        related = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in related] == [
            AuditEventType.TRANSACTION_CREATED,
            AuditEventType.TRANSACTION_DELETED,
        ]

    async def test_unexpected_failure_is_audited_and_raised(
        self, audit_logger, audit_storage, ledger_settings
    ):
        broken = LedgerStore(BrokenStorage(), audit_logger, ledger_settings)
        category = await broken.create_category("Customers", "YER")
        account = await broken.create_account(category.id, "Ahmed", "777")

        with pytest.raises(RuntimeError, match="disk full"):
            await broken.create_transaction(account.id, 10, "credit", "a", date(2024, 1, 1))

        events = await audit_storage.get_recent_events()
        assert events[0].event_type == AuditEventType.SYSTEM_ERROR
        assert events[0].severity == AuditSeverity.ERROR
        assert events[0].error_message == "disk full"
        assert events[0].details == {"operation": "create_transaction", "entity_id": account.id}


class TestAccountLocks:
    """Per-account locks only exist for real accounts."""

    async def test_unknown_account_leaves_no_lock(self, store):
        with pytest.raises(NotFoundError):
            await store.create_transaction(999, 10, "credit", "x", date(2024, 1, 1))
        with pytest.raises(NotFoundError):
            await store.update_account(999, name="x")
        with pytest.raises(NotFoundError):
            await store.delete_account(999)
        assert 999 not in store._account_locks
