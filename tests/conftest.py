"""
Shared fixtures.

Unit tests run against the in-memory backend; SQLite tests get a
fresh database file under tmp_path.
"""

from decimal import Decimal

import pytest

from daftar.audit import AuditLogger
from daftar.config import LedgerSettings, SecuritySettings
from daftar.ledger import LedgerStore
from daftar.models.ledger import Transaction
from daftar.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage


@pytest.fixture
def ledger_settings():
    return LedgerSettings(database_path=":memory:", default_currency="YER")


@pytest.fixture
def security_settings():
    # Lowest bcrypt cost keeps hashing fast in tests
    return SecuritySettings(
        pin_max_attempts=5,
        pin_lockout_base_seconds=30.0,
        pin_lockout_max_seconds=900.0,
        pin_bcrypt_rounds=4,
    )


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def store(storage, audit_logger, ledger_settings):
    return LedgerStore(storage, audit_logger, ledger_settings)


@pytest.fixture
async def category(store):
    return await store.create_category("Customers", "YER")


@pytest.fixture
async def account(store, category):
    return await store.create_account(category.id, "Ahmed", "777000111")


@pytest.fixture
async def other_account(store, category):
    return await store.create_account(category.id, "Salem", "777000222")


def assert_chain_consistent(chain: list[Transaction]) -> None:
    """Every snapshot equals its predecessor plus its own signed amount."""
    running = Decimal("0")
    for previous, current in zip([None] + chain[:-1], chain):
        if previous is not None:
            assert previous.order_key < current.order_key
        running += current.signed_amount
        assert current.balance == running


async def assert_ledger_consistent(store: LedgerStore) -> None:
    """Chain, cached balance and global numbering agree for every account."""
    for acct in await store.list_accounts():
        chain = await store.get_transactions_by_account(acct.id)
        assert_chain_consistent(chain)
        expected = sum((t.signed_amount for t in chain), Decimal("0"))
        assert await store.get_account_balance(acct.id) == expected

    sequences = [t.sequence_number for t in await store.list_all_transactions()]
    assert len(sequences) == len(set(sequences))


@pytest.fixture
def check_ledger():
    """The ledger-wide consistency assertion, for tests that mutate."""
    return assert_ledger_consistent
