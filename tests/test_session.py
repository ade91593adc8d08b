"""Tests for session wiring."""

from datetime import date
from decimal import Decimal

import pytest

from daftar.config import Settings
from daftar.models.audit import AuditEventType
from daftar.security import LockState
from daftar.session import LedgerSession, create_session


@pytest.fixture
def settings():
    return Settings()


class TestLedgerSession:

    async def test_in_memory_session(self, settings):
        async with create_session(in_memory=True, settings=settings) as session:
            assert isinstance(session, LedgerSession)
            assert session.is_unlocked
            assert session.app_settings.default_currency == "YER"

            category = await session.store.create_category("Customers")
            account = await session.store.create_account(category.id, "Ahmed", "777")
            await session.store.create_transaction(account.id, 500, "credit", "Sale", date(2024, 1, 10))

            dashboard = await session.stats.dashboard_stats()
            assert dashboard.net_balance == Decimal("500")
            hits = await session.search.search_transactions("sale")
            assert len(hits) == 1

    async def test_statement(self, settings):
        async with create_session(in_memory=True, settings=settings) as session:
            category = await session.store.create_category("Customers")
            account = await session.store.create_account(category.id, "Ahmed", "777")
            for day, amount, kind in ((1, 100, "credit"), (10, 30, "debit"), (20, 50, "credit")):
                await session.store.create_transaction(account.id, amount, kind, "x", date(2024, 3, day))

            statement = await session.build_account_statement(
                account.id, date(2024, 3, 5), date(2024, 3, 31)
            )
            assert statement.currency == "YER"
            assert statement.opening_balance == Decimal("100")
            assert statement.closing_balance == Decimal("120")
            assert statement.total_credit == Decimal("50")
            assert statement.total_debit == Decimal("30")
            assert [line.date_box.gregorian for line in statement.lines] == ["10/03/2024", "20/03/2024"]

    async def test_pin_persists_across_sessions(self, tmp_path, settings):
        db_path = str(tmp_path / "daftar.db")
        async with create_session(db_path, settings=settings) as session:
            assert session.gate.state == LockState.UNLOCKED
            await session.set_pin("1234")
            # Setting a PIN does not lock the running session
            assert session.is_unlocked

        async with create_session(db_path, settings=settings) as session:
            assert session.gate.state == LockState.LOCKED
            assert not await session.gate.verify_pin_code("4321")
            assert await session.gate.verify_pin_code("1234")
            assert session.is_unlocked

            events = await session.audit_storage.get_recent_events(limit=5)
            assert events[0].event_type == AuditEventType.PIN_VERIFIED

    async def test_disable_pin(self, tmp_path, settings):
        db_path = str(tmp_path / "daftar.db")
        async with create_session(db_path, settings=settings) as session:
            await session.set_pin("1234")
            await session.disable_pin()

        async with create_session(db_path, settings=settings) as session:
            assert session.gate.state == LockState.UNLOCKED
