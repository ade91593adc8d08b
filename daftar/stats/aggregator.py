"""
Statistics Aggregator

DESIGN DECISION: Statistics are a pure read model.
They are recomputed from the ledger on demand and never stored, so
they can never disagree with the transactions they summarize.
Results are cached against the ledger revision; any mutation makes
the next call recompute.

Records whose parent is missing (a transaction without its account,
an account without its category) are skipped with a warning rather
than failing the whole dashboard.
"""

from decimal import Decimal
from typing import Any, Callable, Optional

import structlog

from daftar.audit import AuditLogger
from daftar.ledger.store import LedgerStore
from daftar.models.ledger import AccountWithBalance, TransactionType
from daftar.models.reports import AccountBalanceRef, CategoryStats, DashboardStats


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


class StatisticsAggregator:
    """
    Dashboard, per-category and top-account statistics.

    Usage:
        stats = StatisticsAggregator(store)
        dashboard = await stats.dashboard_stats()
        biggest = await stats.top_accounts(5)
    """

    def __init__(self, store: LedgerStore, audit_logger: Optional[AuditLogger] = None):
        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._cache: dict[str, tuple[int, Any]] = {}

    def invalidate(self) -> None:
        """Drop every cached result."""
        self._cache.clear()

    async def _cached(self, key: str, compute: Callable) -> Any:
        revision = self._store.revision
        hit = self._cache.get(key)
        if hit is not None and hit[0] == revision:
            return hit[1]
        value = await compute()
        self._cache[key] = (revision, value)
        return value

    async def _skip(self, entity_type: str, entity_id: int, missing: str) -> None:
        logger.warning("reference_skipped", entity_type=entity_type, entity_id=entity_id, missing=missing)
        await self._audit.log_reference_skipped(entity_type, entity_id, missing)

    # =========================================================================
    # DASHBOARD
    # =========================================================================

    async def dashboard_stats(self) -> DashboardStats:
        stats = await self._cached("dashboard", self._compute_dashboard)
        return stats.model_copy(deep=True)

    async def _compute_dashboard(self) -> DashboardStats:
        accounts = await self._store.list_accounts_with_balance()
        transactions = await self._store.list_all_transactions()
        known_accounts = {account.id for account in accounts}

        total_credit = ZERO
        total_debit = ZERO
        counted = 0
        for txn in transactions:
            if txn.account_id not in known_accounts:
                await self._skip("transaction", txn.id, f"account {txn.account_id}")
                continue
            counted += 1
            if txn.type == TransactionType.CREDIT:
                total_credit += txn.amount
            else:
                total_debit += txn.amount

        creditors = [a for a in accounts if a.balance > 0]
        debtors = [a for a in accounts if a.balance < 0]
        largest_credit = min(creditors, key=lambda a: (-a.balance, a.id)) if creditors else None
        largest_debit = min(debtors, key=lambda a: (a.balance, a.id)) if debtors else None

        stats = DashboardStats(
            total_accounts=len(accounts),
            total_transactions=counted,
            total_credit=total_credit,
            total_debit=total_debit,
            net_balance=sum((a.balance for a in accounts), ZERO),
            largest_credit=self._ref(largest_credit),
            largest_debit=self._ref(largest_debit),
        )
        logger.debug(
            "dashboard_computed",
            accounts=stats.total_accounts,
            transactions=stats.total_transactions,
            revision=self._store.revision,
        )
        return stats

    @staticmethod
    def _ref(account: Optional[AccountWithBalance]) -> Optional[AccountBalanceRef]:
        if account is None:
            return None
        return AccountBalanceRef(
            account_id=account.id,
            account_name=account.name,
            amount=account.balance,
        )

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def category_stats(self) -> list[CategoryStats]:
        """One entry per category, ordered by category id."""
        stats = await self._cached("categories", self._compute_category_stats)
        return [item.model_copy() for item in stats]

    async def _compute_category_stats(self) -> list[CategoryStats]:
        categories = await self._store.list_categories()
        accounts = await self._store.list_accounts_with_balance()

        by_category: dict[int, list[AccountWithBalance]] = {c.id: [] for c in categories}
        for account in accounts:
            if account.category_id not in by_category:
                await self._skip("account", account.id, f"category {account.category_id}")
                continue
            by_category[account.category_id].append(account)

        result = []
        for category in categories:
            members = by_category[category.id]
            credit = sum((a.balance for a in members if a.balance > 0), ZERO)
            debit = sum((-a.balance for a in members if a.balance < 0), ZERO)
            result.append(CategoryStats(
                category_id=category.id,
                category_name=category.name,
                currency=category.currency,
                account_count=len(members),
                total_credit=credit,
                total_debit=debit,
                net_balance=credit - debit,
            ))
        return result

    # =========================================================================
    # TOP ACCOUNTS
    # =========================================================================

    async def top_accounts(self, n: int) -> list[AccountWithBalance]:
        """
        Accounts with the largest balances by magnitude.

        Ties are broken by account id; n <= 0 gives an empty list.
        """
        if n <= 0:
            return []
        ranked = await self._cached("top_accounts", self._compute_ranking)
        return [account.model_copy() for account in ranked[:n]]

    async def _compute_ranking(self) -> list[AccountWithBalance]:
        accounts = await self._store.list_accounts_with_balance()
        return sorted(accounts, key=lambda a: (-abs(a.balance), a.id))
