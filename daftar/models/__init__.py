"""
Data Models Package

This package contains all Pydantic models used by the ledger core.
All data flowing through the system must conform to these schemas.
"""

from daftar.models.ledger import (
    Account,
    AccountWithBalance,
    AppSettings,
    BalanceType,
    Category,
    Transaction,
    TransactionType,
)
from daftar.models.reports import (
    AccountBalanceRef,
    AccountStatement,
    CategoryStats,
    DashboardStats,
    SearchHit,
    StatementLine,
    TransactionFilter,
)
from daftar.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountWithBalance",
    "AppSettings",
    "BalanceType",
    "Category",
    "Transaction",
    "TransactionType",
    # Read models
    "AccountBalanceRef",
    "AccountStatement",
    "CategoryStats",
    "DashboardStats",
    "SearchHit",
    "StatementLine",
    "TransactionFilter",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
