"""
Read Models for Statistics, Search and Statements

Everything here is derived from the ledger on demand. None of these
objects is ever written back to storage.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from daftar.dates.hijri import DateBox
from daftar.models.ledger import (
    Account,
    Transaction,
    TransactionType,
    utc_now,
)


# =============================================================================
# STATISTICS
# =============================================================================

class AccountBalanceRef(BaseModel):
    """Points at one account and the balance that made it notable."""

    account_id: int
    account_name: str
    amount: Decimal


class DashboardStats(BaseModel):
    """
    Ledger-wide totals.

    total_credit / total_debit are sums of transaction amounts by type,
    not netted. net_balance is the sum of all current account balances.
    """

    total_accounts: int = Field(ge=0)
    total_transactions: int = Field(ge=0)
    total_credit: Decimal = Decimal("0")
    total_debit: Decimal = Decimal("0")
    net_balance: Decimal = Decimal("0")
    largest_credit: Optional[AccountBalanceRef] = None
    largest_debit: Optional[AccountBalanceRef] = None
    computed_at: datetime = Field(default_factory=utc_now)


class CategoryStats(BaseModel):
    """Balance rollup for one category."""

    category_id: int
    category_name: str
    currency: str
    account_count: int = Field(ge=0)
    total_credit: Decimal = Field(
        default=Decimal("0"),
        description="Sum of positive account balances"
    )
    total_debit: Decimal = Field(
        default=Decimal("0"),
        description="Sum of magnitudes of negative account balances"
    )
    net_balance: Decimal = Decimal("0")


# =============================================================================
# SEARCH
# =============================================================================

class TransactionFilter(BaseModel):
    """
    Optional, AND-combined constraints applied after a text search.

    A field left as None places no constraint on that dimension.
    Ranges are inclusive on both ends.
    """

    type: Optional[TransactionType] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    min_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_amount: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode='after')
    def validate_ranges(self) -> 'TransactionFilter':
        """Validate range relationships."""
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to cannot be before date_from")
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.max_amount < self.min_amount
        ):
            raise ValueError("max_amount cannot be below min_amount")
        return self

    @property
    def is_empty(self) -> bool:
        return (
            self.type is None
            and self.date_from is None
            and self.date_to is None
            and self.min_amount is None
            and self.max_amount is None
        )

    def matches(self, transaction: Transaction) -> bool:
        """True if the transaction satisfies every constraint that is set."""
        if self.type is not None and transaction.type != self.type:
            return False
        if self.date_from is not None and transaction.transaction_date < self.date_from:
            return False
        if self.date_to is not None and transaction.transaction_date > self.date_to:
            return False
        if self.min_amount is not None and transaction.amount < self.min_amount:
            return False
        if self.max_amount is not None and transaction.amount > self.max_amount:
            return False
        return True


class SearchHit(BaseModel):
    """A matching transaction joined with its account name for display."""

    transaction: Transaction
    account_name: str


# =============================================================================
# STATEMENTS
# =============================================================================

class StatementLine(BaseModel):
    """One transaction on an account statement, with its date labels."""

    transaction: Transaction
    date_box: DateBox


class AccountStatement(BaseModel):
    """
    Everything a statement renderer needs for one account and period.

    opening_balance is the running balance just before the first line;
    closing_balance the one after the last line.
    """

    account: Account
    currency: str
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    opening_balance: Decimal = Decimal("0")
    closing_balance: Decimal = Decimal("0")
    total_credit: Decimal = Decimal("0")
    total_debit: Decimal = Decimal("0")
    lines: list[StatementLine] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utc_now)
