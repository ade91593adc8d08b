"""
Core Ledger Models for Daftar

These models define the strict schemas for everything the ledger stores.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging

DESIGN DECISION: Accounts carry NO balance field.
The balance is derived from the transaction chain and only the
ledger store writes the cached copy. A separate read model,
AccountWithBalance, is what screens and reports consume.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_currency(v: str) -> str:
    return v.strip().upper() if isinstance(v, str) else v


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """
    Direction of a transaction from the ledger owner's perspective.

    CREDIT increases the account balance ("له"),
    DEBIT decreases it ("عليه").
    """
    CREDIT = "credit"
    DEBIT = "debit"


class BalanceType(str, Enum):
    """Sign of a balance, for display."""
    CREDIT = "credit"
    DEBIT = "debit"
    ZERO = "zero"

    @classmethod
    def of(cls, balance: Decimal) -> "BalanceType":
        if balance > 0:
            return cls.CREDIT
        if balance < 0:
            return cls.DEBIT
        return cls.ZERO


# =============================================================================
# ENTITIES
# =============================================================================

class Category(BaseModel):
    """
    A group of accounts sharing one currency.

    CRITICAL: The currency cannot change once the category owns accounts,
    otherwise balances would mix currencies.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Category name"
    )
    currency: str = Field(
        ...,
        pattern="^[A-Z]{3}$",
        description="ISO-4217-like currency code"
    )
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator('currency', mode='before')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        """Currency codes are stored upper-case."""
        return _normalize_currency(v)


class Account(BaseModel):
    """A contact whose debit/credit position is tracked."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    category_id: int = Field(
        ...,
        description="Owning category"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Contact name"
    )
    phone_number: str = Field(
        ...,
        min_length=1,
        max_length=30,
        description="Contact phone number"
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=1000
    )
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator('notes')
    @classmethod
    def empty_notes_are_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class AccountWithBalance(Account):
    """
    Account joined with its current balance.

    Read model only: never persisted.
    """
    balance: Decimal = Decimal("0")

    @property
    def balance_type(self) -> BalanceType:
        return BalanceType.of(self.balance)


class Transaction(BaseModel):
    """
    A single ledger entry.

    The amount is always positive; the direction lives in `type`.
    `balance` is the running-balance snapshot: the account balance right
    after this entry, counting every entry ordered before it by
    (transaction_date, sequence_number).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    account_id: int
    sequence_number: int = Field(
        ...,
        ge=1,
        description="Ledger-wide transaction number"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Positive amount; sign is carried by type"
    )
    type: TransactionType
    description: str = Field(
        ...,
        min_length=1,
        max_length=500
    )
    details: Optional[str] = Field(
        default=None,
        max_length=2000
    )
    currency: str = Field(
        ...,
        pattern="^[A-Z]{3}$",
        description="Currency snapshot taken from the category at creation"
    )
    transaction_date: date
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Running balance after this transaction"
    )
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator('currency', mode='before')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        """Currency codes are stored upper-case."""
        return _normalize_currency(v)

    @field_validator('details')
    @classmethod
    def empty_details_are_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type == TransactionType.CREDIT else -self.amount

    @property
    def order_key(self) -> tuple[date, int]:
        """Chronological position within the account."""
        return (self.transaction_date, self.sequence_number)


class AppSettings(BaseModel):
    """
    Singleton application settings record.

    Created with defaults on first run, updated in place, never deleted.
    The PIN itself is never stored, only its bcrypt hash.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    company_name_ar: str = Field(default="", max_length=200)
    company_name_en: str = Field(default="", max_length=200)
    phone_number: Optional[str] = Field(default=None, max_length=30)
    address: Optional[str] = Field(default=None, max_length=500)
    default_currency: str = Field(
        default="YER",
        pattern="^[A-Z]{3}$"
    )
    pin_enabled: bool = False
    pin_hash: Optional[str] = None
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('default_currency', mode='before')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return _normalize_currency(v)

    @model_validator(mode='after')
    def validate_pin_material(self) -> 'AppSettings':
        """An enabled PIN must have a hash to verify against."""
        if self.pin_enabled and not self.pin_hash:
            raise ValueError("PIN is enabled but no PIN hash is stored")
        return self
