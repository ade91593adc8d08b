"""
Account statement assembly.

Builds the payload a statement renderer consumes: the account, the
period, the opening and closing balances, and each transaction with its
running balance and its Gregorian/Hijri date labels. Rendering itself
(PDF, sharing) is left to the caller.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

import structlog

from daftar.dates.hijri import ensure_supported, format_date_box
from daftar.errors import InvalidInputError
from daftar.ledger.store import LedgerStore
from daftar.models.ledger import TransactionType
from daftar.models.reports import AccountStatement, StatementLine


logger = structlog.get_logger(__name__)


async def build_account_statement(
    store: LedgerStore,
    account_id: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> AccountStatement:
    """
    Assemble the statement of one account for an inclusive date range.

    Args:
        store: Ledger to read from
        account_id: Account to report on
        date_from: First day included; None starts at the first transaction
        date_to: Last day included; None runs to the last transaction

    Raises:
        NotFoundError: If the account or its category doesn't exist
        InvalidInputError: If date_from is after date_to
    """
    if date_from is not None:
        date_from = ensure_supported(date_from)
    if date_to is not None:
        date_to = ensure_supported(date_to)
    if date_from and date_to and date_from > date_to:
        raise InvalidInputError("Statement start date is after its end date")

    account = await store.get_account(account_id)
    category = await store.get_category(account.category_id)
    chain = await store.get_transactions_by_account(account_id)

    opening_balance = Decimal("0")
    lines: list[StatementLine] = []
    total_credit = Decimal("0")
    total_debit = Decimal("0")

    for txn in chain:
        if date_from is not None and txn.transaction_date < date_from:
            opening_balance = txn.balance
            continue
        if date_to is not None and txn.transaction_date > date_to:
            break
        lines.append(StatementLine(transaction=txn, date_box=format_date_box(txn.transaction_date)))
        if txn.type == TransactionType.CREDIT:
            total_credit += txn.amount
        else:
            total_debit += txn.amount

    closing_balance = lines[-1].transaction.balance if lines else opening_balance

    logger.debug(
        "statement_built",
        account_id=account_id,
        lines=len(lines),
        closing_balance=str(closing_balance),
    )
    return AccountStatement(
        account=account,
        currency=category.currency,
        date_from=date_from,
        date_to=date_to,
        opening_balance=opening_balance,
        closing_balance=closing_balance,
        total_credit=total_credit,
        total_debit=total_debit,
        lines=lines,
    )
