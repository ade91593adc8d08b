"""
Ledger Error Hierarchy

Every failure the ledger core can report to a caller is one of these.
Callers can catch LedgerError to handle all of them, or a specific
subclass when the reaction differs (e.g. show "account not found"
versus "amount must be positive").

Ledger mutations that raise leave the store untouched: the change set
is only committed after every check has passed.
"""


class LedgerError(Exception):
    """Base exception for the ledger core."""
    pass


class InvalidInputError(LedgerError):
    """Malformed amount, date, or an empty required field."""
    pass


class NotFoundError(LedgerError):
    """A referenced category, account or transaction does not exist."""
    pass


class CurrencyMismatchError(LedgerError):
    """Transaction currency disagrees with the account's category currency."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Currency mismatch: account uses {expected}, got {actual}"
        )


class DateOutOfRangeError(InvalidInputError):
    """Date falls outside the span supported by the calendar converter."""
    pass


class ConcurrentModificationError(LedgerError):
    """
    The account changed between reading its transaction chain and
    committing the recomputed snapshots.
    """

    def __init__(self, account_id: int, expected: int, actual: int):
        self.account_id = account_id
        self.expected_revision = expected
        self.actual_revision = actual
        super().__init__(
            f"Account {account_id} was modified concurrently "
            f"(expected revision {expected}, found {actual})"
        )


class DeletionBlockedError(InvalidInputError):
    """Deleting an entity that still owns children is not allowed."""
    pass
