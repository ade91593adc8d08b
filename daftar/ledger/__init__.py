"""Ledger core: the transaction store and statements built from it."""

from daftar.ledger.sequence import SequenceAllocator
from daftar.ledger.statement import build_account_statement
from daftar.ledger.store import LedgerStore

__all__ = ["LedgerStore", "SequenceAllocator", "build_account_statement"]
