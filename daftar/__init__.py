"""
Daftar - Ledger and Statistics Engine

Tracks per-contact debit/credit balances ("who owes whom") for a small
bookkeeping application: transactions with running-balance snapshots,
ledger-wide transaction numbers, dashboard statistics, Arabic-aware
search, Gregorian/Hijri date labels and an optional PIN gate.

DESIGN PRINCIPLES:
1. Balances are derived from transactions, never typed in
2. Every mutation commits atomically or not at all
3. Fail early, fail visibly
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Daftar Team"
