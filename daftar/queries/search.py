"""
Transaction Search & Filter Engine

DESIGN DECISION: Search is a read-only scan over the ledger.
Text matching happens on a normalized form of both the query and the
stored text, so a user typing without hamza, diacritics or tatweel
still finds what was entered with them. Filters are applied afterwards
as a pure post-filter and never touch the text match.
"""

import re
import unicodedata
from typing import Optional

import structlog

from daftar.ledger.store import LedgerStore
from daftar.models.reports import SearchHit, TransactionFilter


logger = structlog.get_logger(__name__)

MIN_SUGGESTION_LENGTH = 2

# Harakat, Quranic marks and superscript alef
_DIACRITICS = re.compile("[\u064B-\u065F\u0670]")
_TATWEEL = "\u0640"
_WHITESPACE = re.compile(r"\s+")

_LETTER_FOLDS = str.maketrans({
    "\u0623": "\u0627",  # alef with hamza above
    "\u0625": "\u0627",  # alef with hamza below
    "\u0622": "\u0627",  # alef with madda
    "\u0671": "\u0627",  # alef wasla
    "\u0649": "\u064A",  # alef maqsura -> yeh
})

_DIGIT_FOLDS = str.maketrans(
    "٠١٢٣٤٥٦٧٨٩"
    "۰۱۲۳۴۵۶۷۸۹",
    "01234567890123456789",
)


def normalize_text(text: Optional[str]) -> str:
    """
    Normalize text for matching.

    NFKC, case-fold, drop Arabic diacritics and tatweel, fold alef
    variants and alef maqsura, map Arabic-Indic digits to ASCII and
    collapse whitespace.
    """
    if not text:
        return ""
    value = unicodedata.normalize("NFKC", text).casefold()
    value = _DIACRITICS.sub("", value).replace(_TATWEEL, "")
    value = value.translate(_LETTER_FOLDS).translate(_DIGIT_FOLDS)
    return _WHITESPACE.sub(" ", value).strip()


def apply_filters(
    hits: list[SearchHit],
    filters: Optional[TransactionFilter] = None,
) -> list[SearchHit]:
    """Keep the hits whose transaction satisfies every filter; order is preserved."""
    if filters is None or filters.is_empty:
        return list(hits)
    return [hit for hit in hits if filters.matches(hit.transaction)]


class TransactionSearchEngine:
    """
    Free-text search across every account's transactions.

    Results are ordered most recent first: by date descending, then by
    sequence number descending.
    """

    def __init__(self, store: LedgerStore):
        self._store = store

    async def search_transactions(
        self,
        query_text: str,
        filters: Optional[TransactionFilter] = None,
    ) -> list[SearchHit]:
        """
        Find transactions whose description or details contain the query.

        A blank query returns an empty list.
        """
        needle = normalize_text(query_text)
        if not needle:
            return []

        accounts = {account.id: account for account in await self._store.list_accounts()}
        hits = []
        for txn in await self._store.list_all_transactions():
            if not self._matches(needle, txn.description, txn.details):
                continue
            account = accounts.get(txn.account_id)
            if account is None:
                logger.warning(
                    "reference_skipped",
                    entity_type="transaction",
                    entity_id=txn.id,
                    missing=f"account {txn.account_id}",
                )
                continue
            hits.append(SearchHit(transaction=txn, account_name=account.name))

        hits.sort(key=lambda hit: hit.transaction.order_key, reverse=True)
        result = apply_filters(hits, filters)
        logger.debug("search_executed", query=query_text, matched=len(hits), returned=len(result))
        return result

    def apply_filters(
        self,
        hits: list[SearchHit],
        filters: Optional[TransactionFilter] = None,
    ) -> list[SearchHit]:
        return apply_filters(hits, filters)

    async def suggest_descriptions(self, text: str, limit: int = 5) -> list[str]:
        """
        Distinct earlier descriptions containing the typed text, newest first.

        Nothing is suggested for fewer than two characters.
        """
        needle = normalize_text(text)
        if len(needle) < MIN_SUGGESTION_LENGTH or limit <= 0:
            return []

        transactions = await self._store.list_all_transactions()
        seen: set[str] = set()
        suggestions: list[str] = []
        for txn in reversed(transactions):
            key = normalize_text(txn.description)
            if needle not in key or key in seen:
                continue
            seen.add(key)
            suggestions.append(txn.description)
            if len(suggestions) >= limit:
                break
        return suggestions

    @staticmethod
    def _matches(needle: str, description: str, details: Optional[str]) -> bool:
        if needle in normalize_text(description):
            return True
        return bool(details) and needle in normalize_text(details)
