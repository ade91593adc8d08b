"""Search and filter package."""

from daftar.queries.search import (
    TransactionSearchEngine,
    apply_filters,
    normalize_text,
)

__all__ = ["TransactionSearchEngine", "apply_filters", "normalize_text"]
