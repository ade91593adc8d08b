"""
Global transaction numbering.

Numbers are handed out ledger-wide, across all accounts, and never
reused. The allocator seeds itself from the persisted high-water mark
the first time it is asked, then counts in memory; the high-water mark
is written back in the same commit as the transaction that used it.
"""

import asyncio
from typing import Optional

import structlog

from daftar.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)


class SequenceAllocator:
    """Hands out strictly increasing sequence numbers."""

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage
        self._last: Optional[int] = None
        self._lock = asyncio.Lock()

    async def reserve(self) -> int:
        """
        Reserve the next sequence number.

        A reservation whose commit later fails leaves a gap; the number
        is not handed out again.
        """
        async with self._lock:
            if self._last is None:
                self._last = await self._storage.get_sequence_high_water()
                logger.debug("sequence_seeded", high_water=self._last)
            self._last += 1
            return self._last

    @property
    def last_reserved(self) -> Optional[int]:
        return self._last
