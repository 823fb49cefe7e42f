"""
CacheUpserter — idempotent insert-or-update of fetched items.

Each item is written in its own transaction. A failed transaction is retried
for that item alone, with a short backoff; the run is never restarted.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable

from ..cache.items import CacheStore, UpsertOutcome
from ..config import settings
from ..exceptions import StorageError
from ..models import CacheItem

logger = logging.getLogger(__name__)

_RETRY_BASE_DELAY = 0.1  # seconds


@dataclass
class UpsertCounts:
    added: int = 0
    updated: int = 0
    failed: int = 0


class CacheUpserter:
    def __init__(self, cache: CacheStore, max_attempts: int | None = None) -> None:
        self._cache = cache
        self._max_attempts = max_attempts or settings.upsert_max_attempts

    async def upsert(self, user_id: int, item: CacheItem) -> UpsertOutcome:
        """
        Write one item. Raises StorageError once every attempt has failed.
        Calling twice with the same item yields INSERTED then UPDATED and
        leaves a single row.
        """
        for attempt in range(self._max_attempts):
            try:
                return await self._cache.upsert_item(user_id, item)
            except StorageError as e:
                if attempt == self._max_attempts - 1:
                    raise
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Upsert of %s %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    item.kind.value, item.external_id, attempt + 1, self._max_attempts, delay, e,
                )
                await asyncio.sleep(delay)
        raise StorageError("Upsert retry loop completed without result")

    async def upsert_many(self, user_id: int, items: Iterable[CacheItem]) -> UpsertCounts:
        """Write items sequentially in the given order; an item that keeps failing is counted."""
        counts = UpsertCounts()
        for item in items:
            try:
                outcome = await self.upsert(user_id, item)
            except StorageError as e:
                logger.error(
                    "Giving up on %s %s for user %d: %s",
                    item.kind.value, item.external_id, user_id, e,
                )
                counts.failed += 1
                continue
            if outcome == UpsertOutcome.INSERTED:
                counts.added += 1
            else:
                counts.updated += 1
        return counts
