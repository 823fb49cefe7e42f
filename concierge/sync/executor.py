"""
BoundedFetchExecutor — per-item detail fetches under a concurrency ceiling.

At most `concurrency` fetches are in flight at once. Each fetch sleeps a
small pacing delay inside its slot and carries its own timeout. A failing
or timed-out item is logged and counted, never raised, so one bad item does
not cost the rest of the chunk. Results keep the order of the input refs.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Generic, Sequence, TypeVar

from ..config import settings
from ..models import ItemRef

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class FetchBatch(Generic[T]):
    succeeded: list[T] = field(default_factory=list)
    failed_count: int = 0
    # Refs of this chunk, in input order
    refs: list[ItemRef] = field(default_factory=list)


class BoundedFetchExecutor:
    def __init__(
        self,
        concurrency: int | None = None,
        pacing_seconds: float | None = None,
        timeout: float | None = None,
        chunk_size: int | None = None,
    ) -> None:
        self.concurrency = concurrency or settings.fetch_concurrency
        self.pacing_seconds = (
            settings.fetch_pacing_seconds if pacing_seconds is None else pacing_seconds
        )
        self.timeout = timeout or settings.remote_call_timeout
        self.chunk_size = chunk_size or settings.fetch_chunk_size
        if self.concurrency < 1 or self.chunk_size < 1:
            raise ValueError("concurrency and chunk_size must be >= 1")

    async def fetch_all(
        self, refs: Sequence[ItemRef], fetch_one: Callable[[ItemRef], Awaitable[T]]
    ) -> FetchBatch[T]:
        """Fetch every ref; failures are counted, successes returned in input order."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _guarded(ref: ItemRef) -> tuple[bool, T | None]:
            async with semaphore:
                if self.pacing_seconds:
                    await asyncio.sleep(self.pacing_seconds)
                try:
                    return True, await asyncio.wait_for(fetch_one(ref), timeout=self.timeout)
                except asyncio.TimeoutError:
                    logger.error("Detail fetch timed out after %.0fs: %s", self.timeout, ref.external_id)
                except Exception as e:
                    logger.error("Detail fetch failed for %s: %s", ref.external_id, e, exc_info=True)
                return False, None

        outcomes = await asyncio.gather(*(_guarded(ref) for ref in refs))
        batch: FetchBatch[T] = FetchBatch(refs=list(refs))
        for ok, item in outcomes:
            if ok:
                batch.succeeded.append(item)
            else:
                batch.failed_count += 1
        return batch

    async def iter_chunks(
        self, refs: Sequence[ItemRef], fetch_one: Callable[[ItemRef], Awaitable[T]]
    ) -> AsyncIterator[FetchBatch[T]]:
        """
        Split refs into fixed-size chunks and yield each chunk's batch.
        The next chunk is not started until the consumer resumes, so the
        caller can persist one chunk before the next is fetched.
        """
        for start in range(0, len(refs), self.chunk_size):
            yield await self.fetch_all(refs[start:start + self.chunk_size], fetch_one)
