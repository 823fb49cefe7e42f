"""
SyncRun — one (user, source, mode) execution.

    Pending -> Running -> Success | Failed

The run streams: each listing page is split into chunks, each chunk is
fetched under the executor's concurrency ceiling and written before the
next chunk starts, so committed chunks survive a later failure. The source
cursor moves only when the run succeeds with no failed items; otherwise the
next incremental run re-covers the same window.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable

from ..cache.runs import SyncRunStore
from ..cache.users import UserStore
from ..exceptions import SyncCancelledError
from ..logging_config import run_context
from ..models import RunStatus, SourceKind, SyncMode, SyncRunRecord, utcnow
from .cursor import compute_window
from .executor import BoundedFetchExecutor
from .fetcher import PagedFetcher
from .upsert import CacheUpserter

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    PENDING = "Pending"
    RUNNING = RunStatus.RUNNING.value
    SUCCESS = RunStatus.SUCCESS.value
    FAILED = RunStatus.FAILED.value


class SyncRun:
    def __init__(
        self,
        *,
        user_id: int,
        kind: SourceKind,
        mode: SyncMode,
        fetcher_factory: Callable[[], Awaitable[PagedFetcher]],
        executor: BoundedFetchExecutor,
        upserter: CacheUpserter,
        run_store: SyncRunStore,
        user_store: UserStore,
        stop_event: asyncio.Event | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.user_id = user_id
        self.kind = kind
        self.mode = mode
        self._fetcher_factory = fetcher_factory
        self._executor = executor
        self._upserter = upserter
        self._runs = run_store
        self._users = user_store
        self._stop = stop_event
        self._clock = clock
        self.state = RunState.PENDING
        self.record: SyncRunRecord | None = None

    def _log_context(self, record: SyncRunRecord) -> dict:
        return run_context(self.user_id, self.kind.value, self.mode.value, record.id)

    def _stop_requested(self) -> bool:
        return self._stop is not None and self._stop.is_set()

    async def execute(self) -> SyncRunRecord:
        """
        Run to a terminal state and return the record.
        On failure the record is marked Failed and the error is re-raised.
        """
        if self.state != RunState.PENDING:
            raise RuntimeError(f"SyncRun already {self.state.value}")

        record = await self._runs.start(self.user_id, self.kind.value, self.mode)
        self.record = record
        self.state = RunState.RUNNING
        started_at = self._clock()
        logger.info(
            "Sync run %d started: user=%d source=%s mode=%s",
            record.id, self.user_id, self.kind.value, self.mode.value,
            extra=self._log_context(record),
        )

        try:
            fetcher = await self._fetcher_factory()
            last_synced = await self._users.get_cursor(self.user_id, self.kind.value)
            window = compute_window(self.kind, self.mode, last_synced, started_at)

            async for page in fetcher.pages(window):
                async for batch in self._executor.iter_chunks(page, fetcher.get_detail):
                    counts = await self._upserter.upsert_many(self.user_id, batch.succeeded)
                    record.items_processed += len(batch.refs)
                    record.items_added += counts.added
                    record.items_updated += counts.updated
                    record.items_failed += batch.failed_count + counts.failed
                    await self._runs.update_progress(record)
                    if self._stop_requested():
                        raise SyncCancelledError(
                            f"Sync run {record.id} stopped after {record.items_processed} items"
                        )
        except BaseException as e:
            self.state = RunState.FAILED
            error = str(e) or type(e).__name__
            await self._runs.finish(record, RunStatus.FAILED, error=error)
            logger.error(
                "Sync run %d failed: user=%d source=%s: %s",
                record.id, self.user_id, self.kind.value, error,
                extra=self._log_context(record),
            )
            raise

        if record.items_failed == 0:
            await self._users.set_cursor(self.user_id, self.kind.value, started_at)
        else:
            logger.warning(
                "Sync run %d: %d item(s) failed, cursor for %s left unchanged",
                record.id, record.items_failed, self.kind.value,
            )

        await self._runs.finish(record, RunStatus.SUCCESS)
        self.state = RunState.SUCCESS
        logger.info(
            "Sync run %d succeeded: processed=%d added=%d updated=%d failed=%d",
            record.id, record.items_processed, record.items_added,
            record.items_updated, record.items_failed,
            extra=self._log_context(record),
        )
        return record
