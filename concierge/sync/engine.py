"""
SyncEngine — builds and runs SyncRuns with (user, source) mutual exclusion.

An incremental and a full run for the same user and source never overlap:
the second waits for the first to release the lock, then runs against the
freshly written cache and cursor.
"""

import asyncio
import logging
from collections import defaultdict

from ..cache.items import CacheStore
from ..cache.runs import SyncRunStore
from ..cache.users import UserStore
from ..clients import ClientFactory
from ..models import SourceKind, SyncMode, SyncRunRecord
from .executor import BoundedFetchExecutor
from .fetcher import CalendarFetcher, CrmFetcher, MailFetcher, PagedFetcher
from .run import SyncRun
from .upsert import CacheUpserter

logger = logging.getLogger(__name__)


class SyncEngine:
    def __init__(
        self,
        *,
        cache: CacheStore,
        run_store: SyncRunStore,
        user_store: UserStore,
        clients: ClientFactory,
        executor: BoundedFetchExecutor | None = None,
        upserter: CacheUpserter | None = None,
    ) -> None:
        self._runs = run_store
        self._users = user_store
        self._clients = clients
        self._executor = executor or BoundedFetchExecutor()
        self._upserter = upserter or CacheUpserter(cache)
        self._locks: defaultdict[tuple[int, SourceKind], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def build_fetcher(self, user_id: int, kind: SourceKind) -> PagedFetcher:
        if kind == SourceKind.MAIL:
            return MailFetcher(await self._clients.gmail(user_id))
        if kind == SourceKind.CALENDAR:
            return CalendarFetcher(await self._clients.calendar(user_id))
        return CrmFetcher(await self._clients.hubspot(user_id), kind)

    def is_running(self, user_id: int, kind: SourceKind) -> bool:
        lock = self._locks.get((user_id, kind))
        return lock is not None and lock.locked()

    async def run(
        self,
        user_id: int,
        kind: SourceKind,
        mode: SyncMode,
        stop_event: asyncio.Event | None = None,
    ) -> SyncRunRecord:
        """Run one sync for (user, source). Raises if the run ends Failed."""
        lock = self._locks[(user_id, kind)]
        if lock.locked():
            logger.info(
                "Sync for user %d source %s already running — waiting", user_id, kind.value
            )
        async with lock:
            run = SyncRun(
                user_id=user_id,
                kind=kind,
                mode=mode,
                fetcher_factory=lambda: self.build_fetcher(user_id, kind),
                executor=self._executor,
                upserter=self._upserter,
                run_store=self._runs,
                user_store=self._users,
                stop_event=stop_event,
            )
            return await run.execute()
