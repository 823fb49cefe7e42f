"""
Tests for the sync building blocks: fetch windows, the bounded detail-fetch
executor and the per-item upserter.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from concierge.cache import UpsertOutcome
from concierge.exceptions import StorageError
from concierge.models import ItemRef, MailItem, SourceKind, SyncMode
from concierge.sync.cursor import compute_window, overlap_for
from concierge.sync.executor import BoundedFetchExecutor
from concierge.sync.upsert import CacheUpserter

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestComputeWindow:

    @pytest.mark.parametrize("kind", list(SourceKind))
    def test_incremental_lower_bound_never_after_cursor(self, kind):
        cursor = NOW - timedelta(hours=3)
        window = compute_window(kind, SyncMode.INCREMENTAL, cursor, NOW)
        assert window.since <= cursor
        assert window.since == cursor - overlap_for(kind)

    def test_mail_without_cursor_uses_lookback(self):
        window = compute_window(SourceKind.MAIL, SyncMode.INCREMENTAL, None, NOW)
        assert window.since == NOW - timedelta(days=365)
        assert window.until is None

    def test_full_mail_ignores_cursor(self):
        window = compute_window(SourceKind.MAIL, SyncMode.FULL, NOW - timedelta(hours=1), NOW)
        assert window.since == NOW - timedelta(days=365)

    def test_calendar_has_upper_bound(self):
        window = compute_window(SourceKind.CALENDAR, SyncMode.INCREMENTAL, None, NOW)
        assert window.since == NOW - timedelta(days=180)
        assert window.until == NOW + timedelta(days=365)

    def test_full_calendar_window(self):
        window = compute_window(SourceKind.CALENDAR, SyncMode.FULL, None, NOW)
        assert window.since == NOW - timedelta(days=365)
        assert window.until == NOW + timedelta(days=730)

    def test_crm_full_lists_everything(self):
        window = compute_window(SourceKind.CRM_DEALS, SyncMode.FULL, NOW, NOW)
        assert window.since is None


class TestBoundedFetchExecutor:

    @pytest.mark.asyncio
    async def test_never_exceeds_concurrency(self):
        in_flight = 0
        peak = 0

        async def fetch(ref):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return ref.external_id

        executor = BoundedFetchExecutor(concurrency=3, pacing_seconds=0, timeout=5, chunk_size=50)
        refs = [ItemRef(external_id=str(i)) for i in range(12)]
        batch = await executor.fetch_all(refs, fetch)

        assert peak <= 3
        assert batch.succeeded == [str(i) for i in range(12)]

    @pytest.mark.asyncio
    async def test_failures_and_timeouts_are_counted_not_raised(self):
        async def fetch(ref):
            if ref.external_id == "bad":
                raise RuntimeError("404")
            if ref.external_id == "slow":
                await asyncio.sleep(1)
            return ref.external_id

        executor = BoundedFetchExecutor(concurrency=2, pacing_seconds=0, timeout=0.05, chunk_size=10)
        refs = [ItemRef(external_id=x) for x in ("a", "bad", "slow", "b")]
        batch = await executor.fetch_all(refs, fetch)

        assert batch.succeeded == ["a", "b"]
        assert batch.failed_count == 2

    @pytest.mark.asyncio
    async def test_iter_chunks_splits_refs(self):
        executor = BoundedFetchExecutor(concurrency=2, pacing_seconds=0, timeout=5, chunk_size=2)
        refs = [ItemRef(external_id=str(i)) for i in range(5)]
        fetch = AsyncMock(side_effect=lambda ref: ref.external_id)

        chunks = [b async for b in executor.iter_chunks(refs, fetch)]

        assert [b.succeeded for b in chunks] == [["0", "1"], ["2", "3"], ["4"]]

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            BoundedFetchExecutor(concurrency=1, chunk_size=0)


class TestCacheUpserter:

    @pytest.mark.asyncio
    async def test_upsert_twice_inserts_then_updates(self, cache, user_id):
        upserter = CacheUpserter(cache)
        item = MailItem(external_id="m1", subject="Hi")
        assert await upserter.upsert(user_id, item) == UpsertOutcome.INSERTED
        assert await upserter.upsert(user_id, item) == UpsertOutcome.UPDATED
        assert await cache.count(user_id, SourceKind.MAIL) == 1

    @pytest.mark.asyncio
    async def test_transient_failure_retried_for_that_item(self, monkeypatch):
        monkeypatch.setattr("concierge.sync.upsert._RETRY_BASE_DELAY", 0)
        store = AsyncMock()
        store.upsert_item.side_effect = [StorageError("locked"), UpsertOutcome.INSERTED]
        upserter = CacheUpserter(store, max_attempts=3)

        assert await upserter.upsert(1, MailItem(external_id="m1")) == UpsertOutcome.INSERTED
        assert store.upsert_item.await_count == 2

    @pytest.mark.asyncio
    async def test_upsert_many_counts_persistent_failures(self, monkeypatch):
        monkeypatch.setattr("concierge.sync.upsert._RETRY_BASE_DELAY", 0)

        async def upsert_item(user_id, item):
            if item.external_id == "bad":
                raise StorageError("constraint")
            return UpsertOutcome.UPDATED if item.external_id == "old" else UpsertOutcome.INSERTED

        store = AsyncMock()
        store.upsert_item.side_effect = upsert_item
        upserter = CacheUpserter(store, max_attempts=2)
        items = [MailItem(external_id=x) for x in ("new", "bad", "old")]

        counts = await upserter.upsert_many(1, items)

        assert (counts.added, counts.updated, counts.failed) == (1, 1, 1)
        # Order preserved: "old" written after "bad" gave up
        written = [c.args[1].external_id for c in store.upsert_item.await_args_list]
        assert written == ["new", "bad", "bad", "old"]
