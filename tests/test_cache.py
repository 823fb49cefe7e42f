"""
Tests for the cache stores: items, users and cursors, sync runs,
standing instructions, agent activities and chat history.
"""

from datetime import datetime, timedelta, timezone

import pytest

from concierge.cache import UpsertOutcome
from concierge.cache.database import from_db_time, to_db_time
from concierge.exceptions import StorageError
from concierge.models import (
    AgentActivity,
    CalendarItem,
    ContactItem,
    DealItem,
    MailItem,
    RunStatus,
    SourceKind,
    SyncMode,
    TriggerType,
)

T0 = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


class TestTimeFormat:

    def test_round_trip_is_utc_second_precision(self):
        value = to_db_time(datetime(2025, 3, 10, 9, 0, 5, 123456, tzinfo=timezone.utc))
        assert value == "2025-03-10 09:00:05"
        assert from_db_time(value) == datetime(2025, 3, 10, 9, 0, 5, tzinfo=timezone.utc)

    def test_offset_times_are_normalised(self):
        aware = datetime(2025, 3, 10, 11, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_db_time(aware) == "2025-03-10 09:00:00"

    def test_naive_treated_as_utc(self):
        assert to_db_time(datetime(2025, 3, 10, 9, 0)) == "2025-03-10 09:00:00"

    def test_none_passes_through(self):
        assert to_db_time(None) is None
        assert from_db_time(None) is None


class TestItemUpsert:

    @pytest.mark.asyncio
    async def test_insert_then_update_keeps_single_row(self, cache, user_id):
        item = MailItem(external_id="m1", subject="Hello", received_at=T0)
        assert await cache.upsert_item(user_id, item) == UpsertOutcome.INSERTED
        assert await cache.upsert_item(user_id, item) == UpsertOutcome.UPDATED
        assert await cache.count(user_id, SourceKind.MAIL) == 1

    @pytest.mark.asyncio
    async def test_update_overwrites_mutable_fields(self, cache, user_id):
        await cache.upsert_item(user_id, MailItem(external_id="m1", subject="Old"))
        await cache.upsert_item(user_id, MailItem(external_id="m1", subject="New", is_read=True))
        row = await cache.get_by_external_id(user_id, SourceKind.MAIL, "m1")
        assert row["subject"] == "New"
        assert row["is_read"] == 1

    @pytest.mark.asyncio
    async def test_update_preserves_identity_and_created_at(self, cache, user_id):
        await cache.upsert_item(user_id, MailItem(external_id="m1", subject="a"))
        first = await cache.get_by_external_id(user_id, SourceKind.MAIL, "m1")
        await cache.upsert_item(user_id, MailItem(external_id="m1", subject="b"))
        second = await cache.get_by_external_id(user_id, SourceKind.MAIL, "m1")
        assert second["id"] == first["id"]
        assert second["created_at"] == first["created_at"]
        assert second["user_id"] == user_id

    @pytest.mark.asyncio
    async def test_body_kept_when_refetch_has_none(self, cache, user_id):
        await cache.upsert_item(user_id, MailItem(external_id="m1", body="Full body text"))
        await cache.upsert_item(user_id, MailItem(external_id="m1", snippet="short", body=None))
        row = await cache.get_by_external_id(user_id, SourceKind.MAIL, "m1")
        assert row["body"] == "Full body text"
        assert row["snippet"] == "short"

    @pytest.mark.asyncio
    async def test_other_optionals_are_cleared_by_none(self, cache, user_id):
        await cache.upsert_item(user_id, ContactItem(external_id="c1", phone="555"))
        await cache.upsert_item(user_id, ContactItem(external_id="c1", phone=None))
        row = await cache.get_by_external_id(user_id, SourceKind.CRM_CONTACTS, "c1")
        assert row["phone"] is None

    @pytest.mark.asyncio
    async def test_same_external_id_separate_per_user(self, cache, users, user_id):
        await users.upsert_user(2, google_access_token="other")
        await cache.upsert_item(user_id, MailItem(external_id="m1", subject="mine"))
        await cache.upsert_item(2, MailItem(external_id="m1", subject="theirs"))
        assert (await cache.get_by_external_id(user_id, SourceKind.MAIL, "m1"))["subject"] == "mine"
        assert (await cache.get_by_external_id(2, SourceKind.MAIL, "m1"))["subject"] == "theirs"

    @pytest.mark.asyncio
    async def test_iter_rows_pages_through_everything(self, cache, user_id):
        for i in range(5):
            await cache.upsert_item(user_id, MailItem(external_id=f"m{i}"))
        rows = [r async for r in cache.iter_rows(user_id, SourceKind.MAIL, batch_size=2)]
        assert [r["external_id"] for r in rows] == ["m0", "m1", "m2", "m3", "m4"]


class TestItemQueries:

    @pytest.mark.asyncio
    async def test_keyword_search_ranks_by_term_hits(self, cache, user_id):
        await cache.upsert_item(user_id, MailItem(
            external_id="m1", subject="Quarterly review", received_at=T0,
        ))
        await cache.upsert_item(user_id, MailItem(
            external_id="m2", subject="Quarterly review with Acme", received_at=T0 - timedelta(days=1),
        ))
        results = await cache.keyword_search(user_id, ["quarterly", "acme"], limit=5)
        assert [r["external_id"] for _, r in results] == ["m2", "m1"]

    @pytest.mark.asyncio
    async def test_keyword_search_across_kinds(self, cache, user_id):
        await cache.upsert_item(user_id, ContactItem(external_id="c1", company="Acme"))
        await cache.upsert_item(user_id, DealItem(external_id="d1", deal_name="Acme renewal"))
        kinds = {kind for kind, _ in await cache.keyword_search(user_id, ["acme"], limit=5)}
        assert kinds == {SourceKind.CRM_CONTACTS, SourceKind.CRM_DEALS}

    @pytest.mark.asyncio
    async def test_keyword_wildcards_match_literally(self, cache, user_id):
        await cache.upsert_item(user_id, MailItem(external_id="m1", subject="q3_budget.xlsx"))
        await cache.upsert_item(user_id, MailItem(external_id="m2", subject="q3-budget draft"))
        await cache.upsert_item(user_id, MailItem(external_id="m3", subject="q3xbudget"))
        await cache.upsert_item(user_id, MailItem(external_id="m4", subject="100% done"))

        underscore = await cache.keyword_search(user_id, ["q3_budget"], limit=5)
        percent = await cache.keyword_search(user_id, ["0%"], limit=5)

        assert [r["external_id"] for _, r in underscore] == ["m1"]
        assert [r["external_id"] for _, r in percent] == ["m4"]

    @pytest.mark.asyncio
    async def test_find_deal_name_wildcards_match_literally(self, cache, user_id):
        await cache.upsert_item(user_id, DealItem(external_id="d1", deal_name="Acme Renewal"))
        assert await cache.find_deal_by_name(user_id, "acme_renewal") is None
        assert (await cache.find_deal_by_name(user_id, "ACME ren"))["external_id"] == "d1"

    @pytest.mark.asyncio
    async def test_keyword_search_no_terms(self, cache, user_id):
        assert await cache.keyword_search(user_id, [], limit=5) == []

    @pytest.mark.asyncio
    async def test_calendar_between_excludes_cancelled_and_out_of_range(self, cache, user_id):
        await cache.upsert_item(user_id, CalendarItem(
            external_id="e1", summary="Standup", start_time=T0, status="confirmed",
        ))
        await cache.upsert_item(user_id, CalendarItem(
            external_id="e2", summary="Dropped", start_time=T0, status="cancelled",
        ))
        await cache.upsert_item(user_id, CalendarItem(
            external_id="e3", summary="Next week", start_time=T0 + timedelta(days=8),
        ))
        rows = await cache.calendar_between(user_id, T0 - timedelta(hours=1), T0 + timedelta(days=7))
        assert [r["external_id"] for r in rows] == ["e1"]

    @pytest.mark.asyncio
    async def test_recent_items_uses_first_cached_time(self, cache, user_id):
        await cache.upsert_item(user_id, MailItem(external_id="m1"))
        since = datetime.now(timezone.utc) - timedelta(minutes=5)
        rows = await cache.recent_items(user_id, SourceKind.MAIL, since, limit=10)
        assert [r["external_id"] for r in rows] == ["m1"]
        later = datetime.now(timezone.utc) + timedelta(minutes=5)
        assert await cache.recent_items(user_id, SourceKind.MAIL, later, limit=10) == []

    @pytest.mark.asyncio
    async def test_find_deal_prefers_exact_match(self, cache, user_id):
        await cache.upsert_item(user_id, DealItem(
            external_id="d1", deal_name="Acme Expansion 2025", last_modified=T0,
        ))
        await cache.upsert_item(user_id, DealItem(
            external_id="d2", deal_name="acme expansion", last_modified=T0 - timedelta(days=3),
        ))
        deal = await cache.find_deal_by_name(user_id, "Acme Expansion")
        assert deal["external_id"] == "d2"

    @pytest.mark.asyncio
    async def test_find_deal_substring(self, cache, user_id):
        await cache.upsert_item(user_id, DealItem(external_id="d1", deal_name="Acme Expansion"))
        assert (await cache.find_deal_by_name(user_id, "expans"))["external_id"] == "d1"
        assert await cache.find_deal_by_name(user_id, "Globex") is None

    @pytest.mark.asyncio
    async def test_find_contact_by_email_case_insensitive(self, cache, user_id):
        await cache.upsert_item(user_id, ContactItem(external_id="c1", email="Jane@Acme.com"))
        contact = await cache.find_contact_by_email(user_id, " jane@acme.com ")
        assert contact["external_id"] == "c1"


class TestUsersAndCursors:

    @pytest.mark.asyncio
    async def test_user_round_trip(self, users, user_id):
        user = await users.get(user_id)
        assert user.email == "advisor@example.com"
        assert user.has_google and user.has_hubspot

    @pytest.mark.asyncio
    async def test_upsert_keeps_email_when_omitted(self, users, user_id):
        await users.upsert_user(user_id, google_access_token="new", hubspot_access_token=None)
        user = await users.get(user_id)
        assert user.email == "advisor@example.com"
        assert user.google_access_token == "new"
        assert not user.has_hubspot

    @pytest.mark.asyncio
    async def test_sync_eligible_requires_google(self, users, user_id):
        await users.upsert_user(2, hubspot_access_token="only-crm")
        await users.upsert_user(3, google_access_token="g3")
        assert await users.list_sync_eligible() == [1, 3]

    @pytest.mark.asyncio
    async def test_cursor_absent_then_set(self, users, user_id):
        assert await users.get_cursor(user_id, "mail") is None
        await users.set_cursor(user_id, "mail", T0)
        await users.set_cursor(user_id, "mail", T0 + timedelta(hours=1))
        assert await users.get_cursor(user_id, "mail") == T0 + timedelta(hours=1)
        assert await users.get_cursor(user_id, "calendar") is None


class TestTransaction:

    @pytest.mark.asyncio
    async def test_error_in_block_rolls_back_and_propagates(self, db, users):
        with pytest.raises(ValueError):
            async with db.transaction() as conn:
                await conn.execute("INSERT INTO users (user_id) VALUES (?)", (9,))
                raise ValueError("abort")

        assert await users.get(9) is None

    @pytest.mark.asyncio
    async def test_sqlite_error_becomes_storage_error(self, db, users, user_id):
        with pytest.raises(StorageError):
            async with db.transaction() as conn:
                await conn.execute("INSERT INTO users (user_id) VALUES (?)", (9,))
                await conn.execute("INSERT INTO users (user_id) VALUES (?)", (user_id,))

        assert await users.get(9) is None


class TestSyncRuns:

    @pytest.mark.asyncio
    async def test_start_creates_running_record(self, runs, user_id):
        record = await runs.start(user_id, "mail", SyncMode.INCREMENTAL)
        stored = await runs.get(record.id)
        assert stored.status == RunStatus.RUNNING
        assert stored.mode == SyncMode.INCREMENTAL
        assert stored.completed_at is None

    @pytest.mark.asyncio
    async def test_finish_persists_counters(self, runs, user_id):
        record = await runs.start(user_id, "mail", SyncMode.FULL)
        record.items_processed, record.items_added, record.items_failed = 3, 2, 1
        await runs.finish(record, RunStatus.SUCCESS)
        stored = await runs.get(record.id)
        assert stored.status == RunStatus.SUCCESS
        assert (stored.items_processed, stored.items_added, stored.items_failed) == (3, 2, 1)
        assert stored.completed_at is not None

    @pytest.mark.asyncio
    async def test_terminal_record_cannot_change(self, runs, user_id):
        record = await runs.start(user_id, "mail", SyncMode.FULL)
        await runs.finish(record, RunStatus.FAILED, "boom")
        with pytest.raises(StorageError):
            await runs.finish(record, RunStatus.SUCCESS)
        assert (await runs.get(record.id)).status == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_finish_rejects_running(self, runs, user_id):
        record = await runs.start(user_id, "mail", SyncMode.FULL)
        with pytest.raises(ValueError):
            await runs.finish(record, RunStatus.RUNNING)

    @pytest.mark.asyncio
    async def test_progress_ignored_after_finish(self, runs, user_id):
        record = await runs.start(user_id, "mail", SyncMode.FULL)
        await runs.finish(record, RunStatus.SUCCESS)
        record.items_processed = 99
        await runs.update_progress(record)
        assert (await runs.get(record.id)).items_processed == 0

    @pytest.mark.asyncio
    async def test_mark_interrupted(self, runs, user_id):
        stale = await runs.start(user_id, "mail", SyncMode.FULL)
        done = await runs.start(user_id, "calendar", SyncMode.FULL)
        await runs.finish(done, RunStatus.SUCCESS)

        assert await runs.mark_interrupted() == 1
        stored = await runs.get(stale.id)
        assert stored.status == RunStatus.FAILED
        assert stored.error_message == "Interrupted by restart"
        assert (await runs.get(done.id)).status == RunStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_list_for_user_newest_first(self, runs, user_id):
        first = await runs.start(user_id, "mail", SyncMode.FULL)
        second = await runs.start(user_id, "calendar", SyncMode.FULL)
        assert [r.id for r in await runs.list_for_user(user_id)] == [second.id, first.id]


class TestInstructions:

    @pytest.mark.asyncio
    async def test_list_active_by_priority(self, instructions, user_id):
        low = await instructions.add(user_id, "Low", priority=1)
        high = await instructions.add(user_id, "High", TriggerType.MAIL, priority=5)
        off = await instructions.add(user_id, "Off")
        await instructions.update(user_id, off, is_active=False)

        active = await instructions.list_active(user_id)
        assert [i.id for i in active] == [high, low]
        assert active[0].trigger_type == TriggerType.MAIL

    @pytest.mark.asyncio
    async def test_update_is_scoped_to_owner(self, instructions, users, user_id):
        await users.upsert_user(2)
        iid = await instructions.add(user_id, "Mine")
        assert not await instructions.update(2, iid, instruction="Hijack")
        assert not await instructions.delete(2, iid)
        assert (await instructions.get(user_id, iid)).instruction == "Mine"

    @pytest.mark.asyncio
    async def test_users_with_active_instructions(self, instructions, users, user_id):
        await users.upsert_user(2)
        await instructions.add(user_id, "A")
        iid = await instructions.add(2, "B")
        await instructions.update(2, iid, is_active=False)
        assert await instructions.users_with_active_instructions() == [user_id]

    @pytest.mark.asyncio
    async def test_record_execution(self, instructions, user_id):
        iid = await instructions.add(user_id, "A")
        await instructions.record_execution(iid)
        await instructions.record_execution(iid)
        instruction = await instructions.get(user_id, iid)
        assert instruction.execution_count == 2
        assert instruction.last_executed_at is not None


class TestActivities:

    @pytest.mark.asyncio
    async def test_has_acted_per_instruction_and_item(self, activities, instructions, user_id):
        iid = await instructions.add(user_id, "Reply to clients")
        await activities.add(AgentActivity(
            user_id=user_id, activity_type="EmailSent", description="Replied",
            triggered_by_external_id="m1", instruction_id=iid,
        ))
        assert await activities.has_acted(iid, "m1")
        assert not await activities.has_acted(iid, "m2")
        assert not await activities.has_acted(iid + 1, "m1")

    @pytest.mark.asyncio
    async def test_unread_and_mark_read(self, activities, user_id):
        aid = await activities.add(AgentActivity(
            user_id=user_id, activity_type="Error", description="x", status="Failed",
        ))
        assert [a.id for a in await activities.list_for_user(user_id, unread_only=True)] == [aid]
        assert await activities.mark_read(user_id, aid)
        assert await activities.list_for_user(user_id, unread_only=True) == []


class TestChat:

    @pytest.mark.asyncio
    async def test_recent_returns_last_messages_oldest_first(self, chat_store, user_id):
        for i in range(5):
            await chat_store.add_message(user_id, "user" if i % 2 == 0 else "assistant", f"msg{i}")
        recent = await chat_store.recent(user_id, limit=3)
        assert [m.content for m in recent] == ["msg2", "msg3", "msg4"]

    @pytest.mark.asyncio
    async def test_clear(self, chat_store, user_id):
        await chat_store.add_message(user_id, "user", "hi")
        assert await chat_store.clear(user_id) == 1
        assert await chat_store.recent(user_id, limit=10) == []
