"""
Time windows for a sync run, derived from the source's cursor.

Incremental runs start a little before the last successful sync (the
overlap re-scans items that landed late or across clock skew). Full runs
use a wide fixed window. Calendar also gets an upper bound because its
listing is ranged rather than filtered by modification time.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from ..config import settings
from ..models import SourceKind, SyncMode


@dataclass(frozen=True)
class SyncWindow:
    since: datetime | None
    until: datetime | None = None


def overlap_for(kind: SourceKind) -> timedelta:
    if kind == SourceKind.MAIL:
        return timedelta(minutes=settings.mail_overlap_minutes)
    if kind == SourceKind.CALENDAR:
        return timedelta(days=settings.calendar_overlap_days)
    return timedelta(minutes=settings.crm_overlap_minutes)


def compute_window(
    kind: SourceKind,
    mode: SyncMode,
    last_synced_at: datetime | None,
    now: datetime,
) -> SyncWindow:
    """
    Lower (and for calendar, upper) fetch bound for one run.

    For incremental mode with a cursor T the lower bound is T minus the
    source's overlap, so it is always <= T.
    """
    lookback = timedelta(days=settings.full_sync_lookback_days)
    incremental = mode == SyncMode.INCREMENTAL and last_synced_at is not None

    if kind == SourceKind.CALENDAR:
        if mode == SyncMode.FULL:
            return SyncWindow(
                since=now - lookback,
                until=now + timedelta(days=settings.calendar_full_lookahead_days),
            )
        since = (
            last_synced_at - overlap_for(kind)
            if incremental
            else now - timedelta(days=settings.calendar_first_sync_lookback_days)
        )
        return SyncWindow(since=since, until=now + timedelta(days=settings.calendar_lookahead_days))

    if kind == SourceKind.MAIL:
        if incremental:
            return SyncWindow(since=last_synced_at - overlap_for(kind))
        return SyncWindow(since=now - lookback)

    # CRM: no cursor or full mode lists everything
    if incremental:
        return SyncWindow(since=last_synced_at - overlap_for(kind))
    return SyncWindow(since=None)
