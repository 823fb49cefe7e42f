"""Sync engine: page through remote sources and upsert into the local cache."""

from .cursor import SyncWindow, compute_window
from .engine import SyncEngine
from .executor import BoundedFetchExecutor, FetchBatch
from .fetcher import CalendarFetcher, CrmFetcher, MailFetcher, PagedFetcher
from .run import RunState, SyncRun
from .upsert import CacheUpserter, UpsertCounts

__all__ = [
    "BoundedFetchExecutor",
    "CacheUpserter",
    "CalendarFetcher",
    "CrmFetcher",
    "FetchBatch",
    "MailFetcher",
    "PagedFetcher",
    "RunState",
    "SyncEngine",
    "SyncRun",
    "SyncWindow",
    "UpsertCounts",
    "compute_window",
]
