"""Local cache: SQLite schema and the per-concern stores built on it."""

from .activities import ActivityStore
from .chat import ChatStore
from .database import DatabaseManager
from .instructions import InstructionStore
from .items import CacheStore, UpsertOutcome
from .runs import SyncRunStore
from .users import UserStore

__all__ = [
    "ActivityStore",
    "CacheStore",
    "ChatStore",
    "DatabaseManager",
    "InstructionStore",
    "SyncRunStore",
    "UpsertOutcome",
    "UserStore",
]
