"""
Retriever — ranked context items for a free-text query.

Order of preference:
  1. Date-scoped calendar questions ("meetings tomorrow") are answered from
     the cache by time window, since similarity search has no notion of dates.
  2. Semantic search over the user's vector points.
  3. Keyword overlap over the cache when the vector path is disabled, fails
     or finds nothing.
"""

import logging
import re
from datetime import datetime, time, timedelta
from typing import Callable
from zoneinfo import ZoneInfo

from ..cache.items import CacheStore
from ..config import settings
from ..models import ContextItem, SourceKind
from .embeddings import Embedder
from .index import VectorIndex
from .text import POINT_TYPES, canonical_text

logger = logging.getLogger(__name__)

STOPWORDS = frozenset({
    "who", "what", "when", "where", "why", "how", "is", "are", "was", "were",
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "about", "show", "find", "get", "tell",
    "me", "my", "i", "you", "email", "emails", "emailed", "sent", "received",
    "do", "does", "did", "have", "has", "any", "can", "could", "will", "there",
    "this", "that", "please", "give", "list", "all",
})

# Queries asking for breadth get the larger candidate count
BROAD_MARKERS = frozenset({
    "summarize", "summarise", "summary", "overview", "recap", "everything",
    "all", "list", "overall", "trends",
})

CALENDAR_MARKERS = frozenset({
    "meeting", "meetings", "calendar", "event", "events", "schedule",
    "scheduled", "appointment", "appointments", "call", "calls", "busy", "free",
})

_TOKEN_RE = re.compile(r"[a-z0-9@._'\-]+")


def tokenize(query: str) -> list[str]:
    return [t.strip(".'-") for t in _TOKEN_RE.findall(query.lower())]


def extract_keywords(query: str) -> list[str]:
    """Meaningful query words: longer than two characters and not stopwords."""
    seen: list[str] = []
    for word in tokenize(query):
        if len(word) > 2 and word not in STOPWORDS and word not in seen:
            seen.append(word)
    return seen


def _default_clock() -> datetime:
    return datetime.now(ZoneInfo(settings.scheduler_timezone))


class Retriever:
    def __init__(
        self,
        cache: CacheStore,
        index: VectorIndex,
        embedder: Embedder,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._cache = cache
        self._index = index
        self._embedder = embedder
        self._clock = clock or _default_clock

    def choose_k(self, query: str) -> int:
        words = set(tokenize(query))
        if words & BROAD_MARKERS:
            return settings.retrieval_broad_k
        return settings.retrieval_default_k

    def calendar_window(self, query: str) -> tuple[datetime, datetime] | None:
        """[start, end) for a date-scoped calendar question, else None."""
        text = query.lower()
        words = set(tokenize(query))
        if not words & CALENDAR_MARKERS:
            return None

        now = self._clock()
        midnight = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
        if "tomorrow" in words:
            return midnight + timedelta(days=1), midnight + timedelta(days=2)
        if "today" in words or "tonight" in words:
            return midnight, midnight + timedelta(days=1)
        if "yesterday" in words:
            return midnight - timedelta(days=1), midnight
        week_start = midnight - timedelta(days=now.weekday())
        if "next week" in text:
            return week_start + timedelta(days=7), week_start + timedelta(days=14)
        if "this week" in text:
            return week_start, week_start + timedelta(days=7)
        return None

    async def retrieve(self, user_id: int, query: str, k: int | None = None) -> list[ContextItem]:
        k = k or self.choose_k(query)

        window = self.calendar_window(query)
        if window is not None:
            rows = await self._cache.calendar_between(user_id, window[0], window[1], limit=k * 2)
            logger.debug("Calendar window %s..%s matched %d event(s)", window[0], window[1], len(rows))
            return [
                ContextItem(
                    item_type=POINT_TYPES[SourceKind.CALENDAR],
                    item_id=row["id"],
                    external_id=row["external_id"],
                    content=canonical_text(SourceKind.CALENDAR, row),
                    score=1.0,
                )
                for row in rows
            ]

        try:
            items = await self.semantic_search(user_id, query, k)
        except Exception as e:
            logger.warning("Semantic search unavailable, using keyword search: %s", e)
            return await self.keyword_search(user_id, query)
        if not items:
            return await self.keyword_search(user_id, query)
        return items

    async def semantic_search(self, user_id: int, query: str, k: int) -> list[ContextItem]:
        """Raises VectorUnavailableError when the index is disabled or not loaded."""
        self._index.require()
        vector = await self._embedder.embed(query)
        hits = await self._index.search(vector, top_k=k, user_id=user_id)
        return [
            ContextItem(
                item_type=h.payload["type"],
                item_id=h.payload["source_item_id"],
                content=h.payload["content"],
                score=h.score,
            )
            for h in hits
        ]

    async def keyword_search(
        self, user_id: int, query: str, limit: int | None = None
    ) -> list[ContextItem]:
        limit = limit or settings.keyword_fallback_limit
        keywords = extract_keywords(query)
        if not keywords:
            return []
        matches = await self._cache.keyword_search(user_id, keywords, limit)
        items = []
        for kind, row in matches:
            content = canonical_text(kind, row)
            lowered = content.lower()
            hits = sum(1 for k in keywords if k in lowered)
            items.append(
                ContextItem(
                    item_type=POINT_TYPES[kind],
                    item_id=row["id"],
                    external_id=row["external_id"],
                    content=content,
                    score=hits / len(keywords),
                )
            )
        return items
