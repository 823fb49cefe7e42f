"""
PagedFetcher — walks a remote listing endpoint page by page.

One subclass per source kind. Each knows how to translate a SyncWindow into
the source's own filter, how to fetch one listing page, and how to turn an
ItemRef into a full cache item. Calendar and CRM listings already return
whole records, so their detail step parses the ref's payload without a
second remote call.

Iteration is not resumable: a transport error mid-walk propagates and fails
the run. Restarting re-walks from the first page, which the idempotent
upsert makes safe.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator

from ..config import settings
from ..crm.hubspot import OBJECT_TYPES, HubSpotClient, parse_object
from ..google.calendar import CalendarClient, parse_event
from ..google.gmail import GmailClient, after_query
from ..models import CacheItem, ItemRef, SourceKind
from .cursor import SyncWindow

logger = logging.getLogger(__name__)


class PagedFetcher(ABC):
    kind: SourceKind

    def __init__(self, page_size: int | None = None, page_delay: float | None = None) -> None:
        self._page_size = page_size or settings.list_page_size
        self._page_delay = settings.page_delay_seconds if page_delay is None else page_delay

    @abstractmethod
    async def list_page(
        self, window: SyncWindow, page_token: str | None
    ) -> tuple[list[ItemRef], str | None]:
        """One listing page and the token of the next (None when exhausted)."""

    @abstractmethod
    async def get_detail(self, ref: ItemRef) -> CacheItem:
        """The full cache item for one ref."""

    async def pages(self, window: SyncWindow) -> AsyncIterator[list[ItemRef]]:
        """Yield listing pages until the remote stops returning a next token."""
        page_token: str | None = None
        page_no = 0
        while True:
            refs, page_token = await self.list_page(window, page_token)
            page_no += 1
            logger.debug(
                "%s page %d: %d refs (more=%s)", self.kind.value, page_no, len(refs), bool(page_token)
            )
            if refs:
                yield refs
            if not page_token:
                return
            if self._page_delay:
                await asyncio.sleep(self._page_delay)

    async def list(self, window: SyncWindow) -> AsyncIterator[ItemRef]:
        async for page in self.pages(window):
            for ref in page:
                yield ref


class MailFetcher(PagedFetcher):
    kind = SourceKind.MAIL

    def __init__(self, gmail: GmailClient, **kwargs) -> None:
        super().__init__(**kwargs)
        self._gmail = gmail

    async def list_page(self, window, page_token):
        query = after_query(window.since) if window.since else ""
        return await self._gmail.list_page(query, page_token, max_results=self._page_size)

    async def get_detail(self, ref: ItemRef) -> CacheItem:
        return await self._gmail.get_detail(ref.external_id)


class CalendarFetcher(PagedFetcher):
    kind = SourceKind.CALENDAR

    def __init__(self, calendar: CalendarClient, **kwargs) -> None:
        kwargs.setdefault("page_size", 250)
        super().__init__(**kwargs)
        self._calendar = calendar

    async def list_page(self, window, page_token):
        return await self._calendar.list_page(
            window.since, window.until, page_token, max_results=self._page_size
        )

    async def get_detail(self, ref: ItemRef) -> CacheItem:
        if ref.raw is not None:
            return parse_event(ref.raw)
        return await self._calendar.get_detail(ref.external_id)


class CrmFetcher(PagedFetcher):
    def __init__(self, hubspot: HubSpotClient, kind: SourceKind, **kwargs) -> None:
        if not kind.is_crm:
            raise ValueError(f"{kind} is not a CRM source")
        super().__init__(**kwargs)
        self._hubspot = hubspot
        self.kind = kind
        self._object_type = OBJECT_TYPES[kind]

    async def list_page(self, window, page_token):
        return await self._hubspot.list_page(
            self._object_type, since=window.since, after=page_token, limit=self._page_size
        )

    async def get_detail(self, ref: ItemRef) -> CacheItem:
        raw = ref.raw
        if raw is None:
            raw = await self._hubspot.get_object(self._object_type, ref.external_id)
        return parse_object(self.kind, raw)
