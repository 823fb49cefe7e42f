"""
Google Calendar API client.
Thin async wrapper around the synchronous google-api-python-client.
"""

import asyncio
import logging
from datetime import datetime, timezone

from ..models import CalendarItem, ItemRef
from ..utils.resilience import with_resilience
from .auth import credentials_from_token

logger = logging.getLogger(__name__)


def parse_google_time(value: str | None) -> datetime | None:
    """Parse an RFC 3339 dateTime or a bare YYYY-MM-DD date into aware UTC."""
    if not value:
        return None
    if len(value) == 10:
        return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_event(event: dict) -> CalendarItem:
    """Map a Calendar v3 event resource onto a cache item."""
    start = event.get("start", {})
    end = event.get("end", {})
    attendees = [a.get("email", "") for a in event.get("attendees", []) if a.get("email")]
    return CalendarItem(
        external_id=event["id"],
        summary=event.get("summary"),
        description=event.get("description"),
        location=event.get("location"),
        start_time=parse_google_time(start.get("dateTime") or start.get("date")),
        end_time=parse_google_time(end.get("dateTime") or end.get("date")),
        is_all_day="date" in start and "dateTime" not in start,
        attendees=", ".join(attendees) or None,
        organizer=event.get("organizer", {}).get("email"),
        status=event.get("status"),
        updated_remote_at=parse_google_time(event.get("updated")),
    )


class CalendarClient:
    """Wraps Google Calendar v3 API calls for one user's bearer token."""

    def __init__(self, access_token: str | None, timezone: str = "UTC") -> None:
        self._credentials = credentials_from_token(access_token)
        self._timezone = timezone
        self._svc = None

    def _service(self):
        if self._svc is None:
            from googleapiclient.discovery import build  # type: ignore[import]
            self._svc = build(
                "calendar", "v3", credentials=self._credentials, cache_discovery=False
            )
        return self._svc

    async def list_page(
        self,
        time_min: datetime,
        time_max: datetime,
        page_token: str | None = None,
        max_results: int = 250,
    ) -> tuple[list[ItemRef], str | None]:
        """
        One page of expanded (single) events in [time_min, time_max].
        Listing returns whole event resources, so each ref carries its event.
        """
        def _sync():
            params: dict = {
                "calendarId": "primary",
                "timeMin": time_min.isoformat(),
                "timeMax": time_max.isoformat(),
                "maxResults": max_results,
                "singleEvents": True,
                "orderBy": "startTime",
            }
            if page_token:
                params["pageToken"] = page_token
            return self._service().events().list(**params).execute()

        resp = await with_resilience("calendar", lambda: asyncio.to_thread(_sync))
        refs = [ItemRef(external_id=e["id"], raw=e) for e in resp.get("items", [])]
        return refs, resp.get("nextPageToken") or None

    async def get_detail(self, event_id: str) -> CalendarItem:
        def _sync():
            return self._service().events().get(calendarId="primary", eventId=event_id).execute()

        event = await with_resilience("calendar", lambda: asyncio.to_thread(_sync))
        return parse_event(event)

    async def insert(
        self,
        summary: str,
        start: datetime,
        end: datetime,
        description: str | None = None,
        location: str | None = None,
        attendees: list[str] | None = None,
    ) -> dict:
        """Create an event on the primary calendar. Returns the created event."""
        tz = self._timezone

        def _sync():
            body: dict = {
                "summary": summary,
                "start": {"dateTime": start.isoformat(), "timeZone": tz},
                "end": {"dateTime": end.isoformat(), "timeZone": tz},
            }
            if description:
                body["description"] = description
            if location:
                body["location"] = location
            if attendees:
                body["attendees"] = [{"email": a} for a in attendees]
            return self._service().events().insert(
                calendarId="primary", body=body, sendUpdates="all" if attendees else "none"
            ).execute()

        # Insert is not idempotent: a retried 5xx could create a duplicate
        return await with_resilience("calendar", lambda: asyncio.to_thread(_sync), max_retries=1)
