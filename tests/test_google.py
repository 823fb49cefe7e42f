"""
Tests for the Google integration package (Gmail, Calendar).
All Google API calls are mocked — no network access required.
"""

import base64
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from concierge.exceptions import ConfigurationError
from concierge.google.auth import credentials_from_token
from concierge.google.calendar import CalendarClient, parse_event, parse_google_time
from concierge.google.gmail import GmailClient, after_query, parse_message


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def _message(**overrides) -> dict:
    msg = {
        "id": "m1",
        "threadId": "t1",
        "snippet": "Numbers attached",
        "labelIds": ["INBOX", "UNREAD"],
        "internalDate": "1741600800000",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "Subject", "value": "Q3 Budget"},
                {"name": "From", "value": "Finance <finance@acme.com>"},
                {"name": "To", "value": "advisor@example.com"},
            ],
            "parts": [
                {"mimeType": "text/html", "body": {"data": _b64("<p>html</p>")}},
                {"mimeType": "text/plain", "body": {"data": _b64("Plain budget body")}},
            ],
        },
    }
    msg.update(overrides)
    return msg


# ── auth ──────────────────────────────────────────────────────────────────────


def test_missing_token_is_configuration_error():
    with pytest.raises(ConfigurationError):
        credentials_from_token(None)
    with pytest.raises(ConfigurationError):
        credentials_from_token("")


def test_token_wrapped_as_credentials():
    assert credentials_from_token("abc").token == "abc"


# ── gmail parsing ─────────────────────────────────────────────────────────────


def test_parse_message_headers_and_body():
    item = parse_message(_message())
    assert item.external_id == "m1"
    assert item.thread_id == "t1"
    assert item.subject == "Q3 Budget"
    assert item.from_addr == "Finance <finance@acme.com>"
    assert item.body == "Plain budget body"
    assert item.is_read is False
    assert item.received_at == datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)


def test_parse_message_without_plain_part_uses_snippet():
    msg = _message()
    msg["payload"]["parts"] = [{"mimeType": "text/html", "body": {"data": _b64("<b>x</b>")}}]
    assert parse_message(msg).body == "Numbers attached"


def test_parse_metadata_only_message_has_no_body():
    msg = _message()
    del msg["payload"]
    item = parse_message(msg)
    assert item.body is None
    assert item.subject == "(no subject)"


def test_read_label():
    assert parse_message(_message(labelIds=["INBOX"])).is_read is True


def test_after_query_uses_epoch_seconds():
    since = datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)
    assert after_query(since) == "after:1741600800"


# ── gmail client ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_page_returns_refs_and_token():
    client = GmailClient("token")
    svc = MagicMock()
    svc.users().messages().list().execute.return_value = {
        "messages": [{"id": "a", "threadId": "ta"}, {"id": "b", "threadId": "tb"}],
        "nextPageToken": "p2",
    }
    client._svc = svc

    refs, token = await client.list_page("after:1", None, max_results=2)

    assert [r.external_id for r in refs] == ["a", "b"]
    assert token == "p2"


@pytest.mark.asyncio
async def test_list_last_page_has_no_token():
    client = GmailClient("token")
    svc = MagicMock()
    svc.users().messages().list().execute.return_value = {}
    client._svc = svc

    refs, token = await client.list_page("", "p2")

    assert refs == []
    assert token is None


@pytest.mark.asyncio
async def test_send_returns_message_id():
    client = GmailClient("token")
    svc = MagicMock()
    svc.users().messages().send().execute.return_value = {"id": "sent-1"}
    client._svc = svc

    assert await client.send("alice@x.com", "Hello", "Body") == "sent-1"
    _, kwargs = svc.users().messages().send.call_args
    assert kwargs["userId"] == "me"
    assert "raw" in kwargs["body"]


# ── calendar ──────────────────────────────────────────────────────────────────


def test_parse_google_time_date_and_datetime():
    assert parse_google_time("2025-03-11") == datetime(2025, 3, 11, tzinfo=timezone.utc)
    assert parse_google_time("2025-03-11T10:00:00+02:00") == datetime(
        2025, 3, 11, 8, 0, tzinfo=timezone.utc
    )
    assert parse_google_time(None) is None


def test_parse_timed_event():
    item = parse_event({
        "id": "e1",
        "summary": "Client review",
        "status": "confirmed",
        "start": {"dateTime": "2025-03-11T10:00:00Z"},
        "end": {"dateTime": "2025-03-11T11:00:00Z"},
        "attendees": [{"email": "jane@acme.com"}, {"displayName": "no email"}],
        "organizer": {"email": "advisor@example.com"},
    })
    assert item.start_time == datetime(2025, 3, 11, 10, 0, tzinfo=timezone.utc)
    assert item.is_all_day is False
    assert item.attendees == "jane@acme.com"
    assert item.organizer == "advisor@example.com"


def test_parse_all_day_event():
    item = parse_event({"id": "e2", "start": {"date": "2025-03-11"}, "end": {"date": "2025-03-12"}})
    assert item.is_all_day is True
    assert item.attendees is None


@pytest.mark.asyncio
async def test_calendar_listing_carries_event_payload():
    client = CalendarClient("token")
    svc = MagicMock()
    svc.events().list().execute.return_value = {"items": [{"id": "e1", "summary": "x"}]}
    client._svc = svc

    refs, token = await client.list_page(
        datetime(2025, 3, 1, tzinfo=timezone.utc), datetime(2025, 4, 1, tzinfo=timezone.utc)
    )

    assert refs[0].raw == {"id": "e1", "summary": "x"}
    assert token is None


@pytest.mark.asyncio
async def test_insert_notifies_attendees_only_when_present():
    client = CalendarClient("token", timezone="Europe/London")
    svc = MagicMock()
    svc.events().insert().execute.return_value = {"id": "new"}
    client._svc = svc
    start = datetime(2025, 3, 11, 10, 0, tzinfo=timezone.utc)
    end = datetime(2025, 3, 11, 10, 30, tzinfo=timezone.utc)

    await client.insert("Sync", start, end, attendees=["jane@acme.com"])
    _, kwargs = svc.events().insert.call_args
    assert kwargs["sendUpdates"] == "all"
    assert kwargs["body"]["attendees"] == [{"email": "jane@acme.com"}]
    assert kwargs["body"]["start"]["timeZone"] == "Europe/London"

    await client.insert("Solo", start, end)
    _, kwargs = svc.events().insert.call_args
    assert kwargs["sendUpdates"] == "none"
    assert "attendees" not in kwargs["body"]
