"""
Gmail API client: list message ids page by page, fetch one message, send.

Security notes:
- Email bodies are untrusted content. They are cached and later shown to
  the model as context, never executed.
- Body extraction is limited to _BODY_MAX_CHARS to avoid context stuffing.
"""

import asyncio
import base64
import logging
from datetime import datetime, timezone
from email.mime.text import MIMEText

from ..models import ItemRef, MailItem
from ..utils.resilience import with_resilience
from .auth import credentials_from_token

logger = logging.getLogger(__name__)

_BODY_MAX_CHARS = 10000  # truncation limit for email bodies


def _extract_body(msg: dict, max_chars: int = _BODY_MAX_CHARS) -> str:
    """
    Extract plain-text body from a Gmail full-format message.
    Falls back to the snippet if no plain-text part is found.
    """
    def _get_plain(part: dict) -> str:
        mime = part.get("mimeType", "")
        if mime == "text/plain":
            data = part.get("body", {}).get("data", "")
            if data:
                try:
                    return base64.urlsafe_b64decode(data + "==").decode("utf-8", errors="replace")
                except ValueError:
                    logger.debug("Undecodable text/plain part in message %s", msg.get("id"))
        # Recurse into multipart
        for subpart in part.get("parts", []):
            result = _get_plain(subpart)
            if result:
                return result
        return ""

    text = _get_plain(msg.get("payload", {}))
    if not text:
        text = msg.get("snippet", "")
    return text[:max_chars]


def _parse_headers(msg: dict) -> dict:
    """Return a dict of {header_name: value} from a Gmail message."""
    return {
        h["name"]: h["value"]
        for h in msg.get("payload", {}).get("headers", [])
    }


def parse_message(msg: dict) -> MailItem:
    """Map a full-format Gmail message onto a cache item."""
    headers = _parse_headers(msg)
    labels = msg.get("labelIds", [])
    received_at = None
    if msg.get("internalDate"):
        received_at = datetime.fromtimestamp(int(msg["internalDate"]) / 1000, tz=timezone.utc)
    return MailItem(
        external_id=msg["id"],
        thread_id=msg.get("threadId"),
        subject=headers.get("Subject", "(no subject)"),
        from_addr=headers.get("From", ""),
        to_addr=headers.get("To", ""),
        snippet=msg.get("snippet", ""),
        body=_extract_body(msg) if "payload" in msg else None,
        labels=",".join(labels),
        is_read="UNREAD" not in labels,
        received_at=received_at,
    )


def after_query(since: datetime) -> str:
    """Gmail search filter for messages received after `since` (epoch seconds)."""
    return f"after:{int(since.timestamp())}"


class GmailClient:
    """Wraps Gmail API v1 calls for one user's bearer token."""

    def __init__(self, access_token: str | None) -> None:
        self._credentials = credentials_from_token(access_token)
        self._svc = None

    def _service(self):
        if self._svc is None:
            from googleapiclient.discovery import build  # type: ignore[import]
            self._svc = build(
                "gmail", "v1", credentials=self._credentials, cache_discovery=False
            )
        return self._svc

    async def list_page(
        self, query: str, page_token: str | None = None, max_results: int = 100
    ) -> tuple[list[ItemRef], str | None]:
        """One page of message ids matching `query`, plus the next page token."""
        def _sync():
            params: dict = {"userId": "me", "q": query, "maxResults": max_results}
            if page_token:
                params["pageToken"] = page_token
            return self._service().users().messages().list(**params).execute()

        resp = await with_resilience("gmail", lambda: asyncio.to_thread(_sync))
        refs = [
            ItemRef(external_id=m["id"], raw={"threadId": m.get("threadId")})
            for m in resp.get("messages", [])
        ]
        return refs, resp.get("nextPageToken") or None

    async def get_detail(self, message_id: str) -> MailItem:
        """Fetch one message in full format."""
        def _sync():
            return self._service().users().messages().get(
                userId="me", id=message_id, format="full",
            ).execute()

        msg = await with_resilience("gmail", lambda: asyncio.to_thread(_sync))
        return parse_message(msg)

    async def send(self, to: str, subject: str, body: str) -> str:
        """Send a plain-text message. Returns the new message id."""
        def _sync():
            msg = MIMEText(body, "plain", "utf-8")
            msg["To"] = to
            msg["Subject"] = subject
            raw = base64.urlsafe_b64encode(msg.as_bytes()).decode("utf-8")
            return self._service().users().messages().send(
                userId="me", body={"raw": raw},
            ).execute()

        # Sending is not idempotent: a retried 5xx could deliver twice
        result = await with_resilience("gmail", lambda: asyncio.to_thread(_sync), max_retries=1)
        return result.get("id", "")
