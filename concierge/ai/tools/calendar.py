"""Google Calendar tool executors."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ...exceptions import ConfigurationError

if TYPE_CHECKING:
    from .args import CalendarEventArgs
    from .registry import ToolDispatcher

logger = logging.getLogger(__name__)


def _fmt(dt) -> str:
    return dt.strftime("%b %d, %Y %I:%M %p")


async def exec_create_calendar_event(
    dispatcher: ToolDispatcher, user_id: int, args: CalendarEventArgs
) -> str:
    """Create an event on the primary calendar and invite any attendees."""
    logger.info(
        "Creating calendar event %r from %s to %s", args.summary, args.start_time, args.end_time
    )
    try:
        calendar = await dispatcher._clients.calendar(user_id)
        event = await calendar.insert(
            args.summary,
            args.start_time,
            args.end_time,
            description=args.description,
            location=args.location,
            attendees=args.attendees or None,
        )
    except ConfigurationError as e:
        return f"Error: Google account is not connected ({e})"
    except Exception as e:
        logger.error("create_calendar_event failed for user %d: %s", user_id, e, exc_info=True)
        return f"Error creating calendar event: {e}"

    lines = [
        f"✅ Meeting '{args.summary}' created successfully!",
        f"📅 Start: {_fmt(args.start_time)}",
        f"📅 End: {_fmt(args.end_time)}",
    ]
    if args.location:
        lines.append(f"📍 Location: {args.location}")
    if args.attendees:
        lines.append(f"👥 Attendees: {', '.join(args.attendees)}")
    lines.append(f"🔗 Event ID: {event.get('id', '')}")
    return "\n".join(lines)
