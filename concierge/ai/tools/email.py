"""Gmail tool executors."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ...exceptions import ConfigurationError

if TYPE_CHECKING:
    from .args import SendEmailArgs
    from .registry import ToolDispatcher

logger = logging.getLogger(__name__)


async def exec_send_email(dispatcher: ToolDispatcher, user_id: int, args: SendEmailArgs) -> str:
    """Send one message from the user's mailbox."""
    try:
        gmail = await dispatcher._clients.gmail(user_id)
        message_id = await gmail.send(args.to, args.subject, args.body)
    except ConfigurationError as e:
        return f"Error: Google account is not connected ({e})"
    except Exception as e:
        logger.error("send_email failed for user %d: %s", user_id, e, exc_info=True)
        return f"Error sending email: {e}"

    logger.info("Email sent for user %d to %s (id=%s)", user_id, args.to, message_id)
    return (
        f"✅ Email sent successfully to {args.to} with subject '{args.subject}'. "
        f"Message ID: {message_id}"
    )
