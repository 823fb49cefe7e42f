"""
Tool dispatcher.

ToolDispatcher turns one model tool call (user, tool name, raw arguments)
into exactly one external side effect and returns a human-readable outcome.
It never raises: unknown tools, bad arguments and executor failures all come
back as strings starting with "Error", which callers report to the model.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .args import ToolArgumentError, parse_args
from .schemas import ToolCatalog, ToolName

if TYPE_CHECKING:
    from ...cache.items import CacheStore
    from ...clients import ClientFactory

logger = logging.getLogger(__name__)


def is_error(result: str) -> bool:
    return result.startswith("Error")


class ToolDispatcher:
    """
    Holds the collaborators the tool executors need and dispatches calls.

    Dependencies are injected at construction time; executors reach them via
    the dispatcher (`_clients` for per-user remote clients, `_cache` for the
    local lookups and refreshes that surround CRM mutations).
    """

    def __init__(
        self,
        *,
        clients: ClientFactory,
        cache: CacheStore,
        catalog: ToolCatalog | None = None,
    ) -> None:
        self._clients = clients
        self._cache = cache
        self._catalog = catalog or ToolCatalog()

    @property
    def schemas(self) -> list[dict]:
        return self._catalog.schemas

    async def execute(self, user_id: int, tool_name: str, args: str | dict | None) -> str:
        """
        Execute the named tool with the given arguments.
        Returns a string result suitable for feeding back as a tool_result block.
        """
        try:
            name = ToolName(tool_name)
        except ValueError:
            logger.warning("Model requested unknown tool %r", tool_name)
            return f"Error: Unknown tool '{tool_name}'"

        try:
            parsed = parse_args(name, args)
        except ToolArgumentError as e:
            logger.info("Rejected %s call: %s", tool_name, e)
            return f"Error: {e}"

        logger.info("Executing tool %s for user %d", tool_name, user_id)
        try:
            match name:
                case ToolName.SEND_EMAIL:
                    from .email import exec_send_email
                    return await exec_send_email(self, user_id, parsed)
                case ToolName.CREATE_CALENDAR_EVENT:
                    from .calendar import exec_create_calendar_event
                    return await exec_create_calendar_event(self, user_id, parsed)
                case ToolName.CREATE_HUBSPOT_CONTACT:
                    from .crm import exec_create_contact
                    return await exec_create_contact(self, user_id, parsed)
                case ToolName.UPDATE_HUBSPOT_CONTACT:
                    from .crm import exec_update_contact
                    return await exec_update_contact(self, user_id, parsed)
                case ToolName.CREATE_HUBSPOT_DEAL:
                    from .crm import exec_create_deal
                    return await exec_create_deal(self, user_id, parsed)
                case ToolName.UPDATE_HUBSPOT_DEAL:
                    from .crm import exec_update_deal
                    return await exec_update_deal(self, user_id, parsed)
                case ToolName.ADD_HUBSPOT_NOTE:
                    from .crm import exec_add_note
                    return await exec_add_note(self, user_id, parsed)
        except Exception as exc:
            logger.error("Tool %s failed: %s", tool_name, exc, exc_info=True)
            return f"Error executing {tool_name}: {exc}"
        return f"Error: Unknown tool '{tool_name}'"
