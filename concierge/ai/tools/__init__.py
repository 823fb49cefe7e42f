"""
Tool catalog and dispatcher for native Anthropic tool use (function calling).

The package is organised into:
- schemas.py: ToolName, TOOL_SCHEMAS and the ToolCatalog lookup
- args.py: typed per-tool arguments, parsed once at dispatch entry
- registry.py: ToolDispatcher and dispatch logic
- email.py: Gmail executors
- calendar.py: Google Calendar executors
- crm.py: HubSpot executors
"""

from .args import ToolArgumentError, parse_args
from .registry import ToolDispatcher, is_error
from .schemas import TOOL_SCHEMAS, ToolCatalog, ToolName

__all__ = [
    "TOOL_SCHEMAS",
    "ToolArgumentError",
    "ToolCatalog",
    "ToolDispatcher",
    "ToolName",
    "is_error",
    "parse_args",
]
