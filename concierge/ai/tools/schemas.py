"""
Tool schemas for Anthropic native function calling.

Each schema is passed in the `tools` parameter of messages.create().
Claude decides when to call a tool; the dispatcher executes it and returns
the result as a tool_result block.

Every argument is a flat string field. Required fields are validated again
at dispatch time before any external system is touched.

Tool categories:

  Mail
    send_email             → send a message from the user's mailbox

  Calendar
    create_calendar_event  → create an event (end defaults to start + 30 min)

  CRM
    create_hubspot_contact → create a contact
    update_hubspot_contact → patch a contact found by e-mail
    create_hubspot_deal    → create a deal
    update_hubspot_deal    → patch a deal found by (fuzzy) name
    add_hubspot_note       → attach a note to a contact found by e-mail
"""

from __future__ import annotations

from enum import Enum


class ToolName(str, Enum):
    SEND_EMAIL = "send_email"
    CREATE_CALENDAR_EVENT = "create_calendar_event"
    CREATE_HUBSPOT_CONTACT = "create_hubspot_contact"
    UPDATE_HUBSPOT_CONTACT = "update_hubspot_contact"
    CREATE_HUBSPOT_DEAL = "create_hubspot_deal"
    UPDATE_HUBSPOT_DEAL = "update_hubspot_deal"
    ADD_HUBSPOT_NOTE = "add_hubspot_note"


def _string(description: str) -> dict:
    return {"type": "string", "description": description}


_CONTACT_FIELDS = {
    "first_name": _string("First name of the contact"),
    "last_name": _string("Last name of the contact"),
    "company": _string("Company name where the contact works"),
    "job_title": _string("Job title or role of the contact"),
    "phone": _string("Phone number of the contact"),
    "lifecycle_stage": _string("Lifecycle stage (e.g. 'lead', 'opportunity', 'customer')"),
}

_DEAL_FIELDS = {
    "deal_stage": _string(
        "Deal stage (e.g. 'qualifiedtobuy', 'presentationscheduled', "
        "'decisionmakerboughtin', 'contractsent', 'closedwon', 'closedlost')"
    ),
    "amount": _string("Deal amount as a number (e.g. '50000')"),
    "close_date": _string("Expected close date in ISO format (e.g. '2024-12-31')"),
    "priority": _string("Deal priority ('high', 'medium' or 'low')"),
}


TOOL_SCHEMAS: list[dict] = [
    # ------------------------------------------------------------------ #
    # Mail                                                                 #
    # ------------------------------------------------------------------ #
    {
        "name": ToolName.SEND_EMAIL.value,
        "description": (
            "Send an email to a recipient. Use this only when the user explicitly asks "
            "to send, email or message someone, or a standing instruction requires it."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "to": _string(
                    "Email address of the recipient (e.g. john@example.com). Take it from "
                    "the request or look it up in the CRM contacts or previous emails."
                ),
                "subject": _string("Subject line of the email."),
                "body": _string("Body of the email. Professional and clear."),
            },
            "required": ["to", "subject", "body"],
        },
    },

    # ------------------------------------------------------------------ #
    # Calendar                                                             #
    # ------------------------------------------------------------------ #
    {
        "name": ToolName.CREATE_CALENDAR_EVENT.value,
        "description": (
            "Create a meeting on the user's Google Calendar and invite attendees. "
            "Use this when the user asks to schedule, book or set up a meeting."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "summary": _string("Title of the meeting (e.g. 'Q4 Review', 'Call with John')"),
                "start_time": _string(
                    "Start time in ISO 8601 format (e.g. '2024-10-20T14:00:00'). Resolve "
                    "phrases like 'tomorrow at 2pm' against the current date."
                ),
                "end_time": _string(
                    "End time in ISO 8601 format. Defaults to 30 minutes after the start."
                ),
                "description": _string("Optional description or agenda"),
                "location": _string("Optional location (e.g. 'Zoom', 'Conference Room A')"),
                "attendees": _string(
                    "Comma-separated attendee email addresses "
                    "(e.g. 'john@example.com,sara@example.com')"
                ),
            },
            "required": ["summary", "start_time"],
        },
    },

    # ------------------------------------------------------------------ #
    # CRM                                                                  #
    # ------------------------------------------------------------------ #
    {
        "name": ToolName.CREATE_HUBSPOT_CONTACT.value,
        "description": (
            "Create a new contact in HubSpot. Use this when the user asks to add "
            "someone to the CRM."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "email": _string("Email address of the contact (e.g. 'john@example.com')"),
                **_CONTACT_FIELDS,
            },
            "required": ["email"],
        },
    },
    {
        "name": ToolName.UPDATE_HUBSPOT_CONTACT.value,
        "description": (
            "Update fields of an existing HubSpot contact, found by e-mail address. "
            "Only the fields provided are changed."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "email": _string("Email address of the contact to update"),
                **_CONTACT_FIELDS,
            },
            "required": ["email"],
        },
    },
    {
        "name": ToolName.CREATE_HUBSPOT_DEAL.value,
        "description": "Create a new deal in HubSpot.",
        "input_schema": {
            "type": "object",
            "properties": {
                "deal_name": _string("Name of the deal"),
                **_DEAL_FIELDS,
            },
            "required": ["deal_name"],
        },
    },
    {
        "name": ToolName.UPDATE_HUBSPOT_DEAL.value,
        "description": (
            "Update an existing HubSpot deal's stage, amount, close date or priority. "
            "The deal is found by name (partial, case-insensitive match)."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "deal_name": _string("Name of the deal to update (used to search for it)"),
                **_DEAL_FIELDS,
            },
            "required": ["deal_name"],
        },
    },
    {
        "name": ToolName.ADD_HUBSPOT_NOTE.value,
        "description": (
            "Add a note to a HubSpot contact. Use this to record conversations, "
            "follow-ups or context about a client."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "contact_email": _string(
                    "Email address of the contact. Look it up from context if only a name is given."
                ),
                "note": _string("The note content"),
            },
            "required": ["contact_email", "note"],
        },
    },
]


class ToolCatalog:
    """Static lookup over TOOL_SCHEMAS."""

    def __init__(self, schemas: list[dict] | None = None) -> None:
        self._schemas = schemas if schemas is not None else TOOL_SCHEMAS
        self._by_name = {s["name"]: s for s in self._schemas}

    @property
    def schemas(self) -> list[dict]:
        return self._schemas

    def required(self, name: str) -> list[str]:
        schema = self._by_name.get(name)
        return list(schema["input_schema"].get("required", [])) if schema else []

    def describe(self) -> str:
        """One line per tool, for embedding in a system prompt."""
        return "\n".join(f"- {s['name']}: {s['description']}" for s in self._schemas)
