"""
Typed tool arguments.

The model sends a flat JSON object of string fields per call. It is parsed
exactly once, at dispatch entry, into the dataclass for that tool; executors
only ever see the typed value. Missing or blank required fields raise
ToolArgumentError before any external system is touched.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Union

from .schemas import ToolName

logger = logging.getLogger(__name__)

DEFAULT_EVENT_DURATION = timedelta(minutes=30)


class ToolArgumentError(ValueError):
    """Arguments could not be turned into a valid call."""


def _load(raw: str | dict | None) -> dict:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        data = json.loads(raw) if raw.strip() else {}
    except (json.JSONDecodeError, AttributeError) as e:
        raise ToolArgumentError("Invalid tool arguments") from e
    if not isinstance(data, dict):
        raise ToolArgumentError("Invalid tool arguments")
    return data


def _optional(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _required(data: dict, key: str) -> str:
    text = _optional(data, key)
    if text is None:
        raise ToolArgumentError(f"Missing required argument '{key}'")
    return text


def parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True)
class SendEmailArgs:
    to: str
    subject: str
    body: str


@dataclass(frozen=True)
class CalendarEventArgs:
    summary: str
    start_time: datetime
    end_time: datetime
    description: str | None = None
    location: str | None = None
    attendees: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ContactArgs:
    email: str
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    job_title: str | None = None
    phone: str | None = None
    lifecycle_stage: str | None = None

    def properties(self, include_email: bool = True) -> dict[str, str]:
        """HubSpot property names for the fields that were provided."""
        props = {
            "firstname": self.first_name,
            "lastname": self.last_name,
            "company": self.company,
            "jobtitle": self.job_title,
            "phone": self.phone,
            "lifecyclestage": self.lifecycle_stage,
        }
        if include_email:
            props["email"] = self.email
        return {k: v for k, v in props.items() if v is not None}

    def cache_changes(self) -> dict[str, str]:
        changes = {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "company": self.company,
            "job_title": self.job_title,
            "phone": self.phone,
            "lifecycle_stage": self.lifecycle_stage,
        }
        return {k: v for k, v in changes.items() if v is not None}


@dataclass(frozen=True)
class DealArgs:
    deal_name: str
    deal_stage: str | None = None
    amount: str | None = None
    close_date: str | None = None
    priority: str | None = None

    def properties(self, include_name: bool = True) -> dict[str, str]:
        props = {
            "dealstage": self.deal_stage,
            "amount": self.amount,
            "closedate": self.close_date,
            "hs_priority": self.priority,
        }
        if include_name:
            props["dealname"] = self.deal_name
        return {k: v for k, v in props.items() if v is not None}

    def cache_changes(self) -> dict[str, Any]:
        changes: dict[str, Any] = {}
        if self.deal_stage:
            changes["stage"] = self.deal_stage
        if self.amount:
            try:
                changes["amount"] = float(self.amount)
            except ValueError:
                pass
        if self.close_date:
            try:
                changes["close_date"] = parse_iso(self.close_date)
            except ValueError:
                pass
        if self.priority:
            changes["priority"] = self.priority
        return changes


@dataclass(frozen=True)
class NoteArgs:
    contact_email: str
    note: str


ToolArgs = Union[SendEmailArgs, CalendarEventArgs, ContactArgs, DealArgs, NoteArgs]


def _calendar_args(data: dict) -> CalendarEventArgs:
    summary = _required(data, "summary")
    start_raw = _required(data, "start_time")
    try:
        start = parse_iso(start_raw)
    except ValueError as e:
        raise ToolArgumentError(
            f"Invalid start time format: {start_raw}. "
            "Please use ISO 8601 format (e.g. '2024-10-20T14:00:00')"
        ) from e

    end = start + DEFAULT_EVENT_DURATION
    end_raw = _optional(data, "end_time")
    if end_raw:
        try:
            end = parse_iso(end_raw)
        except ValueError:
            logger.warning("Could not parse end time %r, using 30-minute default", end_raw)

    attendees_raw = _optional(data, "attendees") or ""
    return CalendarEventArgs(
        summary=summary,
        start_time=start,
        end_time=end,
        description=_optional(data, "description"),
        location=_optional(data, "location"),
        attendees=[a.strip() for a in attendees_raw.split(",") if a.strip()],
    )


def _contact_args(data: dict) -> ContactArgs:
    return ContactArgs(
        email=_required(data, "email"),
        first_name=_optional(data, "first_name"),
        last_name=_optional(data, "last_name"),
        company=_optional(data, "company"),
        job_title=_optional(data, "job_title"),
        phone=_optional(data, "phone"),
        lifecycle_stage=_optional(data, "lifecycle_stage"),
    )


def _deal_args(data: dict) -> DealArgs:
    return DealArgs(
        deal_name=_required(data, "deal_name"),
        deal_stage=_optional(data, "deal_stage"),
        amount=_optional(data, "amount"),
        close_date=_optional(data, "close_date"),
        priority=_optional(data, "priority"),
    )


def parse_args(name: ToolName, raw: str | dict | None) -> ToolArgs:
    """Parse raw model arguments for one tool. Raises ToolArgumentError."""
    data = _load(raw)
    match name:
        case ToolName.SEND_EMAIL:
            return SendEmailArgs(
                to=_required(data, "to"),
                subject=_required(data, "subject"),
                body=_required(data, "body"),
            )
        case ToolName.CREATE_CALENDAR_EVENT:
            return _calendar_args(data)
        case ToolName.CREATE_HUBSPOT_CONTACT | ToolName.UPDATE_HUBSPOT_CONTACT:
            return _contact_args(data)
        case ToolName.CREATE_HUBSPOT_DEAL | ToolName.UPDATE_HUBSPOT_DEAL:
            return _deal_args(data)
        case ToolName.ADD_HUBSPOT_NOTE:
            return NoteArgs(
                contact_email=_required(data, "contact_email"),
                note=_required(data, "note"),
            )
    raise ToolArgumentError(f"No argument parser for {name.value}")
