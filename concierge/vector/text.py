"""Canonical text for a cache row, shared by projection and keyword results."""

from typing import Any

from ..models import SourceKind

# Payload `type` of each source's points
POINT_TYPES: dict[SourceKind, str] = {
    SourceKind.MAIL: "email",
    SourceKind.CALENDAR: "calendar",
    SourceKind.CRM_CONTACTS: "contact",
    SourceKind.CRM_COMPANIES: "company",
    SourceKind.CRM_DEALS: "deal",
}


def point_id(kind: SourceKind, user_id: int, row_id: int) -> str:
    return f"{POINT_TYPES[kind]}_{user_id}_{row_id}"


def _lines(pairs: list[tuple[str, Any]]) -> str:
    return "\n".join(f"{label}: {value}" for label, value in pairs if value not in (None, ""))


def canonical_text(kind: SourceKind, row: dict[str, Any]) -> str:
    match kind:
        case SourceKind.MAIL:
            return _lines([
                ("Subject", row.get("subject")),
                ("From", row.get("from_addr")),
                ("To", row.get("to_addr")),
                ("Body", row.get("body") or row.get("snippet")),
                ("Date", row.get("received_at")),
            ])
        case SourceKind.CALENDAR:
            return _lines([
                ("Event", row.get("summary")),
                ("Description", row.get("description")),
                ("Location", row.get("location")),
                ("Start", row.get("start_time")),
                ("End", row.get("end_time")),
                ("Attendees", row.get("attendees")),
            ])
        case SourceKind.CRM_CONTACTS:
            name = " ".join(p for p in (row.get("first_name"), row.get("last_name")) if p)
            return _lines([
                ("Contact", name),
                ("Email", row.get("email")),
                ("Phone", row.get("phone")),
                ("Company", row.get("company")),
                ("Job Title", row.get("job_title")),
                ("Lifecycle Stage", row.get("lifecycle_stage")),
            ])
        case SourceKind.CRM_COMPANIES:
            location = ", ".join(
                p for p in (row.get("city"), row.get("state"), row.get("country")) if p
            )
            return _lines([
                ("Company", row.get("name")),
                ("Domain", row.get("domain")),
                ("Industry", row.get("industry")),
                ("Location", location),
                ("Employees", row.get("employees")),
                ("Annual Revenue", row.get("annual_revenue")),
            ])
        case SourceKind.CRM_DEALS:
            return _lines([
                ("Deal", row.get("deal_name")),
                ("Stage", row.get("stage")),
                ("Pipeline", row.get("pipeline")),
                ("Amount", row.get("amount")),
                ("Close Date", row.get("close_date")),
                ("Priority", row.get("priority")),
            ])
    raise ValueError(f"Unknown source kind: {kind}")
