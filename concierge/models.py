"""
Pydantic v2 data models for concierge.

Cache item variants share (user_id, external_id) identity. Optional remote
fields are explicit Optional values; `PRESERVE_IF_NONE` names the fields an
update keeps from the stored row when the incoming value is None. Every
other mutable field is overwritten on each write.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Literal, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceKind(str, Enum):
    MAIL = "mail"
    CALENDAR = "calendar"
    CRM_CONTACTS = "crm_contacts"
    CRM_COMPANIES = "crm_companies"
    CRM_DEALS = "crm_deals"

    @property
    def is_crm(self) -> bool:
        return self in CRM_KINDS


CRM_KINDS = (SourceKind.CRM_CONTACTS, SourceKind.CRM_COMPANIES, SourceKind.CRM_DEALS)

# Run-log source names for stages that are not fetchable sources
VECTOR_STAGE = "vector"
FULL_UMBRELLA = "all"


class SyncMode(str, Enum):
    INCREMENTAL = "incremental"
    FULL = "full"


class RunStatus(str, Enum):
    RUNNING = "Running"
    SUCCESS = "Success"
    FAILED = "Failed"


class TriggerType(str, Enum):
    MAIL = "Mail"
    CALENDAR = "Calendar"
    CRM = "CRM"
    ALL = "All"


class ItemRef(BaseModel):
    """An identifier from a listing page, plus whatever the listing already returned."""
    external_id: str
    raw: Optional[dict] = None


# ── Cache items ─────────────────────────────────────────────────────────────────


class CacheItem(BaseModel):
    kind: ClassVar[SourceKind]
    PRESERVE_IF_NONE: ClassVar[frozenset[str]] = frozenset()

    external_id: str

    def mutable_fields(self) -> dict:
        """Column values written on insert and update."""
        return self.model_dump(exclude={"external_id"})


class MailItem(CacheItem):
    kind: ClassVar[SourceKind] = SourceKind.MAIL
    # A metadata-only refetch must not wipe a body fetched earlier
    PRESERVE_IF_NONE: ClassVar[frozenset[str]] = frozenset({"body"})

    thread_id: Optional[str] = None
    subject: Optional[str] = None
    from_addr: Optional[str] = None
    to_addr: Optional[str] = None
    snippet: Optional[str] = None
    body: Optional[str] = None
    labels: Optional[str] = None
    is_read: bool = False
    received_at: Optional[datetime] = None


class CalendarItem(CacheItem):
    kind: ClassVar[SourceKind] = SourceKind.CALENDAR

    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_all_day: bool = False
    attendees: Optional[str] = None
    organizer: Optional[str] = None
    status: Optional[str] = None
    updated_remote_at: Optional[datetime] = None


class ContactItem(CacheItem):
    kind: ClassVar[SourceKind] = SourceKind.CRM_CONTACTS

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    lifecycle_stage: Optional[str] = None
    last_modified: Optional[datetime] = None


class CompanyItem(CacheItem):
    kind: ClassVar[SourceKind] = SourceKind.CRM_COMPANIES

    name: Optional[str] = None
    domain: Optional[str] = None
    industry: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    employees: Optional[int] = None
    annual_revenue: Optional[float] = None
    last_modified: Optional[datetime] = None


class DealItem(CacheItem):
    kind: ClassVar[SourceKind] = SourceKind.CRM_DEALS

    deal_name: Optional[str] = None
    stage: Optional[str] = None
    pipeline: Optional[str] = None
    amount: Optional[float] = None
    close_date: Optional[datetime] = None
    priority: Optional[str] = None
    last_modified: Optional[datetime] = None


ITEM_MODELS: dict[SourceKind, type[CacheItem]] = {
    SourceKind.MAIL: MailItem,
    SourceKind.CALENDAR: CalendarItem,
    SourceKind.CRM_CONTACTS: ContactItem,
    SourceKind.CRM_COMPANIES: CompanyItem,
    SourceKind.CRM_DEALS: DealItem,
}


# ── Bookkeeping ─────────────────────────────────────────────────────────────────


class SyncRunRecord(BaseModel):
    id: int
    user_id: int
    source: str
    mode: SyncMode
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    items_processed: int = 0
    items_added: int = 0
    items_updated: int = 0
    items_failed: int = 0
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != RunStatus.RUNNING


class StandingInstruction(BaseModel):
    id: int
    user_id: int
    instruction: str
    trigger_type: TriggerType = TriggerType.ALL
    priority: int = 0
    is_active: bool = True
    execution_count: int = 0
    last_executed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AgentActivity(BaseModel):
    id: Optional[int] = None
    user_id: int
    activity_type: str
    description: str
    details: Optional[str] = None
    triggered_by_external_id: Optional[str] = None
    instruction_id: Optional[int] = None
    status: Literal["Success", "Failed"] = "Success"
    error_message: Optional[str] = None
    is_read: bool = False
    created_at: Optional[datetime] = None


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    created_at: Optional[datetime] = None


class User(BaseModel):
    user_id: int
    email: Optional[str] = None
    google_access_token: Optional[str] = None
    hubspot_access_token: Optional[str] = None

    @property
    def has_google(self) -> bool:
        return bool(self.google_access_token)

    @property
    def has_hubspot(self) -> bool:
        return bool(self.hubspot_access_token)


class ContextItem(BaseModel):
    """One retrieved piece of grounding context."""
    item_type: str
    item_id: int
    external_id: Optional[str] = None
    content: str
    score: float = 0.0
