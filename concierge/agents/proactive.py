"""
ProactiveAgent — act on standing instructions without a human in the loop.

One pass per user:
  1. Load the user's active instructions (highest priority first).
  2. Collect items cached within the last few minutes for each trigger type.
  3. For every (instruction, item) pair not already acted on, ask the
     decision model a narrow YES/NO question.
  4. On YES, run the instruction through the same tool-calling turn the chat
     path uses, logging one AgentActivity per tool call.

A failure on one pair is logged (and recorded as an Error activity when it
happened during execution) and the pass moves on to the next pair.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any, Callable
from zoneinfo import ZoneInfo

from ..cache.database import from_db_time
from ..config import settings
from ..models import AgentActivity, SourceKind, StandingInstruction, TriggerType
from ..vector.text import canonical_text

if TYPE_CHECKING:
    from ..ai.claude_client import ClaudeClient
    from ..ai.orchestrator import ConversationOrchestrator, TurnResult
    from ..cache import ActivityStore, CacheStore, InstructionStore, UserStore

logger = logging.getLogger(__name__)

_DECISION_SYSTEM = "You are a precise decision-making assistant. Be concise."

_DECISION_PROMPT = """Decide whether a standing instruction applies to a newly received item.

INSTRUCTION: {instruction}

{item_label}:
{item}

Should this instruction be executed for this item?
Respond with ONLY 'YES' or 'NO' and a brief reason (max 20 words).

Format: YES/NO | reason"""

_EXECUTION_SYSTEM = """You are a professional assistant that executes standing instructions automatically
on behalf of a financial advisor. Nobody will review your actions before they happen.
Carry out the instruction by calling the appropriate tools. Do only what the
instruction asks. Be professional, clear and helpful in all communications."""

_EXECUTION_PROMPT = """INSTRUCTION TO EXECUTE: {instruction}

{item_label}:
{item}
{calendar}
USER INFO:
- Email: {user_email}

TASK: Execute the instruction by calling the appropriate tools."""

ITEM_LABELS = {
    SourceKind.MAIL: "EMAIL RECEIVED",
    SourceKind.CALENDAR: "CALENDAR EVENT",
    SourceKind.CRM_CONTACTS: "NEW CRM CONTACT",
    SourceKind.CRM_COMPANIES: "NEW CRM COMPANY",
    SourceKind.CRM_DEALS: "CRM DEAL",
}

TRIGGER_SOURCES: dict[TriggerType, tuple[SourceKind, ...]] = {
    TriggerType.MAIL: (SourceKind.MAIL,),
    TriggerType.CALENDAR: (SourceKind.CALENDAR,),
    TriggerType.CRM: (SourceKind.CRM_CONTACTS, SourceKind.CRM_DEALS),
    TriggerType.ALL: (SourceKind.MAIL, SourceKind.CRM_CONTACTS, SourceKind.CRM_DEALS),
}

ACTIVITY_TYPES = {
    "send_email": "EmailSent",
    "create_calendar_event": "CalendarEventCreated",
    "create_hubspot_contact": "CrmContactCreated",
    "update_hubspot_contact": "CrmContactUpdated",
    "create_hubspot_deal": "CrmDealCreated",
    "update_hubspot_deal": "CrmDealUpdated",
    "add_hubspot_note": "CrmNoteAdded",
}

SCHEDULING_WORDS = ("calendar", "meeting", "available", "schedule")

WORKDAY_START = time(9, 0)
WORKDAY_END = time(17, 0)
MIN_SLOT = timedelta(hours=1)
MAX_SLOTS = 5


def activity_type(tool_name: str) -> str:
    return ACTIVITY_TYPES.get(tool_name, "ToolExecuted")


def find_free_slots(
    busy: list[tuple[datetime, datetime]],
    days: list[date],
    now: datetime,
    max_slots: int = MAX_SLOTS,
) -> list[tuple[datetime, datetime]]:
    """
    Gaps of at least an hour inside working hours, earliest first.

    `busy` intervals and `now` must share one timezone; the working day is
    taken in that timezone.
    """
    tz = now.tzinfo
    slots: list[tuple[datetime, datetime]] = []
    for day in days:
        cursor = datetime.combine(day, WORKDAY_START, tzinfo=tz)
        day_end = datetime.combine(day, WORKDAY_END, tzinfo=tz)
        if day == now.date() and now > cursor:
            cursor = now
        for start, end in sorted(b for b in busy if b[0].date() == day):
            gap_end = min(start, day_end)
            if gap_end - cursor >= MIN_SLOT:
                slots.append((cursor, gap_end))
            cursor = max(cursor, end)
        if day_end - cursor >= MIN_SLOT:
            slots.append((cursor, day_end))
    return slots[:max_slots]


def wants_calendar_context(instruction: str) -> bool:
    text = instruction.lower()
    return any(w in text for w in SCHEDULING_WORDS)


def parse_decision(text: str) -> bool:
    return text.strip().upper().startswith("YES")


@dataclass
class PassResult:
    evaluated: int = 0
    executed: int = 0
    failed: int = 0


def _default_clock() -> datetime:
    return datetime.now(ZoneInfo(settings.scheduler_timezone))


class ProactiveAgent:
    def __init__(
        self,
        *,
        claude: ClaudeClient,
        orchestrator: ConversationOrchestrator,
        instructions: InstructionStore,
        activities: ActivityStore,
        cache: CacheStore,
        users: UserStore,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._claude = claude
        self._orchestrator = orchestrator
        self._instructions = instructions
        self._activities = activities
        self._cache = cache
        self._users = users
        self._clock = clock or _default_clock

    async def run_all(self) -> dict[int, PassResult]:
        """One pass for every user with an active instruction. Users are isolated."""
        results: dict[int, PassResult] = {}
        for user_id in await self._instructions.users_with_active_instructions():
            try:
                results[user_id] = await self.run_for_user(user_id)
            except Exception as e:
                logger.error("Proactive pass failed for user %d: %s", user_id, e, exc_info=True)
        return results

    async def run_for_user(self, user_id: int) -> PassResult:
        result = PassResult()
        instructions = await self._instructions.list_active(user_id)
        if not instructions:
            return result
        user = await self._users.get(user_id)
        user_email = user.email if user and user.email else ""

        since = self._clock() - timedelta(minutes=settings.proactive_window_minutes)
        recent: dict[SourceKind, list[dict[str, Any]]] = {}

        for instruction in instructions:
            for kind in TRIGGER_SOURCES[instruction.trigger_type]:
                if kind not in recent:
                    recent[kind] = await self._cache.recent_items(
                        user_id, kind, since, settings.proactive_max_items
                    )
                for row in recent[kind]:
                    try:
                        acted = await self.process(user_id, user_email, instruction, kind, row)
                    except Exception as e:
                        result.failed += 1
                        logger.error(
                            "Instruction %d on %s %s failed: %s",
                            instruction.id, kind.value, row.get("external_id"), e, exc_info=True,
                        )
                        continue
                    result.evaluated += 1
                    if acted:
                        result.executed += 1

        logger.info(
            "Proactive pass for user %d: evaluated=%d executed=%d failed=%d",
            user_id, result.evaluated, result.executed, result.failed,
        )
        return result

    async def process(
        self,
        user_id: int,
        user_email: str,
        instruction: StandingInstruction,
        kind: SourceKind,
        row: dict[str, Any],
    ) -> bool:
        """Decide and, on YES, execute. Returns True when the instruction ran."""
        external_id = row["external_id"]
        if await self._activities.has_acted(instruction.id, external_id):
            return False
        if not await self.should_execute(instruction, kind, row):
            return False
        await self.execute(user_id, user_email, instruction, kind, row)
        return True

    async def should_execute(
        self, instruction: StandingInstruction, kind: SourceKind, row: dict[str, Any]
    ) -> bool:
        prompt = _DECISION_PROMPT.format(
            instruction=instruction.instruction,
            item_label=ITEM_LABELS[kind],
            item=canonical_text(kind, row)[:2000],
        )
        try:
            answer = await self._claude.complete(
                [{"role": "user", "content": prompt}], system=_DECISION_SYSTEM, max_tokens=100
            )
        except Exception as e:
            logger.error("Decision call failed for instruction %d: %s", instruction.id, e)
            return False
        logger.info("Decision for instruction %d on %s: %s", instruction.id, row["external_id"], answer.strip())
        return parse_decision(answer)

    async def calendar_context(self, user_id: int, instruction: str) -> str:
        """Today's and tomorrow's events plus free working-hour slots."""
        if not wants_calendar_context(instruction):
            return ""
        now = self._clock()
        today = now.date()
        tomorrow = today + timedelta(days=1)
        start = datetime.combine(today, time.min, tzinfo=now.tzinfo)
        rows = await self._cache.calendar_between(user_id, start, start + timedelta(days=2))

        if not rows:
            return (
                "\nCALENDAR: No events scheduled for today or tomorrow. "
                "Fully available during working hours (9 AM - 5 PM).\n"
            )

        busy: list[tuple[datetime, datetime]] = []
        lines = ["", "CALENDAR EVENTS (Today & Tomorrow):"]
        for row in rows:
            ev_start = from_db_time(row["start_time"]).astimezone(now.tzinfo)
            ev_end_raw = from_db_time(row["end_time"])
            ev_end = ev_end_raw.astimezone(now.tzinfo) if ev_end_raw else ev_start + MIN_SLOT
            busy.append((ev_start, ev_end))
            lines.append(
                f"- {ev_start:%b %d, %I:%M %p}: {row.get('summary') or '(no title)'} "
                f"(until {ev_end:%I:%M %p})"
            )

        slots = find_free_slots(busy, [today, tomorrow], now)
        if slots:
            lines.append("")
            lines.append("AVAILABLE TIME SLOTS (9 AM - 5 PM):")
            for s, e in slots:
                label = "Today" if s.date() == today else "Tomorrow"
                lines.append(f"- {label}, {s:%I:%M %p} - {e:%I:%M %p}")
        return "\n".join(lines) + "\n"

    async def execute(
        self,
        user_id: int,
        user_email: str,
        instruction: StandingInstruction,
        kind: SourceKind,
        row: dict[str, Any],
    ) -> TurnResult | None:
        external_id = row["external_id"]
        item_text = canonical_text(kind, row)
        try:
            prompt = _EXECUTION_PROMPT.format(
                instruction=instruction.instruction,
                item_label=ITEM_LABELS[kind],
                item=item_text,
                calendar=await self.calendar_context(user_id, instruction.instruction),
                user_email=user_email or "unknown",
            )
            turn = await self._orchestrator.run_tool_turn(
                user_id, _EXECUTION_SYSTEM, [{"role": "user", "content": prompt}]
            )
        except Exception as e:
            logger.error("Executing instruction %d failed: %s", instruction.id, e, exc_info=True)
            await self._log_error(user_id, instruction, kind, external_id, str(e))
            return None

        if turn.failed and not turn.tool_outcomes:
            await self._log_error(user_id, instruction, kind, external_id, "Model call failed")
            return turn

        if not turn.tool_outcomes:
            logger.warning(
                "No tool calls for instruction %d on %s. Response: %s",
                instruction.id, external_id, turn.answer[:200],
            )
            return turn

        subject = _item_subject(kind, row)
        for outcome in turn.tool_outcomes:
            await self._activities.add(AgentActivity(
                user_id=user_id,
                activity_type=activity_type(outcome.call.name),
                description=f"Executed {outcome.call.name} for {subject}",
                details=json.dumps(outcome.call.arguments, default=str),
                triggered_by_external_id=external_id,
                instruction_id=instruction.id,
                status="Success" if outcome.ok else "Failed",
                error_message=None if outcome.ok else outcome.result,
            ))
        await self._instructions.record_execution(instruction.id)
        logger.info(
            "Instruction %d executed on %s with %d tool call(s)",
            instruction.id, external_id, len(turn.tool_outcomes),
        )
        return turn

    async def _log_error(
        self,
        user_id: int,
        instruction: StandingInstruction,
        kind: SourceKind,
        external_id: str,
        message: str,
    ) -> None:
        await self._activities.add(AgentActivity(
            user_id=user_id,
            activity_type="Error",
            description=f"Failed to execute instruction for {ITEM_LABELS[kind].lower()} {external_id}",
            triggered_by_external_id=external_id,
            instruction_id=instruction.id,
            status="Failed",
            error_message=message,
        ))


def _item_subject(kind: SourceKind, row: dict[str, Any]) -> str:
    match kind:
        case SourceKind.MAIL:
            return f"email from {row.get('from_addr') or 'unknown sender'}"
        case SourceKind.CALENDAR:
            return f"event '{row.get('summary') or row['external_id']}'"
        case SourceKind.CRM_CONTACTS:
            return f"contact {row.get('email') or row['external_id']}"
        case SourceKind.CRM_DEALS:
            return f"deal '{row.get('deal_name') or row['external_id']}'"
    return f"{kind.value} {row['external_id']}"
