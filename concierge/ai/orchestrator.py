"""
ConversationOrchestrator — retrieve context, let the model act, answer.

A turn moves through three states:

  Drafting               first model call with grounded prompt + tool catalog
  AwaitingToolResults    requested tool calls dispatched one at a time, in order
  Finalizing             second model call with the tool results appended

A Drafting reply without tool calls is the answer. Model failures never
reach the caller as exceptions; they become an apologetic answer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Callable
from zoneinfo import ZoneInfo

from ..config import settings
from ..models import ChatMessage, ContextItem
from .claude_client import ClaudeClient, ToolCall
from .tools.registry import ToolDispatcher, is_error
from .tools.schemas import ToolCatalog

if TYPE_CHECKING:
    from ..cache.chat import ChatStore
    from ..vector.retriever import Retriever

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a helpful assistant for a financial advisor.
You help manage client relationships, schedule meetings and answer questions about
clients using the advisor's email, calendar and CRM (HubSpot) data.
Be professional, concise and helpful. Refer to emails and events naturally
(e.g. "John emailed you on Oct 15...").
Use a tool only when the user asks for an action. Never invent e-mail addresses;
take them from the context below or ask.

Current date and time: {now}

Available tools:
{tools}

{context}"""

APOLOGY = "I'm sorry, I ran into a problem while working on that. Please try again in a moment."

_CONTEXT_CHARS = 1500  # per item


class TurnState(str, Enum):
    DRAFTING = "Drafting"
    AWAITING_TOOL_RESULTS = "AwaitingToolResults"
    FINALIZING = "Finalizing"


@dataclass
class ToolOutcome:
    call: ToolCall
    result: str

    @property
    def ok(self) -> bool:
        return not is_error(self.result)


@dataclass
class TurnResult:
    answer: str
    state: TurnState
    tool_outcomes: list[ToolOutcome] = field(default_factory=list)
    context: list[ContextItem] = field(default_factory=list)
    failed: bool = False


def format_context(items: list[ContextItem]) -> str:
    if not items:
        return "No relevant items were found in the user's email, calendar or CRM data."
    parts = ["RELEVANT CONTEXT FROM THE USER'S DATA:"]
    for item in items:
        content = item.content
        if len(content) > _CONTEXT_CHARS:
            content = content[:_CONTEXT_CHARS] + "..."
        parts.append(f"---\n[{item.item_type}]\n{content}")
    return "\n".join(parts)


def _default_clock() -> datetime:
    return datetime.now(ZoneInfo(settings.scheduler_timezone))


class ConversationOrchestrator:
    def __init__(
        self,
        claude: ClaudeClient,
        retriever: Retriever,
        dispatcher: ToolDispatcher,
        catalog: ToolCatalog | None = None,
        chat_store: ChatStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._claude = claude
        self._retriever = retriever
        self._dispatcher = dispatcher
        self._catalog = catalog or ToolCatalog()
        self._chat = chat_store
        self._clock = clock or _default_clock

    def build_system_prompt(self, context: list[ContextItem], extra: str = "") -> str:
        prompt = SYSTEM_PROMPT.format(
            now=self._clock().strftime("%A %d %B %Y, %H:%M %Z"),
            tools=self._catalog.describe(),
            context=format_context(context),
        )
        return f"{prompt}\n\n{extra}" if extra else prompt

    async def gather_context(self, user_id: int, query: str) -> list[ContextItem]:
        """Retriever first, keyword search if it raises, empty context as a last resort."""
        try:
            return await self._retriever.retrieve(user_id, query)
        except Exception as e:
            logger.warning("Retrieval failed for user %d, using keyword search: %s", user_id, e)
        try:
            return await self._retriever.keyword_search(user_id, query)
        except Exception as e:
            logger.error("Keyword search failed for user %d: %s", user_id, e, exc_info=True)
            return []

    async def respond(
        self,
        user_id: int,
        message: str,
        history: list[ChatMessage] | None = None,
    ) -> TurnResult:
        """Answer one user message given prior turns (oldest first)."""
        context = await self.gather_context(user_id, message)
        system = self.build_system_prompt(context)

        window = (history or [])[-settings.chat_history_window:]
        messages = [{"role": m.role, "content": m.content} for m in window]
        messages.append({"role": "user", "content": message})

        result = await self.run_tool_turn(user_id, system, messages)
        result.context = context
        return result

    async def run_tool_turn(self, user_id: int, system: str, messages: list[dict]) -> TurnResult:
        """Drafting → (AwaitingToolResults → Finalizing). Also used without a human in the loop."""
        tools = self._catalog.schemas
        state = TurnState.DRAFTING
        try:
            draft = await self._claude.create_message(messages, system=system, tools=tools)
        except Exception as e:
            logger.error("Model call failed while drafting for user %d: %s", user_id, e, exc_info=True)
            return TurnResult(answer=APOLOGY, state=state, failed=True)

        if not draft.wants_tools:
            return TurnResult(answer=draft.content, state=state)

        state = TurnState.AWAITING_TOOL_RESULTS
        conversation = list(messages)
        conversation.append({"role": "assistant", "content": draft.assistant_blocks})

        outcomes: list[ToolOutcome] = []
        result_blocks: list[dict] = []
        for call in draft.tool_calls:
            logger.info("Executing tool %s (id=%s) for user %d", call.name, call.id, user_id)
            result = await self._dispatcher.execute(user_id, call.name, call.arguments)
            outcomes.append(ToolOutcome(call=call, result=result))
            result_blocks.append({
                "type": "tool_result",
                "tool_use_id": call.id,
                "content": result,
                "is_error": is_error(result),
            })
        conversation.append({"role": "user", "content": result_blocks})

        state = TurnState.FINALIZING
        try:
            final = await self._claude.create_message(conversation, system=system, tools=tools)
        except Exception as e:
            logger.error("Model call failed while finalizing for user %d: %s", user_id, e, exc_info=True)
            summary = "\n".join(o.result for o in outcomes)
            return TurnResult(
                answer=f"{APOLOGY}\n\nActions taken:\n{summary}",
                state=state,
                tool_outcomes=outcomes,
                failed=True,
            )

        answer = final.content or "\n".join(o.result for o in outcomes)
        if final.wants_tools:
            logger.warning(
                "Model requested %d more tool call(s) while finalizing; not executed",
                len(final.tool_calls),
            )
        return TurnResult(answer=answer, state=state, tool_outcomes=outcomes)

    async def chat(self, user_id: int, message: str) -> TurnResult:
        """Load capped history, run one turn, persist both sides."""
        if self._chat is None:
            return await self.respond(user_id, message)
        history = await self._chat.recent(user_id, settings.chat_history_window)
        result = await self.respond(user_id, message, history)
        await self._chat.add_message(user_id, "user", message)
        await self._chat.add_message(user_id, "assistant", result.answer)
        return result
