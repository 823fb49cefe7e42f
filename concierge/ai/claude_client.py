"""
Anthropic Claude API client.
Includes exponential backoff on rate-limit and overload errors.

`create_message()` is the completion contract the orchestrator relies on:
it returns either plain content or the tool calls the model requested,
plus the raw assistant blocks needed to continue the conversation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

import anthropic

from ..config import settings

logger = logging.getLogger(__name__)

# Rate-limit retries use longer delays since the window resets every 60s
_RATE_LIMIT_RETRY_DELAYS = [30.0, 60.0]  # seconds between attempts 1→2 and 2→3


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""
    id: str
    name: str
    arguments: dict = field(default_factory=dict)


@dataclass
class ModelReply:
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    # The assistant message content blocks, for history reconstruction
    assistant_blocks: list[dict] = field(default_factory=list)
    stop_reason: str | None = None

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


class ClaudeClient:
    def __init__(self, client: anthropic.AsyncAnthropic | None = None) -> None:
        self._client = client or anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        self._max_retries = settings.claude_max_retries
        self._base_delay = settings.claude_retry_base_delay

    async def _create_with_retry(self, **kwargs):
        for attempt in range(self._max_retries):
            try:
                return await self._client.messages.create(**kwargs)
            except anthropic.RateLimitError:
                delay = (
                    _RATE_LIMIT_RETRY_DELAYS[attempt]
                    if attempt < len(_RATE_LIMIT_RETRY_DELAYS) else 60.0
                )
                logger.warning(
                    "Rate limited (attempt %d/%d). Retrying in %.0fs",
                    attempt + 1, self._max_retries, delay,
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(delay)
                else:
                    raise
            except anthropic.APIStatusError as e:
                if e.status_code < 500:
                    raise
                delay = self._base_delay * (2 ** attempt)
                logger.warning(
                    "Anthropic overload %d (attempt %d/%d). Retrying in %.1fs",
                    e.status_code, attempt + 1, self._max_retries, delay,
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(delay)
                else:
                    raise
        raise RuntimeError("Retry loop completed without result or error")

    async def create_message(
        self,
        messages: list[dict],
        system: str,
        tools: list[dict] | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> ModelReply:
        """One round trip: returns text content and any requested tool calls."""
        kwargs: dict = {
            "model": model or settings.model_chat,
            "max_tokens": max_tokens or settings.anthropic_max_tokens,
            "system": system,
            "messages": messages,
        }
        if tools:
            kwargs["tools"] = tools

        response = await self._create_with_retry(**kwargs)

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        blocks: list[dict] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
                blocks.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=block.input))
                blocks.append({
                    "type": "tool_use",
                    "id": block.id,
                    "name": block.name,
                    "input": block.input,
                })
        return ModelReply(
            content="".join(text_parts),
            tool_calls=tool_calls,
            assistant_blocks=blocks,
            stop_reason=response.stop_reason,
        )

    async def complete(
        self,
        messages: list[dict],
        system: str,
        model: str | None = None,
        max_tokens: int = 256,
    ) -> str:
        """
        Non-tool completion — for applicability decisions and short answers.
        Returns the full response text.
        """
        reply = await self.create_message(
            messages, system=system, model=model or settings.model_decision, max_tokens=max_tokens
        )
        return reply.content
