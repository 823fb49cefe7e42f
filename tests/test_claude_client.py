"""Tests for concierge/ai/claude_client.py with a mocked AsyncAnthropic."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import pytest

from concierge.ai.claude_client import ClaudeClient


def _response(*blocks, stop_reason="end_turn"):
    return SimpleNamespace(content=list(blocks), stop_reason=stop_reason)


def _text(text):
    return SimpleNamespace(type="text", text=text)


def _tool_use(id, name, input):
    return SimpleNamespace(type="tool_use", id=id, name=name, input=input)


def _status_error(cls, status):
    response = MagicMock()
    response.status_code = status
    return cls("failure", response=response, body=None)


@pytest.fixture
def sdk():
    client = MagicMock()
    client.messages.create = AsyncMock()
    return client


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr("concierge.ai.claude_client.asyncio.sleep", sleep)
    return sleep


@pytest.mark.asyncio
async def test_text_reply(sdk):
    sdk.messages.create.return_value = _response(_text("Hello "), _text("there"))

    reply = await ClaudeClient(sdk).create_message([{"role": "user", "content": "hi"}], system="s")

    assert reply.content == "Hello there"
    assert not reply.wants_tools
    kwargs = sdk.messages.create.await_args.kwargs
    assert kwargs["system"] == "s"
    assert "tools" not in kwargs


@pytest.mark.asyncio
async def test_tool_use_reply_keeps_blocks(sdk):
    sdk.messages.create.return_value = _response(
        _text("Let me send that."),
        _tool_use("tu_1", "send_email", {"to": "a@b.com"}),
        stop_reason="tool_use",
    )

    reply = await ClaudeClient(sdk).create_message([], system="s", tools=[{"name": "send_email"}])

    assert reply.wants_tools
    assert reply.tool_calls[0].name == "send_email"
    assert reply.tool_calls[0].arguments == {"to": "a@b.com"}
    assert reply.assistant_blocks[1] == {
        "type": "tool_use", "id": "tu_1", "name": "send_email", "input": {"to": "a@b.com"},
    }
    assert reply.stop_reason == "tool_use"


@pytest.mark.asyncio
async def test_complete_uses_decision_model(sdk):
    sdk.messages.create.return_value = _response(_text("YES"))

    answer = await ClaudeClient(sdk).complete([{"role": "user", "content": "?"}], system="s",
                                              max_tokens=100)

    assert answer == "YES"
    kwargs = sdk.messages.create.await_args.kwargs
    assert kwargs["model"] == "claude-haiku-4-5-20251001"
    assert kwargs["max_tokens"] == 100


@pytest.mark.asyncio
async def test_overload_retried_then_succeeds(sdk, no_sleep):
    sdk.messages.create.side_effect = [
        _status_error(anthropic.InternalServerError, 529),
        _response(_text("ok")),
    ]

    reply = await ClaudeClient(sdk).create_message([], system="s")

    assert reply.content == "ok"
    assert sdk.messages.create.await_count == 2
    no_sleep.assert_awaited_once()


@pytest.mark.asyncio
async def test_rate_limit_uses_long_delay(sdk, no_sleep):
    sdk.messages.create.side_effect = [
        _status_error(anthropic.RateLimitError, 429),
        _response(_text("ok")),
    ]

    await ClaudeClient(sdk).create_message([], system="s")

    assert no_sleep.await_args.args[0] == 30.0


@pytest.mark.asyncio
async def test_client_error_not_retried(sdk):
    sdk.messages.create.side_effect = _status_error(anthropic.BadRequestError, 400)

    with pytest.raises(anthropic.BadRequestError):
        await ClaudeClient(sdk).create_message([], system="s")
    assert sdk.messages.create.await_count == 1


@pytest.mark.asyncio
async def test_retries_exhausted_raise(sdk):
    sdk.messages.create.side_effect = _status_error(anthropic.InternalServerError, 500)

    with pytest.raises(anthropic.InternalServerError):
        await ClaudeClient(sdk).create_message([], system="s")
    assert sdk.messages.create.await_count == 3
