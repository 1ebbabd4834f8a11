"""
Tests for LLM provider adapters.
"""

from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, MagicMock

from agent_runtime.conversation.items import MessageItem, ToolCallItem, ToolResultItem
from agent_runtime.llm.anthropic import AnthropicLLM
from agent_runtime.llm.base import (
    BaseLLM,
    ContentChunk,
    DoneChunk,
    FunctionCall,
    FunctionCallChunk,
    LLMRequest,
    ThinkingChunk,
    ToolDefinition,
    Usage,
    parse_arguments,
)
from agent_runtime.llm.openai import OpenAILLM


def tool_log() -> list:
    return [
        MessageItem(role="system", content="Summary: earlier chat"),
        MessageItem(role="user", content="Weather in Paris and Rome?"),
        MessageItem(role="assistant", content="Checking both."),
        ToolCallItem(call_id="c1", name="weather", arguments={"city": "Paris"}),
        ToolCallItem(call_id="c2", name="weather", arguments={"city": "Rome"}),
        ToolResultItem(call_id="c1", name="weather", output="Sunny"),
        ToolResultItem(call_id="c2", name="weather", output="Rain"),
    ]


class ScriptedLLM(BaseLLM):
    """Replays fixed chunks."""

    def __init__(self, chunks):
        super().__init__(api_key="", model="scripted")
        self.chunks = chunks

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def stream(self, request, signal=None):
        for chunk in self.chunks:
            yield chunk


def test_parse_arguments():
    """Test streamed argument decoding."""
    assert parse_arguments('{"a": 1}') == {"a": 1}
    assert parse_arguments("") == {}
    assert parse_arguments("{not json") == {}
    assert parse_arguments("[1, 2]") == {}


@pytest.mark.asyncio
async def test_base_generate_drains_stream():
    """Test generate() collects a stream into one response."""
    call = FunctionCall(id="c1", name="lookup", params={"k": "v"})
    llm = ScriptedLLM([
        ContentChunk(delta="Hello "),
        ThinkingChunk(delta="ignored"),
        ContentChunk(delta="world"),
        FunctionCallChunk(call=call),
        DoneChunk(finish_reason="stop", usage=Usage(prompt_tokens=3, completion_tokens=2, total_tokens=5)),
    ])

    response = await llm.generate(LLMRequest(items=[]))

    assert response.content == "Hello world"
    assert response.tool_calls == [call]
    assert response.usage.total_tokens == 5
    assert response.finish_reason == "stop"
    assert response.model == "scripted"


def test_anthropic_convert_items():
    """Test the item log maps to Anthropic blocks."""
    llm = AnthropicLLM(api_key="test_key")

    system, messages = llm._convert_items(tool_log())

    assert system == "Summary: earlier chat"
    assert messages[0] == {"role": "user", "content": "Weather in Paris and Rome?"}
    assert messages[1]["role"] == "assistant"
    assert messages[1]["content"][0] == {"type": "text", "text": "Checking both."}
    assert [b["id"] for b in messages[1]["content"][1:]] == ["c1", "c2"]
    assert messages[2]["role"] == "user"
    assert [b["tool_use_id"] for b in messages[2]["content"]] == ["c1", "c2"]
    assert len(messages) == 3


def test_anthropic_build_kwargs_merges_system_prompt():
    """Test request and item system text are combined."""
    llm = AnthropicLLM(api_key="test_key")
    request = LLMRequest(
        items=tool_log()[:2],
        tools=[ToolDefinition(name="weather", description="Weather", parameters={"type": "object"})],
        system_prompt="Be brief",
    )

    kwargs = llm._build_kwargs(request)

    assert kwargs["system"] == "Be brief\n\nSummary: earlier chat"
    assert kwargs["tools"][0]["input_schema"] == {"type": "object"}


def test_openai_convert_items():
    """Test the item log maps to OpenAI chat messages."""
    llm = OpenAILLM(api_key="test_key")

    messages = llm._convert_items(tool_log())

    assert messages[0] == {"role": "system", "content": "Summary: earlier chat"}
    assert messages[2]["role"] == "assistant"
    assert messages[2]["content"] == "Checking both."
    assert [tc["id"] for tc in messages[2]["tool_calls"]] == ["c1", "c2"]
    assert messages[2]["tool_calls"][0]["function"]["arguments"] == '{"city": "Paris"}'
    assert messages[3] == {"role": "tool", "tool_call_id": "c1", "content": "Sunny"}
    assert messages[4] == {"role": "tool", "tool_call_id": "c2", "content": "Rain"}


def openai_chunk(content=None, tool_calls=None, finish_reason=None, usage=None, choices=True):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)] if choices else [],
        usage=usage,
    )


def tool_delta(index, id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments))


@pytest.mark.asyncio
async def test_openai_stream_normalizes_chunks():
    """Test content, fragmented tool calls and usage come out normalized."""
    async def raw_stream():
        yield openai_chunk(content="Let me check")
        yield openai_chunk(tool_calls=[tool_delta(0, id="call_a", name="weather", arguments='{"ci')])
        yield openai_chunk(tool_calls=[tool_delta(0, arguments='ty": "Paris"}')])
        yield openai_chunk(tool_calls=[tool_delta(1, id="call_b", name="time", arguments="{}")])
        yield openai_chunk(finish_reason="tool_calls")
        yield openai_chunk(
            choices=False,
            usage=SimpleNamespace(prompt_tokens=12, completion_tokens=8, total_tokens=20),
        )

    llm = OpenAILLM(api_key="test_key")
    llm.client = MagicMock()
    llm.client.chat.completions.create = AsyncMock(return_value=raw_stream())

    chunks = [chunk async for chunk in llm.stream(LLMRequest(items=tool_log()[1:2]))]

    assert chunks[0] == ContentChunk(delta="Let me check")
    calls = [c.call for c in chunks if isinstance(c, FunctionCallChunk)]
    assert calls == [
        FunctionCall(id="call_a", name="weather", params={"city": "Paris"}),
        FunctionCall(id="call_b", name="time", params={}),
    ]
    assert chunks[-1] == DoneChunk(
        finish_reason="tool_calls",
        usage=Usage(prompt_tokens=12, completion_tokens=8, total_tokens=20),
    )

    kwargs = llm.client.chat.completions.create.call_args.kwargs
    assert kwargs["stream"] is True
    assert kwargs["stream_options"] == {"include_usage": True}
