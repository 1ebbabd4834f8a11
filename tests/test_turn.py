"""
Tests for the Turn state machine.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from agent_runtime.agent.events import (
    ContentDelta,
    LLMStreamEnd,
    LLMStreamStart,
    ToolCallComplete,
    ToolCallError,
    ToolCallPending,
    ToolCallStart,
    TurnComplete,
)
from agent_runtime.agent.turn import Turn, TurnState, format_tool_output
from agent_runtime.conversation.items import MessageItem, ToolCallItem, ToolResultItem
from agent_runtime.errors import ToolExecutionError, ToolNotFoundError, TurnCancelledError
from agent_runtime.llm.base import (
    ContentChunk,
    DoneChunk,
    FunctionCall,
    FunctionCallChunk,
    LLMRequest,
    ThinkingChunk,
    Usage,
)
from agent_runtime.tools.base import Tool, ToolParameter, ToolResult
from agent_runtime.tools.registry import ToolRegistry


def stream_of(*chunks):
    async def gen():
        for chunk in chunks:
            yield chunk
    return gen()


def make_llm(*chunks) -> MagicMock:
    llm = MagicMock()
    llm.stream = MagicMock(return_value=stream_of(*chunks))
    return llm


def make_turn(llm, registry=None) -> Turn:
    request = LLMRequest(items=[MessageItem(role="user", content="Hi")])
    return Turn(llm, registry or ToolRegistry(), request, session_id="session-1")


async def collect(turn: Turn) -> list:
    return [event async for event in turn.execute()]


@pytest.mark.asyncio
async def test_turn_event_order_without_tools():
    """Test a plain text response."""
    usage = Usage(prompt_tokens=10, completion_tokens=5, total_tokens=15)
    llm = make_llm(ContentChunk(delta="Hello!"), DoneChunk(finish_reason="stop", usage=usage))
    turn = make_turn(llm)

    events = await collect(turn)

    assert [e.type for e in events] == [
        "llm_stream_start", "content_delta", "llm_stream_end", "turn_complete",
    ]
    assert isinstance(events[0], LLMStreamStart)
    assert events[1] == ContentDelta(delta="Hello!")
    assert events[2] == LLMStreamEnd(usage=usage, finish_reason="stop")
    assert events[3] == TurnComplete(should_continue=False)
    assert turn.get_state() == TurnState.COMPLETED
    assert turn.content == "Hello!"
    assert turn.usage == usage


@pytest.mark.asyncio
async def test_turn_passes_signal_to_stream():
    """Test the model stream receives the Turn's cancellation signal."""
    llm = make_llm(DoneChunk())
    turn = make_turn(llm)

    await collect(turn)

    llm.stream.assert_called_once_with(turn.request, signal=turn.signal)


@pytest.mark.asyncio
async def test_turn_thinking_delta():
    """Test thinking chunks surface as their own events."""
    llm = make_llm(ThinkingChunk(delta="hmm"), ContentChunk(delta="Answer"), DoneChunk())
    turn = make_turn(llm)

    events = await collect(turn)

    assert [e.type for e in events][:3] == ["llm_stream_start", "thinking_delta", "content_delta"]
    assert turn.content == "Answer"


@pytest.mark.asyncio
async def test_turn_synthesizes_stream_end():
    """Test a stream without a done chunk still reports its end."""
    llm = make_llm(ContentChunk(delta="partial"))
    turn = make_turn(llm)

    events = await collect(turn)

    assert [e.type for e in events] == [
        "llm_stream_start", "content_delta", "llm_stream_end", "turn_complete",
    ]
    assert events[2].usage == Usage()


@pytest.mark.asyncio
async def test_turn_sequential_tool_execution():
    """Test tool calls run one at a time in declared order."""
    llm = make_llm(
        FunctionCallChunk(call=FunctionCall(id="call_1", name="first", params={"n": 1})),
        FunctionCallChunk(call=FunctionCall(id="call_2", name="second", params={"n": 2})),
        DoneChunk(finish_reason="tool_use"),
    )
    registry = MagicMock()
    registry.execute = AsyncMock(side_effect=["one", "two"])
    turn = make_turn(llm, registry)

    events = await collect(turn)

    assert [e.type for e in events] == [
        "llm_stream_start",
        "tool_call_pending",
        "tool_call_pending",
        "llm_stream_end",
        "tool_call_start",
        "tool_call_complete",
        "tool_call_start",
        "tool_call_complete",
        "turn_complete",
    ]
    starts = [e for e in events if isinstance(e, ToolCallStart)]
    assert [e.call_id for e in starts] == ["call_1", "call_2"]
    assert registry.execute.await_count == 2
    assert [c.args[0] for c in registry.execute.call_args_list] == ["first", "second"]
    assert events[-1] == TurnComplete(should_continue=True)
    assert turn.get_state() == TurnState.COMPLETED


@pytest.mark.asyncio
async def test_turn_tool_context():
    """Test tools receive call, turn and session ids plus the signal."""
    llm = make_llm(FunctionCallChunk(call=FunctionCall(id="call_7", name="lookup")), DoneChunk())
    registry = MagicMock()
    registry.execute = AsyncMock(return_value="ok")
    turn = make_turn(llm, registry)

    await collect(turn)

    name, params, context = registry.execute.call_args.args
    assert name == "lookup"
    assert params == {}
    assert context.call_id == "call_7"
    assert context.turn_id == turn.id
    assert context.session_id == "session-1"
    assert context.signal is turn.signal


@pytest.mark.asyncio
async def test_turn_tool_complete_event():
    """Test a real registry call reports result and duration."""
    async def add(a: int, b: int) -> int:
        return a + b

    registry = ToolRegistry([
        Tool(
            name="add",
            description="Add two numbers",
            parameters=[
                ToolParameter(name="a", param_type="integer", description="First"),
                ToolParameter(name="b", param_type="integer", description="Second"),
            ],
            handler=add,
        )
    ])
    llm = make_llm(FunctionCallChunk(call=FunctionCall(id="c1", name="add", params={"a": 2, "b": 3})), DoneChunk())
    turn = make_turn(llm, registry)

    events = await collect(turn)

    complete = next(e for e in events if isinstance(e, ToolCallComplete))
    assert complete.result == 5
    assert complete.duration >= 0
    assert turn.get_output_items()[-1] == ToolResultItem(call_id="c1", name="add", output="5")


@pytest.mark.asyncio
async def test_turn_tool_error_does_not_fail_turn():
    """Test a failing tool is reported and the next call still runs."""
    llm = make_llm(
        FunctionCallChunk(call=FunctionCall(id="call_1", name="missing")),
        FunctionCallChunk(call=FunctionCall(id="call_2", name="works")),
        DoneChunk(),
    )
    registry = MagicMock()
    registry.execute = AsyncMock(side_effect=[ToolNotFoundError("missing"), "fine"])
    turn = make_turn(llm, registry)

    events = await collect(turn)

    errors = [e for e in events if isinstance(e, ToolCallError)]
    assert len(errors) == 1
    assert errors[0].call_id == "call_1"
    assert isinstance(errors[0].error, ToolNotFoundError)
    assert any(isinstance(e, ToolCallComplete) and e.call_id == "call_2" for e in events)
    assert turn.get_state() == TurnState.COMPLETED

    results = [item for item in turn.get_output_items() if isinstance(item, ToolResultItem)]
    assert results[0].output == "Error: Tool 'missing' not found"
    assert results[1].output == "fine"


@pytest.mark.asyncio
async def test_turn_tool_failure_result_becomes_error_event():
    """Test a ToolResult with success=False is surfaced as an error."""
    llm = make_llm(FunctionCallChunk(call=FunctionCall(id="c1", name="search")), DoneChunk())
    registry = MagicMock()
    registry.execute = AsyncMock(return_value=ToolResult(success=False, error="rate limited"))
    turn = make_turn(llm, registry)

    events = await collect(turn)

    error = next(e for e in events if isinstance(e, ToolCallError))
    assert isinstance(error.error, ToolExecutionError)
    assert error.error.tool_name == "search"
    assert turn.get_output_items()[-1].output == "Error: rate limited"


@pytest.mark.asyncio
async def test_turn_stream_error_fails_and_cleans_up():
    """Test a model stream failure ends the Turn as FAILED after cleanup."""
    async def broken():
        yield ContentChunk(delta="Hel")
        raise RuntimeError("connection reset")

    llm = MagicMock()
    llm.stream = MagicMock(return_value=broken())
    turn = make_turn(llm)
    cleanup = MagicMock()
    turn.on_cleanup(cleanup)

    with pytest.raises(RuntimeError, match="connection reset"):
        await collect(turn)

    assert turn.get_state() == TurnState.FAILED
    cleanup.assert_called_once()


@pytest.mark.asyncio
async def test_turn_cleanup_runs_once_on_success():
    """Test sync and async cleanup callbacks run exactly once."""
    llm = make_llm(ContentChunk(delta="Hi"), DoneChunk())
    turn = make_turn(llm)
    sync_cleanup = MagicMock()
    async_cleanup = AsyncMock()
    turn.on_cleanup(sync_cleanup)
    turn.on_cleanup(async_cleanup)

    await collect(turn)
    await turn.cancel()

    sync_cleanup.assert_called_once()
    async_cleanup.assert_awaited_once()


@pytest.mark.asyncio
async def test_turn_cleanup_error_is_logged_not_raised():
    """Test a broken cleanup callback does not break the Turn."""
    llm = make_llm(DoneChunk())
    turn = make_turn(llm)
    turn.on_cleanup(MagicMock(side_effect=Exception("boom")))
    after = MagicMock()
    turn.on_cleanup(after)

    await collect(turn)

    assert turn.get_state() == TurnState.COMPLETED
    after.assert_called_once()


@pytest.mark.asyncio
async def test_turn_cancel_mid_stream():
    """Test cancelling while streaming stops the Turn."""
    llm = make_llm(
        ContentChunk(delta="one"),
        ContentChunk(delta="two"),
        DoneChunk(),
    )
    turn = make_turn(llm)
    cleanup = MagicMock()
    turn.on_cleanup(cleanup)
    seen = []

    with pytest.raises(TurnCancelledError):
        async for event in turn.execute():
            seen.append(event)
            if isinstance(event, ContentDelta):
                await turn.cancel("user pressed stop")

    assert [e.type for e in seen] == ["llm_stream_start", "content_delta"]
    assert turn.get_state() == TurnState.CANCELLED
    assert turn.signal.cancelled
    cleanup.assert_called_once()


@pytest.mark.asyncio
async def test_turn_cancel_before_execute():
    """Test a Turn cancelled up front never calls the model."""
    llm = make_llm(DoneChunk())
    turn = make_turn(llm)

    await turn.cancel()

    with pytest.raises(TurnCancelledError):
        await collect(turn)
    assert turn.get_state() == TurnState.CANCELLED
    llm.stream.assert_not_called()


@pytest.mark.asyncio
async def test_turn_cancel_during_tool_skips_remaining_calls():
    """Test cancellation observed between tool calls stops the Turn."""
    llm = make_llm(
        FunctionCallChunk(call=FunctionCall(id="call_1", name="slow")),
        FunctionCallChunk(call=FunctionCall(id="call_2", name="slow")),
        DoneChunk(),
    )
    turn = make_turn(llm, MagicMock())

    async def execute(name, params, context):
        await turn.cancel()
        return "partial"

    turn.tool_registry.execute = AsyncMock(side_effect=execute)
    seen = []

    with pytest.raises(TurnCancelledError):
        async for event in turn.execute():
            seen.append(event.type)

    assert seen == ["llm_stream_start", "tool_call_pending", "tool_call_pending", "llm_stream_end", "tool_call_start"]
    assert turn.tool_registry.execute.await_count == 1
    assert turn.get_state() == TurnState.CANCELLED
    assert turn.get_output_items() == []


@pytest.mark.asyncio
async def test_turn_closes_model_stream_on_cancel():
    """Test the model stream is closed before cancellation reaches the consumer."""
    closed = []

    async def tracked():
        try:
            yield ContentChunk(delta="one")
            yield ContentChunk(delta="two")
            yield DoneChunk()
        finally:
            closed.append(True)

    llm = MagicMock()
    llm.stream = MagicMock(return_value=tracked())
    turn = make_turn(llm)

    with pytest.raises(TurnCancelledError):
        async for event in turn.execute():
            if isinstance(event, ContentDelta):
                await turn.cancel()
                assert closed == []

    assert closed == [True]


@pytest.mark.asyncio
async def test_turn_closes_model_stream_when_consumer_stops():
    """Test closing the event iterator early also closes the model stream."""
    closed = []

    async def tracked():
        try:
            yield ContentChunk(delta="one")
            yield DoneChunk()
        finally:
            closed.append(True)

    llm = MagicMock()
    llm.stream = MagicMock(return_value=tracked())
    turn = make_turn(llm)

    events = turn.execute()
    async for event in events:
        if isinstance(event, ContentDelta):
            break
    await events.aclose()

    assert closed == [True]
    assert turn.get_state() == TurnState.CANCELLED


@pytest.mark.asyncio
async def test_cancel_completed_turn_is_noop():
    """Test cancelling a finished Turn leaves its state alone."""
    llm = make_llm(ContentChunk(delta="Done"), DoneChunk())
    turn = make_turn(llm)
    await collect(turn)

    await turn.cancel()

    assert turn.get_state() == TurnState.COMPLETED
    assert not turn.signal.cancelled


@pytest.mark.asyncio
async def test_turn_consumer_task_cancelled():
    """Test cancelling the consuming task marks the Turn CANCELLED."""
    async def hanging():
        yield ContentChunk(delta="start")
        await asyncio.sleep(10)
        yield DoneChunk()

    llm = MagicMock()
    llm.stream = MagicMock(return_value=hanging())
    turn = make_turn(llm)
    cleanup = MagicMock()
    turn.on_cleanup(cleanup)

    task = asyncio.create_task(collect(turn))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert turn.get_state() == TurnState.CANCELLED
    cleanup.assert_called_once()


@pytest.mark.asyncio
async def test_turn_execute_twice_raises():
    """Test the event sequence cannot be restarted."""
    llm = make_llm(DoneChunk())
    turn = make_turn(llm)
    await collect(turn)

    with pytest.raises(RuntimeError):
        turn.execute()


@pytest.mark.asyncio
async def test_turn_output_items_order():
    """Test output items group the message, calls and results."""
    llm = make_llm(
        ContentChunk(delta="Let me check both."),
        FunctionCallChunk(call=FunctionCall(id="a", name="lookup", params={"k": 1})),
        FunctionCallChunk(call=FunctionCall(id="b", name="lookup", params={"k": 2})),
        DoneChunk(),
    )
    registry = MagicMock()
    registry.execute = AsyncMock(side_effect=[{"v": 1}, "two"])
    turn = make_turn(llm, registry)

    events = await collect(turn)
    pending = [e for e in events if isinstance(e, ToolCallPending)]
    assert pending[0].params == {"k": 1}

    assert turn.get_output_items() == [
        MessageItem(role="assistant", content="Let me check both."),
        ToolCallItem(call_id="a", name="lookup", arguments={"k": 1}),
        ToolCallItem(call_id="b", name="lookup", arguments={"k": 2}),
        ToolResultItem(call_id="a", name="lookup", output='{"v": 1}'),
        ToolResultItem(call_id="b", name="lookup", output="two"),
    ]


def test_format_tool_output():
    """Test how tool return values become result text."""
    assert format_tool_output("plain") == "plain"
    assert format_tool_output(ToolResult(success=True, output="done")) == "done"
    assert format_tool_output(ToolResult(success=False, error="nope")) == "Error: nope"
    assert format_tool_output([1, 2]) == "[1, 2]"
