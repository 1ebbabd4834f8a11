"""
Turn - one model stream plus the tool calls it requests.

State machine::

    INIT -> LLM_CALLING -> [TOOL_EXECUTING] -> COMPLETED | FAILED | CANCELLED

A Turn never loops back to the model itself. When tools ran, the final
``TurnComplete`` event carries ``should_continue=True`` and the host starts
a follow-up Turn with the tool results in its request.
"""

import asyncio
import contextlib
import inspect
import json
import time
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Union
from uuid import uuid4

import structlog

from ..cancellation import CancellationToken
from ..conversation.items import Item, MessageItem, ToolCallItem, ToolResultItem
from ..errors import ToolExecutionError, TurnCancelledError
from ..llm.base import (
    BaseLLM,
    ContentChunk,
    DoneChunk,
    FunctionCall,
    FunctionCallChunk,
    LLMRequest,
    ThinkingChunk,
    Usage,
)
from ..tools.base import ToolContext, ToolResult
from ..tools.registry import ToolRegistry
from .events import (
    ContentDelta,
    LLMStreamEnd,
    LLMStreamStart,
    ThinkingDelta,
    ToolCallComplete,
    ToolCallError,
    ToolCallPending,
    ToolCallStart,
    TurnComplete,
    TurnEvent,
)

logger = structlog.get_logger()

CleanupCallback = Callable[[], Union[None, Awaitable[None]]]


class TurnState(str, Enum):
    """Lifecycle states of a Turn."""

    INIT = "init"
    LLM_CALLING = "llm_calling"
    TOOL_EXECUTING = "tool_executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({TurnState.COMPLETED, TurnState.FAILED, TurnState.CANCELLED})


def format_tool_output(result: Any) -> str:
    """Render a tool's return value as the text stored in a tool result item."""
    if isinstance(result, ToolResult):
        return result.output if result.success else f"Error: {result.error}"
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, default=str)
    except (TypeError, ValueError):
        return str(result)


class Turn:
    """A single cancellable execution against the model and the tool registry."""

    def __init__(
        self,
        llm: BaseLLM,
        tool_registry: ToolRegistry,
        request: LLMRequest,
        session_id: str,
    ):
        self.id = str(uuid4())
        self.llm = llm
        self.tool_registry = tool_registry
        self.request = request
        self.session_id = session_id

        self._state = TurnState.INIT
        self._signal = CancellationToken()
        self._cleanup_callbacks: list[CleanupCallback] = []
        self._cleaned_up = False
        self._started = False

        self._content_parts: list[str] = []
        self._calls: list[FunctionCall] = []
        self._results: dict[str, ToolResultItem] = {}
        self.usage: Usage | None = None

    @property
    def state(self) -> TurnState:
        return self._state

    def get_state(self) -> TurnState:
        return self._state

    @property
    def signal(self) -> CancellationToken:
        return self._signal

    @property
    def content(self) -> str:
        return "".join(self._content_parts)

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def execute(self) -> AsyncIterator[TurnEvent]:
        """Run the Turn, yielding lifecycle events.

        The returned iterator can only be consumed once.

        Raises:
            RuntimeError: if the Turn was already executed.
        """
        if self._started:
            raise RuntimeError(f"Turn {self.id} has already been executed")
        self._started = True
        return self._run()

    async def _run(self) -> AsyncIterator[TurnEvent]:
        try:
            self._signal.raise_if_cancelled()
            self._state = TurnState.LLM_CALLING
            yield LLMStreamStart()

            pending: list[FunctionCall] = []
            stream_ended = False
            async with contextlib.aclosing(self.llm.stream(self.request, signal=self._signal)) as stream:
                async for chunk in stream:
                    self._signal.raise_if_cancelled()

                    if isinstance(chunk, ContentChunk):
                        self._content_parts.append(chunk.delta)
                        yield ContentDelta(delta=chunk.delta)
                    elif isinstance(chunk, ThinkingChunk):
                        yield ThinkingDelta(delta=chunk.delta)
                    elif isinstance(chunk, FunctionCallChunk):
                        pending.append(chunk.call)
                        yield ToolCallPending(
                            call_id=chunk.call.id,
                            tool_name=chunk.call.name,
                            params=chunk.call.params,
                        )
                    elif isinstance(chunk, DoneChunk):
                        self.usage = chunk.usage
                        stream_ended = True
                        yield LLMStreamEnd(usage=chunk.usage, finish_reason=chunk.finish_reason)

            self._signal.raise_if_cancelled()
            if not stream_ended:
                self.usage = Usage()
                yield LLMStreamEnd(usage=self.usage)

            if pending:
                self._state = TurnState.TOOL_EXECUTING
                for call in pending:
                    self._signal.raise_if_cancelled()
                    yield ToolCallStart(call_id=call.id, tool_name=call.name)
                    yield await self._execute_tool(call)

            self._signal.raise_if_cancelled()
            self._state = TurnState.COMPLETED
            await self._cleanup()
            yield TurnComplete(should_continue=bool(pending))

        except TurnCancelledError:
            self._state = TurnState.CANCELLED
            logger.info("Turn cancelled", turn_id=self.id, session_id=self.session_id)
            raise
        except (asyncio.CancelledError, GeneratorExit):
            if not self.is_terminal:
                self._state = TurnState.CANCELLED
                self._signal.cancel("Turn consumer stopped")
            raise
        except Exception as e:
            if self._state != TurnState.CANCELLED:
                self._state = TurnState.FAILED
            logger.error("Turn failed", turn_id=self.id, session_id=self.session_id, error=str(e))
            raise
        finally:
            await self._cleanup()

    async def _execute_tool(self, call: FunctionCall) -> Union[ToolCallComplete, ToolCallError]:
        context = ToolContext(
            call_id=call.id,
            turn_id=self.id,
            session_id=self.session_id,
            signal=self._signal,
        )
        start = time.perf_counter()

        try:
            result = await self.tool_registry.execute(call.name, call.params, context)
        except TurnCancelledError:
            raise
        except Exception as e:
            self._signal.raise_if_cancelled()
            self._record_result(call, f"Error: {e}")
            return ToolCallError(call_id=call.id, tool_name=call.name, error=e)

        self._signal.raise_if_cancelled()
        duration = time.perf_counter() - start

        if isinstance(result, ToolResult) and not result.success:
            error = ToolExecutionError(result.error or "Tool reported failure", call.name)
            self._record_result(call, f"Error: {error}")
            return ToolCallError(call_id=call.id, tool_name=call.name, error=error)

        self._record_result(call, format_tool_output(result))
        return ToolCallComplete(call_id=call.id, tool_name=call.name, result=result, duration=duration)

    def _record_result(self, call: FunctionCall, output: str) -> None:
        self._calls.append(call)
        self._results[call.id] = ToolResultItem(call_id=call.id, name=call.name, output=output)

    def get_output_items(self) -> list[Item]:
        """Items to append to the session log for this Turn.

        The assistant message comes first, then the tool calls in the
        order the model issued them, then their results. Only calls that
        produced a result are included, so every call has its pair.
        """
        items: list[Item] = []
        if self.content:
            items.append(MessageItem(role="assistant", content=self.content))
        for call in self._calls:
            items.append(ToolCallItem(call_id=call.id, name=call.name, arguments=dict(call.params)))
        for call in self._calls:
            items.append(self._results[call.id])
        return items

    async def cancel(self, reason: str = "Turn was cancelled") -> None:
        """Request cancellation. A no-op once the Turn is terminal."""
        if self.is_terminal:
            return
        self._state = TurnState.CANCELLED
        self._signal.cancel(reason)
        await self._cleanup()

    def on_cleanup(self, callback: CleanupCallback) -> None:
        """Register a sync or async callback run once when the Turn ends."""
        self._cleanup_callbacks.append(callback)

    async def _cleanup(self) -> None:
        if self._cleaned_up:
            return
        self._cleaned_up = True

        for callback in self._cleanup_callbacks:
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Turn cleanup callback failed", turn_id=self.id, error=str(e))
