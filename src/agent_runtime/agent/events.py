"""
Lifecycle events emitted while a Turn (and the Agent loop around it) runs.
"""

from dataclasses import dataclass, field
from typing import Any, Literal, Union

from ..llm.base import Usage


@dataclass
class LLMStreamStart:
    type: Literal["llm_stream_start"] = field(default="llm_stream_start", init=False)


@dataclass
class ContentDelta:
    delta: str
    type: Literal["content_delta"] = field(default="content_delta", init=False)


@dataclass
class ThinkingDelta:
    delta: str
    type: Literal["thinking_delta"] = field(default="thinking_delta", init=False)


@dataclass
class ToolCallPending:
    call_id: str
    tool_name: str
    params: dict[str, Any]
    type: Literal["tool_call_pending"] = field(default="tool_call_pending", init=False)


@dataclass
class ToolCallStart:
    call_id: str
    tool_name: str
    type: Literal["tool_call_start"] = field(default="tool_call_start", init=False)


@dataclass
class ToolCallComplete:
    call_id: str
    tool_name: str
    result: Any
    duration: float  # seconds
    type: Literal["tool_call_complete"] = field(default="tool_call_complete", init=False)


@dataclass
class ToolCallError:
    call_id: str
    tool_name: str
    error: Exception
    type: Literal["tool_call_error"] = field(default="tool_call_error", init=False)


@dataclass
class LLMStreamEnd:
    usage: Usage
    finish_reason: str | None = None
    type: Literal["llm_stream_end"] = field(default="llm_stream_end", init=False)


@dataclass
class TurnComplete:
    should_continue: bool
    type: Literal["turn_complete"] = field(default="turn_complete", init=False)


TurnEvent = Union[
    LLMStreamStart,
    ContentDelta,
    ThinkingDelta,
    ToolCallPending,
    ToolCallStart,
    ToolCallComplete,
    ToolCallError,
    LLMStreamEnd,
    TurnComplete,
]


@dataclass
class AgentMetrics:
    """Usage and timing for one ``Agent.chat`` call."""

    tokens_used: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    item_count: int = 0
    turn_count: int = 0
    max_turns: int = 0
    duration: float = 0.0


@dataclass
class SessionCreated:
    session_id: str
    type: Literal["session_created"] = field(default="session_created", init=False)


@dataclass
class SessionResumed:
    session_id: str
    item_count: int
    type: Literal["session_resumed"] = field(default="session_resumed", init=False)


@dataclass
class ExecutionComplete:
    final_output: str
    metrics: AgentMetrics
    max_turns_reached: bool = False
    type: Literal["execution_complete"] = field(default="execution_complete", init=False)


AgentEvent = Union[TurnEvent, SessionCreated, SessionResumed, ExecutionComplete]
