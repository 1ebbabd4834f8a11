"""
Agent module - turn execution and the conversation loop.

Includes:
- Turn: one model stream plus its tool calls, with cancellation and cleanup
- TurnState: the Turn lifecycle
- Agent: multi-turn loop over a persisted Session
- Events emitted by both
"""

from .turn import Turn, TurnState
from .core import Agent
from .events import (
    AgentEvent,
    AgentMetrics,
    ContentDelta,
    ExecutionComplete,
    LLMStreamEnd,
    LLMStreamStart,
    SessionCreated,
    SessionResumed,
    ThinkingDelta,
    ToolCallComplete,
    ToolCallError,
    ToolCallPending,
    ToolCallStart,
    TurnComplete,
    TurnEvent,
)

__all__ = [
    "Agent",
    "Turn",
    "TurnState",
    "AgentEvent",
    "AgentMetrics",
    "ContentDelta",
    "ExecutionComplete",
    "LLMStreamEnd",
    "LLMStreamStart",
    "SessionCreated",
    "SessionResumed",
    "ThinkingDelta",
    "ToolCallComplete",
    "ToolCallError",
    "ToolCallPending",
    "ToolCallStart",
    "TurnComplete",
    "TurnEvent",
]
