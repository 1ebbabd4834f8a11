"""
Error taxonomy for the agent runtime.

Structural errors (bad ids, bad indices, malformed serialized data) are
raised to the caller. Tool failures are captured by the Turn and surfaced
as events; model-stream failures end the Turn.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    TOOL_EXECUTION_ERROR = "TOOL_EXECUTION_ERROR"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    INVALID_SESSION_DATA = "INVALID_SESSION_DATA"
    OUT_OF_RANGE = "OUT_OF_RANGE"
    TURN_CANCELLED = "TURN_CANCELLED"


class AgentError(Exception):
    """Base class for all runtime errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        recoverable: bool = False,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable
        self.context = context or {}


class OutOfRangeError(AgentError, IndexError):
    """An item index falls outside a session's log."""

    def __init__(self, index: int, item_count: int):
        super().__init__(
            f"Invalid item index: {index}. Must be between 0 and {item_count - 1}",
            ErrorCode.OUT_OF_RANGE,
            context={"index": index, "item_count": item_count},
        )
        self.index = index
        self.item_count = item_count


class InvalidSessionDataError(AgentError, ValueError):
    """Serialized session data is malformed."""

    def __init__(self, reason: str):
        super().__init__(
            f"Invalid session data: {reason}",
            ErrorCode.INVALID_SESSION_DATA,
        )


class NotFoundError(AgentError, LookupError):
    """No session exists for the given id."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Session {session_id} not found",
            ErrorCode.SESSION_NOT_FOUND,
            context={"session_id": session_id},
        )
        self.session_id = session_id


class TurnCancelledError(AgentError):
    """A Turn was stopped through cancellation."""

    def __init__(self, reason: str = "Turn was cancelled"):
        super().__init__(f"Turn cancelled: {reason}", ErrorCode.TURN_CANCELLED)


class ToolError(AgentError):
    """Base class for tool failures. Never fatal to a Turn."""

    def __init__(self, message: str, code: ErrorCode, tool_name: str):
        super().__init__(message, code, recoverable=True, context={"tool_name": tool_name})
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """The requested tool is not registered."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool '{tool_name}' not found", ErrorCode.TOOL_NOT_FOUND, tool_name)


class ToolExecutionError(ToolError):
    """Wraps a non-exception failure raised by a tool."""

    def __init__(self, message: str, tool_name: str = ""):
        super().__init__(message, ErrorCode.TOOL_EXECUTION_ERROR, tool_name)

