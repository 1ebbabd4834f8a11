"""
Base classes for tools.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

from ..cancellation import CancellationToken


@dataclass
class ToolContext:
    """What a tool learns about the call it is serving."""

    call_id: str
    turn_id: str
    session_id: str
    signal: CancellationToken = field(default_factory=CancellationToken)


@dataclass
class ToolResult:
    """Result from a tool execution."""

    success: bool
    output: str = ""
    data: Any = None
    error: str | None = None


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


@dataclass
class Tool:
    """
    Simple tool wrapper that can be created from a function.

    When ``pass_context`` is set the handler also receives the
    :class:`ToolContext` as a ``context`` keyword argument.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: Callable[..., Coroutine[Any, Any, Any]]
    pass_context: bool = False

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            prop = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.default is not None:
                prop["default"] = param.default

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> Any:
        """Execute the tool handler."""
        if self.pass_context:
            return await self.handler(context=context, **kwargs)
        return await self.handler(**kwargs)


class BaseTool(ABC):
    """Base class for class-based tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool name."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Get the tool description."""

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """Get the tool parameters schema (JSON Schema)."""

    @abstractmethod
    async def execute(self, context: ToolContext, **kwargs: Any) -> Any:
        """Execute the tool with given arguments.

        Long-running tools should poll ``context.signal`` and stop early
        once it is cancelled.
        """
