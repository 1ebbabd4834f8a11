"""
Tool registry for managing available tools.
"""

from typing import Any, Union

import structlog

from ..errors import ToolNotFoundError
from ..llm.base import ToolDefinition
from .base import BaseTool, Tool, ToolContext

logger = structlog.get_logger()


class ToolRegistry:
    """Registry for managing tools.

    Registries are created and owned by their host; there is no shared
    process-wide instance.
    """

    def __init__(self, tools: list[Union[BaseTool, Tool]] | None = None):
        self._tools: dict[str, Union[BaseTool, Tool]] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Union[BaseTool, Tool]) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool
        logger.info("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            logger.info("Tool unregistered", tool_name=name)

    def get(self, name: str) -> Union[BaseTool, Tool, None]:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_all_declarations(self) -> list[ToolDefinition]:
        """Get all tool definitions for the LLM."""
        definitions = []
        for tool in self._tools.values():
            if isinstance(tool, Tool):
                definitions.append(ToolDefinition(
                    name=tool.name,
                    description=tool.description,
                    parameters=tool.get_parameters_schema(),
                ))
            else:
                definitions.append(ToolDefinition(
                    name=tool.name,
                    description=tool.description,
                    parameters=tool.parameters,
                ))
        return definitions

    async def execute(self, name: str, params: dict[str, Any], context: ToolContext) -> Any:
        """Execute a tool by name.

        Raises:
            ToolNotFoundError: if no tool is registered under ``name``.
        """
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        logger.info("Executing tool", tool_name=name, call_id=context.call_id, arguments=params)
        try:
            result = await tool.execute(context, **params)
        except Exception as e:
            logger.error("Tool execution error", tool_name=name, call_id=context.call_id, error=str(e))
            raise
        logger.info("Tool executed", tool_name=name, call_id=context.call_id)
        return result
