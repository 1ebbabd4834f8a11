"""
Tools module for agent capabilities.
"""

from .base import BaseTool, Tool, ToolContext, ToolParameter, ToolResult
from .registry import ToolRegistry

__all__ = [
    "BaseTool",
    "Tool",
    "ToolContext",
    "ToolParameter",
    "ToolResult",
    "ToolRegistry",
]
