"""
LLM providers.

Adapters normalize each provider's native stream into content, thinking,
function call and done chunks.
"""

from .base import (
    BaseLLM,
    ContentChunk,
    DoneChunk,
    FunctionCall,
    FunctionCallChunk,
    LLMRequest,
    LLMResponse,
    StreamChunk,
    ThinkingChunk,
    ToolDefinition,
    Usage,
)
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "ContentChunk",
    "DoneChunk",
    "FunctionCall",
    "FunctionCallChunk",
    "LLMRequest",
    "LLMResponse",
    "StreamChunk",
    "ThinkingChunk",
    "ToolDefinition",
    "Usage",
    "AnthropicLLM",
    "OpenAILLM",
    "create_llm",
]
