"""
Base classes for LLM providers.

Every provider adapter normalizes its native stream into the same small set
of chunks, so the Turn engine never sees provider-specific shapes.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Literal, Union

import structlog

if TYPE_CHECKING:
    from ..cancellation import CancellationToken
    from ..conversation.items import Item

logger = structlog.get_logger()


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class FunctionCall:
    """A tool call made by the LLM."""

    id: str
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class Usage:
    """Token usage reported at the end of a stream."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ContentChunk:
    delta: str
    type: Literal["content"] = field(default="content", init=False)


@dataclass
class ThinkingChunk:
    delta: str
    type: Literal["thinking"] = field(default="thinking", init=False)


@dataclass
class FunctionCallChunk:
    call: FunctionCall
    type: Literal["function_call"] = field(default="function_call", init=False)


@dataclass
class DoneChunk:
    finish_reason: str | None = None
    usage: Usage = field(default_factory=Usage)
    type: Literal["done"] = field(default="done", init=False)


StreamChunk = Union[ContentChunk, ThinkingChunk, FunctionCallChunk, DoneChunk]


@dataclass
class LLMRequest:
    """A snapshot of what is sent to the model for one call."""

    items: "list[Item]"
    tools: list[ToolDefinition] | None = None
    system_prompt: str | None = None


@dataclass
class LLMResponse:
    """A fully drained model response."""

    content: str
    tool_calls: list[FunctionCall] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    model: str = ""
    finish_reason: str | None = None


class BaseLLM(ABC):
    """Base class for LLM providers."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature

    @abstractmethod
    def stream(
        self,
        request: LLMRequest,
        signal: "CancellationToken | None" = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream provider-neutral chunks for a request.

        Implementations should stop early once ``signal`` is cancelled.
        """

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Drain :meth:`stream` into a single response."""
        parts: list[str] = []
        tool_calls: list[FunctionCall] = []
        usage = Usage()
        finish_reason = None

        async for chunk in self.stream(request):
            if isinstance(chunk, ContentChunk):
                parts.append(chunk.delta)
            elif isinstance(chunk, FunctionCallChunk):
                tool_calls.append(chunk.call)
            elif isinstance(chunk, DoneChunk):
                usage = chunk.usage
                finish_reason = chunk.finish_reason

        return LLMResponse(
            content="".join(parts),
            tool_calls=tool_calls,
            usage=usage,
            model=self.model,
            finish_reason=finish_reason,
        )

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""


def parse_arguments(raw: str, tool_name: str = "") -> dict[str, Any]:
    """Decode streamed tool arguments, falling back to an empty dict."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Could not decode tool arguments", tool_name=tool_name, error=str(e))
        return {}
    return parsed if isinstance(parsed, dict) else {}
