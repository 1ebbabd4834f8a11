"""
Anthropic Claude LLM provider.
"""

from typing import TYPE_CHECKING, Any, AsyncIterator

import anthropic
import structlog

from ..conversation.items import Item, MessageItem, ToolCallItem, ToolResultItem
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
    parse_arguments,
)

if TYPE_CHECKING:
    from ..cancellation import CancellationToken

logger = structlog.get_logger()


def _as_blocks(message: dict[str, Any]) -> list[dict[str, Any]]:
    """Make a converted message's content a list of blocks."""
    content = message["content"]
    if isinstance(content, str):
        message["content"] = [{"type": "text", "text": content}] if content else []
    return message["content"]


class AnthropicLLM(BaseLLM):
    """Anthropic Claude LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _convert_items(self, items: list[Item]) -> tuple[str | None, list[dict[str, Any]]]:
        """Convert the Item Log to Anthropic format.

        System messages are lifted into the system prompt. Tool calls join
        the preceding assistant message as ``tool_use`` blocks and tool
        results are grouped into one user message of ``tool_result`` blocks.
        """
        system_parts: list[str] = []
        converted: list[dict[str, Any]] = []

        for item in items:
            last = converted[-1] if converted else None

            if isinstance(item, MessageItem):
                if item.role == "system":
                    system_parts.append(item.content)
                    continue
                converted.append({"role": item.role, "content": item.content})

            elif isinstance(item, ToolCallItem):
                block = {
                    "type": "tool_use",
                    "id": item.call_id,
                    "name": item.name,
                    "input": item.arguments,
                }
                if last is not None and last["role"] == "assistant":
                    _as_blocks(last).append(block)
                else:
                    converted.append({"role": "assistant", "content": [block]})

            elif isinstance(item, ToolResultItem):
                block = {
                    "type": "tool_result",
                    "tool_use_id": item.call_id,
                    "content": item.output,
                }
                if (
                    last is not None
                    and last["role"] == "user"
                    and isinstance(last["content"], list)
                    and all(b.get("type") == "tool_result" for b in last["content"])
                ):
                    last["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})

        system = "\n\n".join(system_parts) if system_parts else None
        return system, converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Anthropic format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in tools
        ]

    def _build_kwargs(self, request: LLMRequest) -> dict[str, Any]:
        item_system, messages = self._convert_items(request.items)
        system_parts = [p for p in (request.system_prompt, item_system) if p]

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": messages,
        }

        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        if request.tools:
            kwargs["tools"] = self._convert_tools(request.tools)

        return kwargs

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Generate a response from Claude."""
        kwargs = self._build_kwargs(request)

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error("Anthropic API error", error=str(e))
            raise

        content = ""
        tool_calls = []

        for block in response.content:
            if block.type == "text":
                content += block.text
            elif block.type == "tool_use":
                tool_calls.append(FunctionCall(
                    id=block.id,
                    name=block.name,
                    params=dict(block.input) if isinstance(block.input, dict) else {},
                ))

        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        return LLMResponse(
            content=content,
            tool_calls=tool_calls,
            usage=Usage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            model=response.model,
            finish_reason=response.stop_reason,
        )

    async def stream(
        self,
        request: LLMRequest,
        signal: "CancellationToken | None" = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a response from Claude as provider-neutral chunks."""
        kwargs = self._build_kwargs(request)

        input_tokens = 0
        output_tokens = 0
        stop_reason = None
        # index -> [id, name, partial json]
        tool_blocks: dict[int, list[str]] = {}

        try:
            async with self.client.messages.stream(**kwargs) as stream:
                async for event in stream:
                    if signal is not None and signal.cancelled:
                        break

                    if event.type == "message_start":
                        input_tokens = event.message.usage.input_tokens
                    elif event.type == "content_block_start":
                        block = event.content_block
                        if block.type == "tool_use":
                            tool_blocks[event.index] = [block.id, block.name, ""]
                    elif event.type == "content_block_delta":
                        delta = event.delta
                        if delta.type == "text_delta":
                            yield ContentChunk(delta=delta.text)
                        elif delta.type == "thinking_delta":
                            yield ThinkingChunk(delta=delta.thinking)
                        elif delta.type == "input_json_delta" and event.index in tool_blocks:
                            tool_blocks[event.index][2] += delta.partial_json
                    elif event.type == "content_block_stop":
                        entry = tool_blocks.pop(event.index, None)
                        if entry is not None:
                            call_id, name, raw = entry
                            yield FunctionCallChunk(call=FunctionCall(
                                id=call_id,
                                name=name,
                                params=parse_arguments(raw, name),
                            ))
                    elif event.type == "message_delta":
                        stop_reason = event.delta.stop_reason
                        output_tokens = event.usage.output_tokens

        except anthropic.APIError as e:
            logger.error("Anthropic streaming error", error=str(e))
            raise

        yield DoneChunk(
            finish_reason=stop_reason,
            usage=Usage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
        )
