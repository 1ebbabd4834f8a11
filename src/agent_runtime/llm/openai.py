"""
OpenAI GPT LLM provider (also works with OpenRouter and compatible APIs).
"""

import json
from typing import TYPE_CHECKING, Any, AsyncIterator

import openai
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


class OpenAILLM(BaseLLM):
    """OpenAI GPT LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    def _convert_items(self, items: list[Item]) -> list[dict[str, Any]]:
        """Convert the Item Log to OpenAI chat format.

        Tool calls attach to the assistant message right before them, or
        open a new assistant message with empty content.
        """
        converted: list[dict[str, Any]] = []

        for item in items:
            if isinstance(item, MessageItem):
                converted.append({"role": item.role, "content": item.content})
            elif isinstance(item, ToolCallItem):
                tool_call = {
                    "id": item.call_id,
                    "type": "function",
                    "function": {
                        "name": item.name,
                        "arguments": json.dumps(item.arguments),
                    },
                }
                last = converted[-1] if converted else None
                if last is not None and last["role"] == "assistant":
                    if not last["content"]:
                        last["content"] = None
                    last.setdefault("tool_calls", []).append(tool_call)
                else:
                    converted.append({
                        "role": "assistant",
                        "content": None,
                        "tool_calls": [tool_call],
                    })
            elif isinstance(item, ToolResultItem):
                converted.append({
                    "role": "tool",
                    "tool_call_id": item.call_id,
                    "content": item.output,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to OpenAI format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    def _build_kwargs(self, request: LLMRequest) -> dict[str, Any]:
        converted_messages = self._convert_items(request.items)

        if request.system_prompt:
            converted_messages.insert(0, {"role": "system", "content": request.system_prompt})

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": converted_messages,
        }

        if request.tools:
            kwargs["tools"] = self._convert_tools(request.tools)

        return kwargs

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Generate a response from GPT."""
        kwargs = self._build_kwargs(request)

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            logger.error("OpenAI API error", error=str(e))
            raise

        choice = response.choices[0]
        message = choice.message

        tool_calls = []
        for tc in message.tool_calls or []:
            tool_calls.append(FunctionCall(
                id=tc.id,
                name=tc.function.name,
                params=parse_arguments(tc.function.arguments, tc.function.name),
            ))

        usage = Usage()
        if response.usage:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )

        return LLMResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            usage=usage,
            model=response.model,
            finish_reason=choice.finish_reason,
        )

    async def stream(
        self,
        request: LLMRequest,
        signal: "CancellationToken | None" = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a response from GPT as provider-neutral chunks.

        Tool call fragments arrive spread across deltas; they are assembled
        by index and emitted once the stream finishes.
        """
        kwargs = self._build_kwargs(request)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        usage = Usage()
        finish_reason = None
        # index -> {"id", "name", "arguments"}
        calls: dict[int, dict[str, str]] = {}

        try:
            stream = await self.client.chat.completions.create(**kwargs)

            async for chunk in stream:  # type: ignore
                if signal is not None and signal.cancelled:
                    break

                if chunk.usage:
                    usage = Usage(
                        prompt_tokens=chunk.usage.prompt_tokens,
                        completion_tokens=chunk.usage.completion_tokens,
                        total_tokens=chunk.usage.total_tokens,
                    )

                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                delta = choice.delta

                if delta.content:
                    yield ContentChunk(delta=delta.content)

                # OpenRouter and some compatible APIs stream reasoning separately
                reasoning = getattr(delta, "reasoning", None) or getattr(delta, "reasoning_content", None)
                if reasoning:
                    yield ThinkingChunk(delta=reasoning)

                for tc in delta.tool_calls or []:
                    entry = calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        entry["id"] = tc.id
                    if tc.function is not None:
                        if tc.function.name:
                            entry["name"] = tc.function.name
                        if tc.function.arguments:
                            entry["arguments"] += tc.function.arguments

                if choice.finish_reason:
                    finish_reason = choice.finish_reason

        except openai.APIError as e:
            logger.error("OpenAI streaming error", error=str(e))
            raise

        for index in sorted(calls):
            entry = calls[index]
            yield FunctionCallChunk(call=FunctionCall(
                id=entry["id"],
                name=entry["name"],
                params=parse_arguments(entry["arguments"], entry["name"]),
            ))

        yield DoneChunk(finish_reason=finish_reason, usage=usage)
