"""
Conversation compression - summarize older history under size pressure.

When a session's log grows past a configured item count, or the last model
call reported more prompt tokens than a watermark, the older part of the log
(the head) is summarized with one model call and only a protected tail is
kept verbatim.

Tail selection never separates a tool call from its tool result: when
recent messages are protected, the tail boundary is widened until every
call id in the tail has both halves inside it, and a tail that starts on a
tool item also keeps the assistant message that issued the call.
"""

from dataclasses import dataclass, field

import structlog

from ..llm.base import BaseLLM, LLMRequest
from .items import Item, MessageItem, ToolCallItem, call_id_of, is_message, is_tool_item

logger = structlog.get_logger()

DEFAULT_SUMMARIZE_AFTER_ITEMS = 20
DEFAULT_KEEP_RECENT_ITEMS = 10
DEFAULT_MAX_SUMMARY_LENGTH = 500


@dataclass
class CompressionConfig:
    """Configuration for conversation compression."""

    summarize_after_items: int = DEFAULT_SUMMARIZE_AFTER_ITEMS
    keep_recent_items: int = DEFAULT_KEEP_RECENT_ITEMS
    max_summary_length: int = DEFAULT_MAX_SUMMARY_LENGTH
    token_watermark: int | None = None
    protect_recent_messages: int | None = None
    enabled: bool = True


@dataclass
class CompressionResult:
    """Result of a compression pass."""

    summary: str
    compressed_items: list[Item] = field(default_factory=list)
    original_count: int = 0

    @property
    def compressed_count(self) -> int:
        return len(self.compressed_items)

    @property
    def compressed(self) -> bool:
        return self.compressed_count < self.original_count


def build_transcript(items: list[Item]) -> str:
    """Render message items as ``role: text`` lines. Tool items are skipped."""
    return "\n".join(
        f"{item.role}: {item.content}"
        for item in items
        if isinstance(item, MessageItem)
    )


class ConversationCompressor:
    """Decides when to compress and computes the reduced log plus a summary."""

    def __init__(self, llm: BaseLLM, config: CompressionConfig | None = None):
        self.llm = llm
        self.config = config or CompressionConfig()

    def should_compress(self, item_count: int, last_prompt_tokens: int | None = None) -> bool:
        """Check whether a log of this size is due for compression.

        A configured token watermark takes precedence whenever the caller
        knows the last prompt size; otherwise the item count decides.
        """
        if not self.config.enabled:
            return False
        if self.config.token_watermark is not None and last_prompt_tokens is not None:
            return last_prompt_tokens > self.config.token_watermark
        return item_count > self.config.summarize_after_items

    async def compress_items(self, items: list[Item]) -> CompressionResult:
        """Summarize the head of ``items`` and keep the protected tail.

        Returns the input unchanged with an empty summary when the log is
        at or under ``summarize_after_items``, or when the protected tail
        would swallow the whole log.
        """
        items = list(items)
        unchanged = CompressionResult(summary="", compressed_items=items, original_count=len(items))

        if not self.config.enabled or len(items) <= self.config.summarize_after_items:
            return unchanged

        start = self.find_tail_start(items)
        if start <= 0:
            logger.info(
                "Compression skipped, protected tail covers the whole log",
                item_count=len(items),
            )
            return unchanged

        head, tail = items[:start], items[start:]

        logger.info(
            "Starting conversation compression",
            item_count=len(items),
            summarized=len(head),
            kept=len(tail),
        )

        summary = await self._summarize(head)

        return CompressionResult(summary=summary, compressed_items=tail, original_count=len(items))

    def find_tail_start(self, items: list[Item]) -> int:
        """Index of the first item that must be kept verbatim.

        With ``protect_recent_messages`` set, the boundary is widened so no
        tool pair is split. Otherwise the last ``keep_recent_items`` are kept
        as a flat slice, which can start on a tool result whose call was
        summarized away. Provider adapters reject such an orphan, so hosts
        that send the compressed log back to a model should set
        ``protect_recent_messages``.
        """
        protect = self.config.protect_recent_messages
        if protect is not None and protect > 0:
            seen = 0
            start = 0
            for index in range(len(items) - 1, -1, -1):
                if is_message(items[index]):
                    seen += 1
                    if seen == protect:
                        start = index
                        break
            return self._close_tail(items, start)

        return max(len(items) - self.config.keep_recent_items, 0)

    def _close_tail(self, items: list[Item], start: int) -> int:
        """Widen the tail until no tool pair straddles the boundary."""
        while True:
            previous = start

            # Tool items directly before the first protected message.
            while start > 0 and not is_message(items[start - 1]):
                start -= 1

            # Partners of any call id already in the tail.
            tail_ids = {call_id_of(item) for item in items[start:]}
            tail_ids.discard(None)
            for index in range(start - 1, -1, -1):
                if call_id_of(items[index]) in tail_ids:
                    start = index

            # The assistant message that issued a leading tool call.
            if start > 0 and is_tool_item(items[start]):
                for index in range(start - 1, -1, -1):
                    item = items[index]
                    if isinstance(item, MessageItem):
                        if item.role == "assistant":
                            start = index
                        break

            if start == previous:
                return start

    async def _summarize(self, head: list[Item]) -> str:
        transcript = build_transcript(head)
        if not transcript:
            return ""

        try:
            return await self._generate_summary(transcript)
        except Exception as e:
            logger.error("Compression summarization failed, using fallback", error=str(e))
            return _fallback_summary(head)

    async def _generate_summary(self, transcript: str) -> str:
        """Use the LLM to generate a conversation summary."""
        request = LLMRequest(
            items=[
                MessageItem(
                    role="user",
                    content=f"Please summarize this conversation:\n\n{transcript}",
                )
            ],
            system_prompt=(
                "You are a conversation summarizer. Create a concise summary of the "
                "following conversation, capturing key points, decisions, and information "
                f"shared. Keep the summary under {self.config.max_summary_length} characters."
            ),
        )
        response = await self.llm.generate(request)
        return response.content.strip()


def _fallback_summary(items: list[Item]) -> str:
    """Create a basic summary without the LLM."""
    messages = [item for item in items if isinstance(item, MessageItem)]
    user_messages = [m for m in messages if m.role == "user"]
    assistant_count = sum(1 for m in messages if m.role == "assistant")
    tool_count = sum(1 for item in items if isinstance(item, ToolCallItem))

    parts = ["Earlier in this conversation:"]
    parts.append(
        f"[{len(user_messages)} user messages, {assistant_count} assistant responses, "
        f"{tool_count} tool calls summarized]"
    )
    if user_messages:
        parts.append(f"First topic: {user_messages[0].content[:150]}")
        if len(user_messages) > 1:
            parts.append(f"Last topic before this: {user_messages[-1].content[:150]}")

    return "\n".join(parts)
