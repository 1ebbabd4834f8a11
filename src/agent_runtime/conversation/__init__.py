"""
Conversation module - durable, forkable conversation logs.

Includes:
- Item Log types (messages, tool calls, tool results)
- Session: one log plus fork lineage, metadata and metrics
- ConversationCompressor: summarization with tool-pair closure
- ConversationManager: caching, persistence, forking
- Storage adapters (in-memory and SQLAlchemy)
"""

from .items import (
    Item,
    MessageItem,
    ToolCallItem,
    ToolResultItem,
    item_from_dict,
    item_to_dict,
)
from .session import Session, SessionConfig, SessionMetrics, SessionSummary
from .compressor import CompressionConfig, CompressionResult, ConversationCompressor
from .storage import InMemorySessionStorage, SessionStorage, SQLSessionStorage
from .manager import CompressionOutcome, ConversationManager, SessionTreeNode

__all__ = [
    "Item",
    "MessageItem",
    "ToolCallItem",
    "ToolResultItem",
    "item_from_dict",
    "item_to_dict",
    "Session",
    "SessionConfig",
    "SessionMetrics",
    "SessionSummary",
    "CompressionConfig",
    "CompressionResult",
    "ConversationCompressor",
    "InMemorySessionStorage",
    "SessionStorage",
    "SQLSessionStorage",
    "CompressionOutcome",
    "ConversationManager",
    "SessionTreeNode",
]
