"""
Session: one conversation's Item Log plus fork lineage, metadata and usage.
"""

import copy
import time
from dataclasses import dataclass, field
from typing import Any, Iterable
from uuid import uuid4

import structlog

from ..errors import InvalidSessionDataError, OutOfRangeError
from .items import Item, MessageItem, item_from_dict, item_to_dict

logger = structlog.get_logger()

MAX_PREVIEW_LENGTH = 50


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def extract_preview(text: str, max_length: int = MAX_PREVIEW_LENGTH) -> str:
    """Trim and ellipsis-truncate text for a listing preview."""
    if not text or not text.strip():
        return ""
    preview = text.strip()
    if len(preview) > max_length:
        preview = f"{preview[:max_length]}..."
    return preview


@dataclass
class SessionConfig:
    """Options recorded when a session is created."""

    system_prompt: str | None = None
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.system_prompt is not None:
            data["systemPrompt"] = self.system_prompt
        if self.tags:
            data["tags"] = list(self.tags)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SessionConfig":
        data = data or {}
        return cls(
            system_prompt=data.get("systemPrompt"),
            tags=list(data.get("tags") or []),
        )


@dataclass
class SessionMetrics:
    """Cumulative usage across every execution recorded on a session."""

    total_tokens_used: int = 0
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    execution_count: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "totalTokensUsed": self.total_tokens_used,
            "totalPromptTokens": self.total_prompt_tokens,
            "totalCompletionTokens": self.total_completion_tokens,
            "executionCount": self.execution_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SessionMetrics":
        data = data or {}
        return cls(
            total_tokens_used=int(data.get("totalTokensUsed", 0)),
            total_prompt_tokens=int(data.get("totalPromptTokens", 0)),
            total_completion_tokens=int(data.get("totalCompletionTokens", 0)),
            execution_count=int(data.get("executionCount", 0)),
        )


@dataclass
class SessionSummary:
    """Read model used when listing sessions."""

    id: str
    preview: str
    created_at: int
    last_active_at: int
    item_count: int = 0
    tags: list[str] = field(default_factory=list)
    parent_session_id: str | None = None
    fork_at_item_index: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "preview": self.preview,
            "createdAt": self.created_at,
            "lastActiveAt": self.last_active_at,
            "itemCount": self.item_count,
            "tags": list(self.tags),
            "parentSessionId": self.parent_session_id,
            "forkAtItemIndex": self.fork_at_item_index,
        }


class Session:
    """A conversation log that can be appended to, trimmed, forked and serialized."""

    def __init__(
        self,
        session_id: str | None = None,
        config: SessionConfig | None = None,
        parent_session_id: str | None = None,
        fork_at_item_index: int | None = None,
    ):
        self.id = session_id or str(uuid4())
        self.config = config or SessionConfig()
        self.parent_session_id = parent_session_id
        self.fork_at_item_index = fork_at_item_index
        self.metrics = SessionMetrics()

        self._items: list[Item] = []
        self._preview = ""
        self._preview_from_user = False

        created = now_ms()
        self._metadata: dict[str, Any] = {
            "createdAt": created,
            "lastActiveAt": created,
            "tags": list(self.config.tags),
        }

    # -- item log -----------------------------------------------------------

    def add_items(self, items: Iterable[Item]) -> None:
        """Append items to the log."""
        items = list(items)
        if not items:
            return
        self._items.extend(items)
        self._touch()
        if not self._preview_from_user:
            self._update_preview()

    def get_items(self, limit: int | None = None) -> list[Item]:
        """Return a copy of the log, or of its last ``limit`` items."""
        if limit is None:
            return copy.deepcopy(self._items)
        if limit <= 0:
            return []
        return copy.deepcopy(self._items[-limit:])

    def pop_item(self) -> Item | None:
        """Remove and return the last item, or None when the log is empty."""
        if not self._items:
            return None
        item = self._items.pop()
        self._touch()
        return item

    def clear(self) -> None:
        """Empty the log. Metrics and metadata are kept."""
        self._items = []
        self._touch()

    def replace_items(self, items: Iterable[Item]) -> None:
        """Swap in a new log, e.g. after compression."""
        self._items = list(items)
        self._touch()
        if not self._preview_from_user:
            self._update_preview()

    @property
    def item_count(self) -> int:
        return len(self._items)

    # -- fork ---------------------------------------------------------------

    def fork(self, at_index: int | None = None) -> "Session":
        """Branch a new session from items ``[0..at_index]``.

        The fork gets a fresh id, zeroed metrics and new timestamps, and
        shares no mutable state with this session.

        Raises:
            OutOfRangeError: if ``at_index`` is outside the log.
        """
        index = at_index if at_index is not None else len(self._items) - 1
        if index < 0 or index >= len(self._items):
            raise OutOfRangeError(index, len(self._items))

        forked = Session(
            config=copy.deepcopy(self.config),
            parent_session_id=self.id,
            fork_at_item_index=index,
        )
        forked._items = copy.deepcopy(self._items[: index + 1])

        metadata = copy.deepcopy(self._metadata)
        metadata.pop("lastPromptTokens", None)
        created = now_ms()
        metadata["createdAt"] = created
        metadata["lastActiveAt"] = created
        forked._metadata = metadata
        forked._update_preview()

        logger.debug(
            "Session forked",
            parent_id=self.id,
            session_id=forked.id,
            fork_at_item_index=index,
        )
        return forked

    def get_fork_info(self) -> dict[str, Any]:
        return {
            "parent_session_id": self.parent_session_id,
            "fork_at_item_index": self.fork_at_item_index,
        }

    # -- metadata and metrics -----------------------------------------------

    def set_metadata(self, key: str, value: Any) -> None:
        self._metadata[key] = value

    def get_metadata(self, key: str, default: Any = None) -> Any:
        return self._metadata.get(key, default)

    @property
    def metadata(self) -> dict[str, Any]:
        return copy.deepcopy(self._metadata)

    @property
    def last_summary(self) -> str | None:
        return self._metadata.get("lastSummary") or None

    def add_metrics(
        self,
        tokens_used: int = 0,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
    ) -> None:
        """Accumulate usage from one execution."""
        self.metrics.total_tokens_used += tokens_used
        self.metrics.total_prompt_tokens += prompt_tokens
        self.metrics.total_completion_tokens += completion_tokens
        self.metrics.execution_count += 1

    def get_summary(self) -> SessionSummary:
        tags = self._metadata.get("tags")
        created = self._metadata.get("createdAt")
        last_active = self._metadata.get("lastActiveAt")
        now = now_ms()
        return SessionSummary(
            id=self.id,
            preview=self._preview or extract_preview(self.last_summary or ""),
            created_at=created if isinstance(created, int) else now,
            last_active_at=last_active if isinstance(last_active, int) else now,
            item_count=len(self._items),
            tags=list(tags) if isinstance(tags, list) else [],
            parent_session_id=self.parent_session_id,
            fork_at_item_index=self.fork_at_item_index,
        )

    # -- serialization ------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "items": [item_to_dict(item) for item in self._items],
            "metadata": copy.deepcopy(self._metadata),
            "metrics": self.metrics.to_dict(),
            "config": self.config.to_dict(),
        }
        if self.parent_session_id is not None:
            data["parentSessionId"] = self.parent_session_id
        if self.fork_at_item_index is not None:
            data["forkAtItemIndex"] = self.fork_at_item_index
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Session":
        """Rebuild a session from :meth:`to_dict` output.

        Raises:
            InvalidSessionDataError: if ``id`` is missing, items are malformed,
                or ``metadata``, ``metrics`` or ``config`` is not an object.
        """
        if not isinstance(data, dict) or not data.get("id"):
            raise InvalidSessionDataError("missing required field 'id'")

        items = data.get("items") or []
        if not isinstance(items, list):
            raise InvalidSessionDataError("'items' must be a list")
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise InvalidSessionDataError("'metadata' must be an object")
        for key in ("metrics", "config"):
            if data.get(key) is not None and not isinstance(data[key], dict):
                raise InvalidSessionDataError(f"'{key}' must be an object")

        session = cls(
            session_id=data["id"],
            config=SessionConfig.from_dict(data.get("config")),
            parent_session_id=data.get("parentSessionId"),
            fork_at_item_index=data.get("forkAtItemIndex"),
        )
        session._items = [item_from_dict(item) for item in items]
        session._metadata.update(copy.deepcopy(metadata))
        session.metrics = SessionMetrics.from_dict(data.get("metrics"))
        session._update_preview()
        return session

    # -- internals ----------------------------------------------------------

    def _touch(self) -> None:
        self._metadata["lastActiveAt"] = now_ms()

    def _update_preview(self) -> None:
        for item in self._items:
            if isinstance(item, MessageItem) and item.role == "user" and item.content.strip():
                self._preview = extract_preview(item.content)
                self._preview_from_user = True
                return
        self._preview_from_user = False
        self._preview = extract_preview(self.last_summary or "")

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, items={len(self._items)}, parent={self.parent_session_id!r})"
