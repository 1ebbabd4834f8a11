"""
Conversation management: caching, persistence, forking and compression of sessions.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Literal

import structlog

from ..errors import NotFoundError
from .compressor import ConversationCompressor
from .session import Session, SessionConfig, SessionSummary
from .storage import SessionStorage

logger = structlog.get_logger()

DEFAULT_CACHE_SIZE = 100

SortKey = Literal["last_active_at", "created_at"]


@dataclass
class SessionTreeNode:
    """One session in the fork forest, with the sessions forked from it."""

    session: SessionSummary
    children: list["SessionTreeNode"] = field(default_factory=list)


@dataclass
class CompressionOutcome:
    """Result of an on-demand compression."""

    compressed: bool
    summary: str | None = None


def merge_summaries(previous: str | None, summary: str) -> str:
    """Append a new summary to an existing one."""
    if not previous:
        return summary
    return f"{previous}\n\n{summary}"


class ConversationManager:
    """Manages session lifecycle on top of a storage adapter.

    The cache is owned by this instance and is not safe for concurrent
    writers from multiple threads.
    """

    def __init__(
        self,
        storage: SessionStorage,
        compressor: ConversationCompressor | None = None,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ):
        self.storage = storage
        self.compressor = compressor
        self.cache_size = cache_size
        self._cache: OrderedDict[str, Session] = OrderedDict()

    async def create_session(self, config: SessionConfig | None = None) -> Session:
        """Create, cache and persist a new empty session."""
        session = Session(config=config)
        await self.storage.save(session)
        self._remember(session)
        logger.info("Created new session", session_id=session.id)
        return session

    async def get_session(self, session_id: str) -> Session | None:
        """Get a session from the cache, falling back to storage."""
        session = self._cache.get(session_id)
        if session is not None:
            self._cache.move_to_end(session_id)
            return session

        session = await self.storage.load(session_id)
        if session is not None:
            self._remember(session)
        return session

    async def save_session(self, session: Session) -> None:
        """Persist a session, compressing its log first when it is due."""
        if self.compressor is not None:
            last_prompt_tokens = session.get_metadata("lastPromptTokens")
            if not isinstance(last_prompt_tokens, int):
                last_prompt_tokens = None
            if self.compressor.should_compress(session.item_count, last_prompt_tokens):
                await self._apply_compression(session)

        self._remember(session)
        await self.storage.save(session)

    async def delete_session(self, session_id: str) -> None:
        """Remove a session from the cache and from storage.

        Raises:
            NotFoundError: if the id is unknown.
        """
        cached = self._cache.pop(session_id, None)
        if cached is None and await self.storage.load(session_id) is None:
            raise NotFoundError(session_id)
        await self.storage.delete(session_id)
        logger.info("Session deleted", session_id=session_id)

    async def fork_session(self, session_id: str, at_index: int | None = None) -> Session:
        """Fork a session at ``at_index`` and persist the new branch.

        Raises:
            NotFoundError: if the id is unknown.
            OutOfRangeError: if ``at_index`` is outside the log.
        """
        session = await self.get_session(session_id)
        if session is None:
            raise NotFoundError(session_id)

        forked = session.fork(at_index)
        await self.storage.save(forked)
        self._remember(forked)
        logger.info(
            "Session forked",
            parent_id=session_id,
            session_id=forked.id,
            fork_at_item_index=forked.fork_at_item_index,
        )
        return forked

    async def get_session_tree(self, root_id: str | None = None) -> list[SessionTreeNode]:
        """Build the fork forest from every stored session.

        Sessions without a parent, or whose parent no longer exists, are
        roots. With ``root_id`` only that session's subtree is returned.
        """
        summaries = await self.storage.list_all()
        by_id = {s.id: s for s in summaries}

        children: dict[str | None, list[SessionSummary]] = {}
        for summary in sorted(summaries, key=lambda s: s.created_at):
            parent = summary.parent_session_id
            if parent is not None and parent not in by_id:
                parent = None
            children.setdefault(parent, []).append(summary)

        def build(summary: SessionSummary, seen: set[str]) -> SessionTreeNode:
            seen = seen | {summary.id}
            return SessionTreeNode(
                session=summary,
                children=[build(child, seen) for child in children.get(summary.id, []) if child.id not in seen],
            )

        if root_id is not None:
            root = by_id.get(root_id)
            return [build(root, set())] if root is not None else []

        return [build(root, set()) for root in children.get(None, [])]

    async def get_children(self, parent_id: str) -> list[SessionSummary]:
        return await self.storage.get_children(parent_id)

    async def list_sessions(
        self,
        sort_by: SortKey = "last_active_at",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[SessionSummary]:
        """List session summaries, newest first, with pagination."""
        if sort_by not in ("last_active_at", "created_at"):
            raise ValueError(f"Unknown sort key: {sort_by}")

        summaries = sorted(
            await self.storage.list_all(),
            key=lambda s: getattr(s, sort_by),
            reverse=True,
        )
        offset = max(offset, 0)
        if limit is None:
            return summaries[offset:]
        return summaries[offset : offset + max(limit, 0)]

    async def compress_session(self, session_id: str) -> CompressionOutcome:
        """Compress a session on demand, outside the save path.

        Raises:
            NotFoundError: if the id is unknown.
        """
        session = await self.get_session(session_id)
        if session is None:
            raise NotFoundError(session_id)

        if self.compressor is None:
            return CompressionOutcome(compressed=False)

        summary = await self._apply_compression(session)
        if summary is None:
            return CompressionOutcome(compressed=False)

        await self.storage.save(session)
        return CompressionOutcome(compressed=True, summary=summary)

    def get_cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    def evict(self, session_id: str) -> None:
        """Evict a session from cache."""
        self._cache.pop(session_id, None)

    async def _apply_compression(self, session: Session) -> str | None:
        """Compress in place. Returns the new summary, or None if nothing changed."""
        result = await self.compressor.compress_items(session.get_items())
        if not result.compressed:
            return None

        session.replace_items(result.compressed_items)
        # The last prompt size described the uncompressed log.
        session.set_metadata("lastPromptTokens", None)
        if result.summary:
            session.set_metadata("lastSummary", merge_summaries(session.last_summary, result.summary))

        logger.info(
            "Session compressed",
            session_id=session.id,
            original=result.original_count,
            compressed=result.compressed_count,
        )
        return result.summary

    def _remember(self, session: Session) -> None:
        self._cache[session.id] = session
        self._cache.move_to_end(session.id)
        while len(self._cache) > self.cache_size:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug("Session evicted from cache", session_id=evicted)
