"""
Session storage adapters.

Adapters persist the serialized session shape produced by
``Session.to_dict``. A malformed record never breaks a listing: it is
logged and skipped.

Uses SQLAlchemy 2.0 async ORM for the database-backed adapter.
"""

import copy
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import JSON, DateTime, Integer, String, delete, func, select
from sqlalchemy.ext.asyncio import AsyncAttrs, AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..errors import AgentError
from .session import Session, SessionSummary

logger = structlog.get_logger()


class SessionStorage(ABC):
    """Adapter contract consumed by the ConversationManager."""

    @abstractmethod
    async def save(self, session: Session) -> None:
        """Persist a session, replacing any previous version."""

    @abstractmethod
    async def load(self, session_id: str) -> Session | None:
        """Load a session, or None when nothing is stored under the id."""

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        """Remove a session. Unknown ids are ignored."""

    @abstractmethod
    async def list_all(self) -> list[SessionSummary]:
        """Summaries of every readable stored session."""

    async def get_children(self, parent_id: str) -> list[SessionSummary]:
        """Summaries of sessions forked directly from ``parent_id``."""
        return [s for s in await self.list_all() if s.parent_session_id == parent_id]


def _summarize_records(records: list[tuple[str, Any]]) -> list[SessionSummary]:
    summaries = []
    for key, data in records:
        try:
            summaries.append(Session.from_dict(data).get_summary())
        except (AgentError, TypeError, ValueError) as e:
            logger.warning("Skipping malformed session record", record_id=key, error=str(e))
    return summaries


class InMemorySessionStorage(SessionStorage):
    """Keeps serialized sessions in a dict. Useful for tests and stateless hosts."""

    def __init__(self):
        self._records: dict[str, dict[str, Any]] = {}

    async def save(self, session: Session) -> None:
        self._records[session.id] = session.to_dict()

    async def load(self, session_id: str) -> Session | None:
        data = self._records.get(session_id)
        if data is None:
            return None
        return Session.from_dict(copy.deepcopy(data))

    async def delete(self, session_id: str) -> None:
        self._records.pop(session_id, None)

    async def list_all(self) -> list[SessionSummary]:
        return _summarize_records(list(self._records.items()))

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""
    pass


class SessionRecord(Base):
    """A serialized session row."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    parent_session_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    fork_at_item_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())


class SQLSessionStorage(SessionStorage):
    """Stores sessions as JSON rows through SQLAlchemy's async engine."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_maker = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    async def create(cls, database_url: str) -> "SQLSessionStorage":
        """Initialize the database and return a ready adapter."""
        engine = create_async_engine(database_url, echo=False)

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Session database initialized", database_url=database_url)
        return cls(engine)

    async def save(self, session: Session) -> None:
        data = session.to_dict()
        async with self._session_maker() as db:
            record = await db.get(SessionRecord, session.id)
            if record is None:
                record = SessionRecord(
                    id=session.id,
                    parent_session_id=session.parent_session_id,
                    fork_at_item_index=session.fork_at_item_index,
                    data=data,
                )
                db.add(record)
            else:
                record.data = data
            await db.commit()

    async def load(self, session_id: str) -> Session | None:
        async with self._session_maker() as db:
            record = await db.get(SessionRecord, session_id)
            if record is None:
                return None
            return Session.from_dict(record.data)

    async def delete(self, session_id: str) -> None:
        async with self._session_maker() as db:
            await db.execute(delete(SessionRecord).where(SessionRecord.id == session_id))
            await db.commit()

    async def list_all(self) -> list[SessionSummary]:
        async with self._session_maker() as db:
            result = await db.execute(select(SessionRecord.id, SessionRecord.data))
            rows = result.all()
        return _summarize_records([(row.id, row.data) for row in rows])

    async def get_children(self, parent_id: str) -> list[SessionSummary]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(SessionRecord.id, SessionRecord.data)
                .where(SessionRecord.parent_session_id == parent_id)
            )
            rows = result.all()
        return _summarize_records([(row.id, row.data) for row in rows])

    async def close(self) -> None:
        await self.engine.dispose()
