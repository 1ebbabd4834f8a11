"""
Core agent loop.

The Agent ties the pieces together for one user message:
1. Creates or resumes a Session through the ConversationManager
2. Runs Turns against the LLM, feeding tool results back until the model
   stops calling tools or the turn limit is hit
3. Appends every Turn's items to the Session and records usage
4. Saves the Session, which may trigger compression
"""

import time
from typing import AsyncIterator

import structlog

from ..conversation.items import Item, MessageItem
from ..conversation.manager import ConversationManager
from ..conversation.session import Session
from ..errors import NotFoundError
from ..llm.base import BaseLLM, LLMRequest
from ..tools.registry import ToolRegistry
from .events import (
    AgentEvent,
    AgentMetrics,
    ExecutionComplete,
    SessionCreated,
    SessionResumed,
    TurnComplete,
)
from .turn import Turn

logger = structlog.get_logger()

DEFAULT_MAX_TURNS = 10
SUMMARY_PREFIX = "Previous conversation summary:"


class Agent:
    """Runs conversations against an LLM with tool support and durable sessions."""

    def __init__(
        self,
        llm: BaseLLM,
        tool_registry: ToolRegistry | None = None,
        conversation_manager: ConversationManager | None = None,
        system_prompt: str | None = None,
        max_turns: int = DEFAULT_MAX_TURNS,
    ):
        self.llm = llm
        self.tool_registry = tool_registry or ToolRegistry()
        self.conversation_manager = conversation_manager
        self.system_prompt = system_prompt
        self.max_turns = max_turns
        self._current_turn: Turn | None = None

    async def chat(self, message: str, session_id: str | None = None) -> AsyncIterator[AgentEvent]:
        """Process a user message, yielding session, turn and completion events.

        Raises:
            NotFoundError: if ``session_id`` is unknown.
        """
        if session_id is not None:
            if self.conversation_manager is None:
                raise ValueError("A ConversationManager is required to continue a session")
            session = await self.conversation_manager.get_session(session_id)
            if session is None:
                raise NotFoundError(session_id)
            yield SessionResumed(session_id=session.id, item_count=session.item_count)
        elif self.conversation_manager is not None:
            session = await self.conversation_manager.create_session()
            yield SessionCreated(session_id=session.id)
        else:
            session = Session()

        async for event in self._run_execution(message, session):
            yield event

    async def _run_execution(self, message: str, session: Session) -> AsyncIterator[AgentEvent]:
        started = time.monotonic()
        metrics = AgentMetrics(max_turns=self.max_turns)
        last_prompt_tokens: int | None = None
        turn_outputs: list[str] = []

        session.add_items([MessageItem(role="user", content=message)])

        try:
            should_continue = True
            while should_continue and metrics.turn_count < self.max_turns:
                turn = Turn(self.llm, self.tool_registry, self._build_request(session), session.id)
                self._current_turn = turn
                metrics.turn_count += 1
                should_continue = False

                try:
                    async for event in turn.execute():
                        if isinstance(event, TurnComplete):
                            should_continue = event.should_continue
                        yield event
                finally:
                    self._current_turn = None
                    session.add_items(turn.get_output_items())
                    if turn.usage is not None:
                        metrics.prompt_tokens += turn.usage.prompt_tokens
                        metrics.completion_tokens += turn.usage.completion_tokens
                        metrics.tokens_used += turn.usage.total_tokens
                        last_prompt_tokens = turn.usage.prompt_tokens

                if turn.content:
                    turn_outputs.append(turn.content)

            max_turns_reached = should_continue
            if max_turns_reached:
                logger.warning("Maximum turns reached", session_id=session.id, max_turns=self.max_turns)

            metrics.item_count = session.item_count
            metrics.duration = time.monotonic() - started
            yield ExecutionComplete(
                final_output=turn_outputs[-1] if turn_outputs else "",
                metrics=metrics,
                max_turns_reached=max_turns_reached,
            )
        finally:
            await self._record(session, metrics, last_prompt_tokens)

    async def _record(self, session: Session, metrics: AgentMetrics, last_prompt_tokens: int | None) -> None:
        session.add_metrics(
            tokens_used=metrics.tokens_used,
            prompt_tokens=metrics.prompt_tokens,
            completion_tokens=metrics.completion_tokens,
        )
        if last_prompt_tokens is not None:
            session.set_metadata("lastPromptTokens", last_prompt_tokens)
        if self.conversation_manager is not None:
            await self.conversation_manager.save_session(session)

    def _build_request(self, session: Session) -> LLMRequest:
        items: list[Item] = session.get_items()
        if session.last_summary:
            items.insert(0, MessageItem(role="system", content=f"{SUMMARY_PREFIX} {session.last_summary}"))

        tools = self.tool_registry.get_all_declarations()
        return LLMRequest(
            items=items,
            tools=tools or None,
            system_prompt=session.config.system_prompt or self.system_prompt,
        )

    async def cancel(self) -> None:
        """Cancel the Turn currently in flight, if any."""
        if self._current_turn is not None:
            await self._current_turn.cancel()
