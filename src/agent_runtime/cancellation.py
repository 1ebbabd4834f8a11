"""
Cooperative cancellation signal shared by a Turn, its model stream and its tools.
"""

import asyncio

from .errors import TurnCancelledError


class CancellationToken:
    """A one-shot flag that collaborators poll or await."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Turn was cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelledError(self.reason or "Turn was cancelled")
