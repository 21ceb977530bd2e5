"""Registry of live practice calls.

Every transport (browser websocket, Plivo media stream) registers its
controller here so status routes, webhooks and shutdown can reach it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from src.core.controller import CallSessionController
from src.logging_config import get_logger

logger: Any = get_logger(__name__)


class CallCapacityError(Exception):
    """Raised when the server is already running its maximum number of calls."""

    pass


@dataclass
class CallEntry:
    """Entry in the call registry."""

    session_id: str
    controller: CallSessionController
    source: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class CallRegistry:
    """Live calls keyed by session id, with a concurrency limit."""

    def __init__(self, max_calls: int = 10) -> None:
        self._calls: dict[str, CallEntry] = {}
        self._max_calls = max_calls
        self._lock = asyncio.Lock()

    async def add(self, session_id: str, controller: CallSessionController, *, source: str) -> CallEntry:
        """Register a call before it starts.

        Raises:
            CallCapacityError: If the server is at maximum capacity.
        """
        async with self._lock:
            if session_id in self._calls:
                return self._calls[session_id]
            if len(self._calls) >= self._max_calls:
                logger.warning(
                    f"Max concurrent calls reached ({self._max_calls}), rejecting {session_id}"
                )
                raise CallCapacityError(f"Server at capacity ({self._max_calls} concurrent calls)")

            entry = CallEntry(session_id=session_id, controller=controller, source=source)
            self._calls[session_id] = entry
            logger.info(
                f"Registered call {session_id} ({source}, "
                f"active: {len(self._calls)}/{self._max_calls})"
            )
            return entry

    async def get(self, session_id: str) -> CallEntry | None:
        async with self._lock:
            return self._calls.get(session_id)

    async def remove(self, session_id: str) -> CallEntry | None:
        async with self._lock:
            return self._calls.pop(session_id, None)

    async def snapshot(self) -> list[dict[str, Any]]:
        async with self._lock:
            entries = list(self._calls.values())
        return [
            {**entry.controller.status(), "registered_at": entry.created_at.isoformat()}
            for entry in entries
        ]

    async def end_all(self, reason: str = "server_shutdown") -> None:
        """End every live call (for shutdown)."""
        async with self._lock:
            entries = list(self._calls.values())
        for entry in entries:
            try:
                await entry.controller.end(reason=reason)
            except Exception as e:
                logger.error(f"Error ending call {entry.session_id}: {e}")
        async with self._lock:
            self._calls.clear()

    @property
    def active_count(self) -> int:
        return len(self._calls)

    @property
    def max_calls(self) -> int:
        return self._max_calls
