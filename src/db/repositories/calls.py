"""Finished-call log repository."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.core.session import CallSession


@dataclass(frozen=True, slots=True)
class CallLog:
    """Immutable record of a finished practice call."""

    session_id: str
    source: str
    scenario: dict[str, Any]
    started_at: datetime
    duration_seconds: float
    end_reason: str | None
    error: str | None
    transcript: tuple[dict[str, Any], ...]

    @classmethod
    def from_session(cls, session: CallSession) -> CallLog:
        return cls(
            session_id=session.session_id,
            source=session.source,
            scenario=session.scenario.to_dict(),
            started_at=session.started_at,
            duration_seconds=session.duration_seconds,
            end_reason=session.end_reason,
            error=session.failure_message,
            transcript=tuple(session.transcript.to_list()),
        )

    @property
    def scenario_id(self) -> str:
        return str(self.scenario.get("id") or "")

    def summary(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "source": self.source,
            "scenario_id": self.scenario_id,
            "client_name": self.scenario.get("client_name"),
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 2),
            "end_reason": self.end_reason,
            "utterances": len(self.transcript),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.summary(),
            "scenario": self.scenario,
            "error": self.error,
            "transcript": list(self.transcript),
        }


class CallLogRepository:
    """In-memory store of finished calls, newest last.

    Oldest entries are evicted once ``max_entries`` is reached.
    """

    def __init__(self, max_entries: int = 1000) -> None:
        self._logs: OrderedDict[str, CallLog] = OrderedDict()
        self._max_entries = max_entries
        self._lock = asyncio.Lock()

    async def save(self, session: CallSession) -> CallLog:
        log = CallLog.from_session(session)
        async with self._lock:
            self._logs[log.session_id] = log
            self._logs.move_to_end(log.session_id)
            while len(self._logs) > self._max_entries:
                self._logs.popitem(last=False)
        return log

    async def get_by_id(self, session_id: str) -> CallLog | None:
        async with self._lock:
            return self._logs.get(session_id)

    async def list(
        self,
        *,
        scenario_id: str | None = None,
        end_reason: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[CallLog]:
        """Newest first."""
        async with self._lock:
            logs = list(reversed(self._logs.values()))
        if scenario_id:
            logs = [log for log in logs if log.scenario_id == scenario_id]
        if end_reason:
            logs = [log for log in logs if log.end_reason == end_reason]
        return logs[offset : offset + limit]

    async def count(self) -> int:
        async with self._lock:
            return len(self._logs)
