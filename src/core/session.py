"""Call session record."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from src.core.models import CallState, ConversationTranscript, Scenario


@dataclass
class CallSession:
    """State of a single practice call.

    Created when the call starts. The controller keeps it current while the
    call runs; once ENDED it is a read-only record of what was said.
    """

    scenario: Scenario
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    source: str = "local"
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    state: CallState = CallState.IDLE
    duration_seconds: float = 0.0
    end_reason: str | None = None
    failure: BaseException | None = field(default=None, repr=False)
    transcript: ConversationTranscript = field(
        default_factory=ConversationTranscript, repr=False
    )

    @property
    def is_ended(self) -> bool:
        return self.state is CallState.ENDED

    @property
    def failure_message(self) -> str | None:
        if self.failure is None:
            return None
        return str(self.failure) or type(self.failure).__name__

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "source": self.source,
            "scenario": self.scenario.to_dict(),
            "started_at": self.started_at.isoformat(),
            "state": self.state.name.lower(),
            "duration_seconds": round(self.duration_seconds, 2),
            "end_reason": self.end_reason,
            "error": self.failure_message,
            "transcript": self.transcript.to_list(),
        }
