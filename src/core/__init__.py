"""Core call orchestration.

- models / events: utterances, transcript, frames and the typed event set
- TurnCoordinator: whose turn it is and when the persona replies
- ReconnectSupervisor: replaces a failed transcription channel with backoff
- CallSessionController: the object a UI or transport binds to

The orchestration classes live in their own modules (``src.core.turns``,
``src.core.supervisor``, ``src.core.controller``) so service packages can
import the leaf types from here without import cycles.
"""

from src.core.events import (
    BoundaryKind,
    CallEnded,
    ChannelEvent,
    ClosedEvent,
    ErrorEvent,
    EventStream,
    SessionEvent,
    SpeechBoundaryEvent,
    TranscriptEvent,
    event_to_dict,
)
from src.core.models import (
    AudioFrame,
    CallState,
    ChannelHealth,
    ChannelState,
    ConversationTranscript,
    Finality,
    Scenario,
    Speaker,
    Utterance,
)
from src.core.session import CallSession

__all__ = [
    # Models
    "AudioFrame",
    "CallSession",
    "CallState",
    "ChannelHealth",
    "ChannelState",
    "ConversationTranscript",
    "Finality",
    "Scenario",
    "Speaker",
    "Utterance",
    # Events
    "BoundaryKind",
    "CallEnded",
    "ChannelEvent",
    "ClosedEvent",
    "ErrorEvent",
    "EventStream",
    "SessionEvent",
    "SpeechBoundaryEvent",
    "TranscriptEvent",
    "event_to_dict",
]
