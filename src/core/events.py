"""Typed events for transcription channels and call sessions.

Channel events are a closed set of four variants. Session events add the
coordinator's and supervisor's own notifications. Everything an owner needs
to render a call flows through one ``EventStream``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.core.models import CallState, Utterance

# =============================================================================
# Channel events
# =============================================================================


class BoundaryKind(str, Enum):
    STARTED = "speech_started"
    ENDED = "speech_ended"


@dataclass(frozen=True, slots=True)
class TranscriptEvent:
    """Interim or final transcript for the current utterance."""

    text: str
    is_final: bool
    confidence: float = 0.0


@dataclass(frozen=True, slots=True)
class SpeechBoundaryEvent:
    """Voice activity started or an utterance was end-pointed."""

    kind: BoundaryKind


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """Transport or backend failure on the channel."""

    cause: str
    exception: BaseException | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class ClosedEvent:
    """Channel closed. ``expected`` is True when close() was requested locally."""

    expected: bool = False


ChannelEvent = TranscriptEvent | SpeechBoundaryEvent | ErrorEvent | ClosedEvent
ChannelSink = Callable[[ChannelEvent], None]

# =============================================================================
# Session events
# =============================================================================


@dataclass(frozen=True, slots=True)
class StateChanged:
    previous: CallState
    current: CallState


@dataclass(frozen=True, slots=True)
class InterimCaption:
    """Live caption text; empty text clears the caption."""

    text: str


@dataclass(frozen=True, slots=True)
class UtteranceAppended:
    utterance: Utterance
    index: int


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """A recoverable failure that was absorbed with a substitute."""

    kind: str
    detail: str = ""


@dataclass(frozen=True, slots=True)
class ChannelReconnecting:
    attempt: int
    max_attempts: int
    delay_seconds: float
    cause: str = ""


@dataclass(frozen=True, slots=True)
class ChannelReconnected:
    attempt: int


@dataclass(frozen=True, slots=True)
class CallEnded:
    transcript: tuple[Utterance, ...]
    duration_seconds: float
    reason: str
    error: str | None = None


SessionEvent = (
    ChannelEvent
    | StateChanged
    | InterimCaption
    | UtteranceAppended
    | Diagnostic
    | ChannelReconnecting
    | ChannelReconnected
    | CallEnded
)


def event_to_dict(event: SessionEvent) -> dict[str, Any]:
    """Serialize an event for JSON transports (browser websocket, logs)."""
    if isinstance(event, TranscriptEvent):
        return {
            "type": "transcript",
            "text": event.text,
            "is_final": event.is_final,
            "confidence": event.confidence,
        }
    if isinstance(event, SpeechBoundaryEvent):
        return {"type": event.kind.value}
    if isinstance(event, ErrorEvent):
        return {"type": "channel_error", "error": event.cause}
    if isinstance(event, ClosedEvent):
        return {"type": "channel_closed", "expected": event.expected}
    if isinstance(event, StateChanged):
        return {
            "type": "state",
            "previous": event.previous.name.lower(),
            "state": event.current.name.lower(),
        }
    if isinstance(event, InterimCaption):
        return {"type": "caption", "text": event.text}
    if isinstance(event, UtteranceAppended):
        return {"type": "utterance", "index": event.index, **event.utterance.to_dict()}
    if isinstance(event, Diagnostic):
        return {"type": "diagnostic", "kind": event.kind, "detail": event.detail}
    if isinstance(event, ChannelReconnecting):
        return {
            "type": "reconnecting",
            "attempt": event.attempt,
            "max_attempts": event.max_attempts,
            "delay_seconds": event.delay_seconds,
            "cause": event.cause,
        }
    if isinstance(event, ChannelReconnected):
        return {"type": "reconnected", "attempt": event.attempt}
    if isinstance(event, CallEnded):
        return {
            "type": "call_ended",
            "reason": event.reason,
            "error": event.error,
            "duration_seconds": round(event.duration_seconds, 2),
            "transcript": [u.to_dict() for u in event.transcript],
        }
    raise TypeError(f"Unknown event type: {type(event).__name__}")


# =============================================================================
# Fan-out
# =============================================================================


class EventSubscription:
    """Async iterator over events published after the subscription was made.

    An event counts as handled once the consumer asks for the next one, so
    ``join()`` lets a producer wait until the consumer has caught up.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue()
        self._done = False
        self._in_hand = False
        self._released = False

    def _put(self, event: SessionEvent | None) -> None:
        if self._released:
            return
        self._queue.put_nowait(event)

    def _finish_current(self) -> None:
        if self._in_hand:
            self._in_hand = False
            self._queue.task_done()

    def __aiter__(self) -> EventSubscription:
        return self

    async def __anext__(self) -> SessionEvent:
        self._finish_current()
        if self._done:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            self._queue.task_done()
            self._done = True
            raise StopAsyncIteration
        self._in_hand = True
        return event

    async def join(self) -> None:
        """Wait until every event queued so far has been handled."""
        await self._queue.join()

    def release(self) -> None:
        """Stop consuming; queued and future events are discarded."""
        self._released = True
        self._done = True
        self._finish_current()
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()


class EventStream:
    """Publishes session events to every subscriber.

    Publishing never blocks; each subscriber has an unbounded queue.
    ``close()`` ends every subscription after the events already queued.
    """

    def __init__(self) -> None:
        self._subscribers: list[EventSubscription] = []
        self._closed = False

    def subscribe(self) -> EventSubscription:
        subscription = EventSubscription()
        if self._closed:
            subscription._put(None)
        else:
            self._subscribers.append(subscription)
        return subscription

    def publish(self, event: SessionEvent) -> None:
        if self._closed:
            return
        for subscription in self._subscribers:
            subscription._put(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscribers:
            subscription._put(None)
        self._subscribers.clear()

    @property
    def closed(self) -> bool:
        return self._closed
