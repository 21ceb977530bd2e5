"""Domain types shared by the call orchestrator.

Utterances and the transcript are the only state that outlives a turn;
frames and channel health are transport bookkeeping.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any


class Speaker(str, Enum):
    """Who produced an utterance."""

    USER = "user"
    PERSONA = "persona"


class Finality(str, Enum):
    """Whether a transcript may still be revised by the backend."""

    INTERIM = "interim"
    FINAL = "final"


class CallState(Enum):
    """Turn-taking state of a practice call."""

    IDLE = auto()
    PERSONA_SPEAKING = auto()
    LISTENING_FOR_USER = auto()
    TRANSCRIBING = auto()
    GENERATING_REPLY = auto()
    ENDED = auto()


@dataclass(frozen=True, slots=True)
class Utterance:
    """One continuous span of speech from one speaker.

    Attributes:
        speaker: USER or PERSONA
        text: Transcribed or generated text
        finality: INTERIM while the backend may still revise it
        offset_seconds: Seconds since the call started
        confidence: Recognition confidence for user speech
        text_only: Persona line shown without audio (synthesis failed)
    """

    speaker: Speaker
    text: str
    finality: Finality = Finality.FINAL
    offset_seconds: float = 0.0
    confidence: float | None = None
    text_only: bool = False

    @property
    def is_final(self) -> bool:
        return self.finality is Finality.FINAL

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "speaker": self.speaker.value,
            "text": self.text,
            "finality": self.finality.value,
            "offset_seconds": round(self.offset_seconds, 3),
        }
        if self.confidence is not None:
            data["confidence"] = self.confidence
        if self.text_only:
            data["text_only"] = True
        return data


class ConversationTranscript:
    """Ordered, append-only record of finalized utterances.

    Insertion order is chronological order. Entries are frozen dataclasses and
    the backing list is never exposed, so history cannot be rewritten.
    """

    def __init__(self) -> None:
        self._entries: list[Utterance] = []

    def append(self, utterance: Utterance) -> int:
        """Append a final utterance and return its index."""
        if not utterance.is_final:
            raise ValueError("Only final utterances can be added to the transcript")
        self._entries.append(utterance)
        return len(self._entries) - 1

    @property
    def entries(self) -> tuple[Utterance, ...]:
        return tuple(self._entries)

    def window(self, size: int) -> tuple[Utterance, ...]:
        """Most recent ``size`` utterances, oldest first."""
        if size <= 0:
            return ()
        return tuple(self._entries[-size:])

    def last(self, speaker: Speaker | None = None) -> Utterance | None:
        for utterance in reversed(self._entries):
            if speaker is None or utterance.speaker is speaker:
                return utterance
        return None

    def count(self, speaker: Speaker) -> int:
        return sum(1 for u in self._entries if u.speaker is speaker)

    def to_list(self) -> list[dict[str, Any]]:
        return [u.to_dict() for u in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Utterance]:
        return iter(self.entries)

    def __getitem__(self, index: int) -> Utterance:
        return self._entries[index]


@dataclass(frozen=True, slots=True)
class AudioFrame:
    """Fixed-size block of 16-bit little-endian PCM.

    Attributes:
        pcm: Raw sample bytes
        sample_rate: Samples per second
        channels: Interleaved channel count
        sequence: Capture order within one session
    """

    pcm: bytes
    sample_rate: int = 16000
    channels: int = 1
    sequence: int = 0

    @property
    def duration_ms(self) -> float:
        samples = len(self.pcm) // (2 * self.channels)
        return samples * 1000 / self.sample_rate


class ChannelState(str, Enum):
    """Connection state of a transcription channel."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"


@dataclass
class ChannelHealth:
    """Connection bookkeeping consulted when deciding whether to reconnect."""

    state: ChannelState = ChannelState.CLOSED
    last_activity: float = field(default_factory=time.monotonic)
    consecutive_failures: int = 0

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def mark_connecting(self) -> None:
        self.state = ChannelState.CONNECTING
        self.touch()

    def mark_open(self) -> None:
        self.state = ChannelState.OPEN
        self.consecutive_failures = 0
        self.touch()

    def mark_errored(self) -> None:
        self.state = ChannelState.ERRORED
        self.consecutive_failures += 1
        self.touch()

    def mark_closed(self) -> None:
        self.state = ChannelState.CLOSED

    @property
    def idle_seconds(self) -> float:
        return time.monotonic() - self.last_activity

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "idle_seconds": round(self.idle_seconds, 3),
            "consecutive_failures": self.consecutive_failures,
        }


@dataclass(frozen=True, slots=True)
class Scenario:
    """Practice scenario: who the persona is and how hard they are to win over.

    Attributes:
        scenario_id: Catalog key (empty for ad-hoc scenarios)
        title: Display title
        client_name: Persona's name
        client_type: Persona's role, e.g. "Busy Executive"
        description: Situation the persona is calling about
        personality: DISC tag (D, I, S or C)
        difficulty: easy, medium or hard
        opening_line: Scripted first line, spoken before the user talks
    """

    client_name: str
    client_type: str
    description: str = ""
    personality: str = "S"
    difficulty: str = "medium"
    opening_line: str | None = None
    scenario_id: str = ""
    title: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.scenario_id,
            "title": self.title,
            "client_name": self.client_name,
            "client_type": self.client_type,
            "description": self.description,
            "personality": self.personality,
            "difficulty": self.difficulty,
            "opening_line": self.opening_line,
        }
