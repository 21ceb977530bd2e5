"""Transcription channel protocol and configuration."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from src.core.events import ChannelSink
from src.core.models import AudioFrame, ChannelHealth


@dataclass(frozen=True, slots=True)
class ChannelConfig:
    """Stream parameters negotiated when a channel opens.

    Attributes:
        sample_rate: PCM sample rate of outbound frames
        encoding: Wire encoding of outbound frames
        channels: Interleaved channel count
        language: BCP-47 recognition language
        interim_results: Whether the backend should send provisional text
        endpointing_ms: Silence that ends an utterance
        utterance_end_ms: Word gap reported as an utterance end event
        model: Backend model name
    """

    sample_rate: int = 16000
    encoding: str = "linear16"
    channels: int = 1
    language: str = "en-US"
    interim_results: bool = True
    endpointing_ms: int = 300
    utterance_end_ms: int = 1000
    model: str = "nova-2"

    def start_message(self) -> dict[str, Any]:
        """Control message that begins a relay session."""
        return {
            "type": "start",
            "encoding": self.encoding,
            "sample_rate": self.sample_rate,
            "channels": self.channels,
            "language": self.language,
            "interim_results": self.interim_results,
            "endpointing": self.endpointing_ms,
        }


class TranscriptionChannel(Protocol):
    """Bidirectional stream to a speech-recognition backend.

    Events are pushed to the sink given at construction, on the event loop,
    in the order the backend produced them.
    """

    @property
    def health(self) -> ChannelHealth:
        """Connection bookkeeping for this channel."""
        ...

    @property
    def frames_lost(self) -> int:
        """Frames dropped because the channel was closed."""
        ...

    async def open(self, config: ChannelConfig) -> None:
        """Establish the stream.

        Raises:
            ChannelOpenError: Network, auth or backend failure
        """
        ...

    async def send_frame(self, frame: AudioFrame) -> None:
        """Forward one frame (buffered before open, dropped after close)."""
        ...

    async def close(self) -> None:
        """Flush, signal end-of-stream and release the transport. Idempotent."""
        ...


ChannelFactory = Callable[[ChannelSink], TranscriptionChannel]
