"""Speech synthesizer protocol and data types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol


@dataclass(frozen=True, slots=True)
class SynthesizedAudio:
    """A complete, playable rendering of one persona line.

    Attributes:
        audio_bytes: Encoded audio (mp3 from every current backend)
        mime_type: Encoding of ``audio_bytes``
        voice_id: Voice that spoke the line
        provider: Backend that produced it
        synthesis_ms: Time spent synthesizing
    """

    audio_bytes: bytes
    mime_type: str = "audio/mpeg"
    voice_id: str = ""
    provider: str = ""
    synthesis_ms: float = 0.0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def size(self) -> int:
        return len(self.audio_bytes)


class SpeechSynthesizer(Protocol):
    """Turns reply text into playable audio."""

    async def synthesize(self, text: str, voice_id: str | None = None) -> SynthesizedAudio:
        """Synthesize one line.

        Args:
            text: Text to speak
            voice_id: Backend voice; None selects the synthesizer's default

        Raises:
            SynthesisError: On any backend failure
        """
        ...
