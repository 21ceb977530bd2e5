"""Edge TTS voice, used as the built-in fallback voice."""

from __future__ import annotations

import io
import time
from typing import Any

import edge_tts

from src.config import Settings, get_settings
from src.logging_config import get_logger
from src.services.tts.exceptions import SynthesisConnectionError, SynthesisError
from src.services.tts.protocol import SynthesizedAudio

logger: Any = get_logger(__name__)

EDGE_DEFAULT_VOICE = "en-US-JennyNeural"
# Slightly slower than default, matching a browser speech-synthesis fallback
EDGE_SPEAKING_RATE = "-10%"


class EdgeSynthesizer:
    """Edge TTS using Microsoft's unofficial API.

    No API key, so it doubles as the always-available fallback voice. The
    API is unofficial and may change without notice.
    """

    provider = "edge"

    def __init__(
        self,
        settings: Settings | None = None,
        voice: str | None = None,
        *,
        rate: str = EDGE_SPEAKING_RATE,
    ) -> None:
        self._settings = settings or get_settings()
        self._voice = voice or self._settings.edge_tts_voice or EDGE_DEFAULT_VOICE
        self._rate = rate

    @property
    def voice_id(self) -> str:
        return self._voice

    async def synthesize(self, text: str, voice_id: str | None = None) -> SynthesizedAudio:
        # Non-Edge voice ids (e.g. ElevenLabs ids) are not meaningful here
        voice = voice_id if voice_id and voice_id.count("-") >= 2 else self._voice
        start = time.perf_counter()
        mp3_buffer = io.BytesIO()

        try:
            communicate = edge_tts.Communicate(text, voice, rate=self._rate)
            async for message in communicate.stream():
                if message["type"] == "audio":
                    mp3_buffer.write(message["data"])
        except Exception as e:
            logger.error(f"Edge TTS synthesis error: {e}")
            raise SynthesisConnectionError(f"Edge TTS request failed: {e}") from e

        mp3_bytes = mp3_buffer.getvalue()
        if not mp3_bytes:
            raise SynthesisError("No audio received from Edge TTS")

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"Edge TTS synthesized {len(text)} chars in {elapsed_ms:.0f}ms")
        return SynthesizedAudio(
            audio_bytes=mp3_bytes,
            mime_type="audio/mpeg",
            voice_id=voice,
            provider=self.provider,
            synthesis_ms=elapsed_ms,
        )

    async def close(self) -> None:
        return None

    async def health_check(self) -> bool:
        return True
