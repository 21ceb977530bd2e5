"""ElevenLabs persona voice."""

from __future__ import annotations

import asyncio
import io
import time
from typing import TYPE_CHECKING, Any

from src.config import Settings, get_settings
from src.logging_config import get_logger
from src.services.tts.exceptions import (
    SynthesisConfigurationError,
    SynthesisConnectionError,
    SynthesisError,
)
from src.services.tts.protocol import SynthesizedAudio

if TYPE_CHECKING:
    from elevenlabs import ElevenLabs, VoiceSettings

logger: Any = get_logger(__name__)

ELEVENLABS_DEFAULT_VOICE_ID = "pNInz6obpgDQGcFmaJgB"  # Adam
ELEVENLABS_DEFAULT_MODEL_ID = "eleven_turbo_v2_5"
ELEVENLABS_OUTPUT_FORMAT = "mp3_44100_128"

# Tuned for a conversational phone voice
VOICE_STABILITY = 0.75
VOICE_SIMILARITY_BOOST = 0.85
VOICE_STYLE = 0.25


class ElevenLabsSynthesizer:
    """ElevenLabs text-to-speech returning mp3 bytes."""

    provider = "elevenlabs"

    def __init__(
        self,
        settings: Settings | None = None,
        voice_id: str | None = None,
        model_id: str | None = None,
        *,
        client: ElevenLabs | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._voice_id = voice_id or self._settings.elevenlabs_voice_id or ELEVENLABS_DEFAULT_VOICE_ID
        self._model_id = model_id or self._settings.elevenlabs_model_id or ELEVENLABS_DEFAULT_MODEL_ID
        self._client = client

    @property
    def voice_id(self) -> str:
        return self._voice_id

    def _get_client(self) -> ElevenLabs:
        if self._client is None:
            if not self._settings.elevenlabs_api_key:
                raise SynthesisConfigurationError("ElevenLabs API key is not configured")
            from elevenlabs import ElevenLabs

            self._client = ElevenLabs(
                api_key=self._settings.elevenlabs_api_key.get_secret_value()
            )
        return self._client

    def _voice_settings(self) -> VoiceSettings:
        from elevenlabs import VoiceSettings

        return VoiceSettings(
            stability=VOICE_STABILITY,
            similarity_boost=VOICE_SIMILARITY_BOOST,
            style=VOICE_STYLE,
            use_speaker_boost=True,
        )

    async def synthesize(self, text: str, voice_id: str | None = None) -> SynthesizedAudio:
        voice = voice_id or self._voice_id
        start = time.perf_counter()
        try:
            mp3_bytes = await asyncio.to_thread(self._synthesize_to_mp3, text, voice)
        except SynthesisError:
            raise
        except Exception as e:
            logger.error(f"ElevenLabs synthesis error: {e}")
            raise SynthesisConnectionError(f"ElevenLabs request failed: {e}") from e

        if not mp3_bytes:
            raise SynthesisError("No audio received from ElevenLabs")

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"ElevenLabs synthesized {len(text)} chars in {elapsed_ms:.0f}ms")
        return SynthesizedAudio(
            audio_bytes=mp3_bytes,
            mime_type="audio/mpeg",
            voice_id=voice,
            provider=self.provider,
            synthesis_ms=elapsed_ms,
        )

    def _synthesize_to_mp3(self, text: str, voice_id: str) -> bytes:
        client = self._get_client()

        audio_chunks = client.text_to_speech.convert(
            voice_id=voice_id,
            text=text,
            model_id=self._model_id,
            output_format=ELEVENLABS_OUTPUT_FORMAT,
            voice_settings=self._voice_settings(),
        )

        buffer = io.BytesIO()
        for chunk in audio_chunks:
            buffer.write(chunk)
        return buffer.getvalue()

    async def close(self) -> None:
        self._client = None

    async def health_check(self) -> bool:
        return bool(self._settings.elevenlabs_api_key)
