"""Build the collaborators a call needs from settings.

The responder and synthesizers hold only API clients, so one set is shared
by every call in the process. Transcription channels are per call and are
created through the factory returned by ``build_channel_factory``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from src.config import Settings, get_settings
from src.core.controller import CallConfig, CallSessionController, OnEnded
from src.core.events import ChannelSink
from src.logging_config import get_logger
from src.services.audio.protocol import AudioCaptureSession, AudioPlayer
from src.services.llm.groq import GroqPersonaResponder
from src.services.stt.deepgram import DeepgramChannel
from src.services.stt.protocol import ChannelFactory, TranscriptionChannel
from src.services.stt.relay import RelayChannel
from src.services.tts.edge import EdgeSynthesizer
from src.services.tts.elevenlabs import ElevenLabsSynthesizer
from src.services.tts.protocol import SpeechSynthesizer

logger: Any = get_logger(__name__)


def build_channel_factory(settings: Settings | None = None) -> ChannelFactory:
    """Transcription channel factory for the configured ``stt_provider``.

    Raises:
        ValueError: relay selected without ``stt_relay_url``
    """
    s = settings or get_settings()
    pending = max(s.frame_queue_size, 1)

    if s.stt_provider == "relay":
        if not s.stt_relay_url:
            raise ValueError("stt_relay_url is required when stt_provider is 'relay'")
        url = s.stt_relay_url
        api_key = s.deepgram_api_key.get_secret_value()

        def relay_factory(sink: ChannelSink) -> TranscriptionChannel:
            return RelayChannel(sink, url, api_key=api_key, max_pending_frames=pending)

        return relay_factory

    def deepgram_factory(sink: ChannelSink) -> TranscriptionChannel:
        return DeepgramChannel(sink, s, max_pending_frames=pending)

    return deepgram_factory


@dataclass
class CallServices:
    """Shared backends used by every call."""

    settings: Settings
    responder: GroqPersonaResponder
    synthesizer: SpeechSynthesizer
    fallback_synthesizer: SpeechSynthesizer | None
    channel_factory: ChannelFactory

    @property
    def voice_id(self) -> str | None:
        return getattr(self.synthesizer, "voice_id", None)

    def create_controller(
        self,
        capture: AudioCaptureSession,
        player: AudioPlayer,
        *,
        source: str,
        session_id: str | None = None,
        on_ended: OnEnded | None = None,
    ) -> CallSessionController:
        """Controller for one call over the given audio transport."""
        return CallSessionController(
            capture=capture,
            channel_factory=self.channel_factory,
            responder=self.responder,
            synthesizer=self.synthesizer,
            fallback_synthesizer=self.fallback_synthesizer,
            player=player,
            config=CallConfig.from_settings(self.settings, voice_id=self.voice_id),
            session_id=session_id,
            source=source,
            on_ended=on_ended,
        )

    async def health(self) -> dict[str, bool]:
        results = {"responder": await self.responder.health_check()}
        voices = (
            ("synthesizer", self.synthesizer),
            ("fallback_synthesizer", self.fallback_synthesizer),
        )
        for label, synth in voices:
            if synth is not None and hasattr(synth, "health_check"):
                results[label] = await synth.health_check()
        return results

    async def close(self) -> None:
        await self.responder.close()
        for synth in (self.synthesizer, self.fallback_synthesizer):
            if synth is not None and hasattr(synth, "close"):
                try:
                    await synth.close()
                except Exception as e:
                    logger.warning(f"Error closing synthesizer: {e}")


def build_call_services(settings: Settings | None = None) -> CallServices:
    """Create the responder, voices and channel factory from settings."""
    s = settings or get_settings()

    synthesizer: SpeechSynthesizer
    fallback: SpeechSynthesizer | None = None
    if s.tts_provider == "elevenlabs" and s.elevenlabs_api_key:
        synthesizer = ElevenLabsSynthesizer(s)
        if s.edge_tts_fallback_enabled:
            fallback = EdgeSynthesizer(s)
    else:
        if s.tts_provider == "elevenlabs":
            logger.warning("ElevenLabs API key not set, using Edge TTS as the persona voice")
        synthesizer = EdgeSynthesizer(s)

    services = CallServices(
        settings=s,
        responder=GroqPersonaResponder(s),
        synthesizer=synthesizer,
        fallback_synthesizer=fallback,
        channel_factory=build_channel_factory(s),
    )
    logger.info(
        f"Call services ready: stt={s.stt_provider} "
        f"voice={type(synthesizer).__name__} fallback={type(fallback).__name__ if fallback else None}"
    )
    return services
