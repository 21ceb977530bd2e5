"""Deepgram transcription channel over the live WebSocket API."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from src.config import Settings, get_settings
from src.core.events import (
    BoundaryKind,
    ChannelEvent,
    ChannelSink,
    ClosedEvent,
    ErrorEvent,
    SpeechBoundaryEvent,
    TranscriptEvent,
)
from src.logging_config import get_logger
from src.services.stt.base import DEFAULT_PENDING_FRAMES, BaseTranscriptionChannel
from src.services.stt.exceptions import ChannelOpenError
from src.services.stt.protocol import ChannelConfig

if TYPE_CHECKING:
    from deepgram import DeepgramClient, LiveOptions

logger: Any = get_logger(__name__)


class DeepgramEventMapper:
    """Turns Deepgram live messages into channel events.

    Deepgram marks the end of an utterance either with ``speech_final`` on a
    final result or with a separate UtteranceEnd message. Only one
    SpeechBoundaryEvent(ENDED) is produced per speech segment, and it is
    delivered before the final transcript that accompanies it.
    """

    def __init__(self) -> None:
        self._in_speech = False

    def on_result(self, result: Any) -> list[ChannelEvent]:
        alternatives = getattr(result.channel, "alternatives", None) or []
        if not alternatives:
            return []

        alternative = alternatives[0]
        text = alternative.transcript or ""
        is_final = bool(getattr(result, "is_final", False))
        speech_final = bool(getattr(result, "speech_final", False))
        confidence = float(getattr(alternative, "confidence", 0.0) or 0.0)

        events: list[ChannelEvent] = []
        if text.strip():
            self._in_speech = True
        elif not is_final:
            return []

        if speech_final and self._in_speech:
            events.append(SpeechBoundaryEvent(BoundaryKind.ENDED))
            self._in_speech = False

        events.append(TranscriptEvent(text=text, is_final=is_final, confidence=confidence))
        return events

    def on_speech_started(self) -> list[ChannelEvent]:
        self._in_speech = True
        return [SpeechBoundaryEvent(BoundaryKind.STARTED)]

    def on_utterance_end(self) -> list[ChannelEvent]:
        if not self._in_speech:
            return []
        self._in_speech = False
        return [SpeechBoundaryEvent(BoundaryKind.ENDED)]


class DeepgramChannel(BaseTranscriptionChannel):
    """Deepgram live transcription channel.

    The SDK's websocket client is synchronous and delivers events on its own
    thread; sends run in a worker thread and events are marshalled back onto
    the event loop in arrival order.
    """

    provider = "deepgram"

    def __init__(
        self,
        sink: ChannelSink,
        settings: Settings | None = None,
        *,
        client: DeepgramClient | None = None,
        max_pending_frames: int = DEFAULT_PENDING_FRAMES,
    ) -> None:
        super().__init__(sink, max_pending_frames=max_pending_frames)
        self._settings = settings or get_settings()
        self._client = client
        self._live: Any = None
        self._mapper = DeepgramEventMapper()

    @property
    def client(self) -> DeepgramClient:
        """Lazy initialization of Deepgram client."""
        if self._client is None:
            from deepgram import DeepgramClient

            self._client = DeepgramClient(
                api_key=self._settings.deepgram_api_key.get_secret_value(),
            )
        return self._client

    def build_options(self, config: ChannelConfig) -> LiveOptions:
        from deepgram import LiveOptions

        return LiveOptions(
            model=config.model,
            language=config.language,
            smart_format=True,
            punctuate=True,
            interim_results=config.interim_results,
            endpointing=config.endpointing_ms,
            utterance_end_ms=str(config.utterance_end_ms),
            vad_events=True,
            encoding=config.encoding,
            sample_rate=config.sample_rate,
            channels=config.channels,
        )

    async def _connect(self, config: ChannelConfig) -> None:
        from deepgram import LiveTranscriptionEvents

        live = self.client.listen.websocket.v("1")
        live.on(LiveTranscriptionEvents.Transcript, self._on_transcript)
        live.on(LiveTranscriptionEvents.SpeechStarted, self._on_speech_started)
        live.on(LiveTranscriptionEvents.UtteranceEnd, self._on_utterance_end)
        live.on(LiveTranscriptionEvents.Error, self._on_error)
        live.on(LiveTranscriptionEvents.Close, self._on_close)
        self._live = live

        if not await asyncio.to_thread(live.start, self.build_options(config)):
            raise ChannelOpenError("Failed to connect to Deepgram")
        logger.debug(f"Deepgram stream started (model={config.model})")

    async def _transmit(self, pcm: bytes) -> None:
        await asyncio.to_thread(self._live.send, pcm)

    async def _finish(self) -> None:
        live, self._live = self._live, None
        if live is not None:
            await asyncio.to_thread(live.finish)

    async def _disconnect(self) -> None:
        live, self._live = self._live, None
        if live is not None:
            await asyncio.to_thread(live.finish)

    # SDK callbacks (Deepgram receive thread)

    def _deliver(self, events: list[ChannelEvent]) -> None:
        for event in events:
            self._emit_threadsafe(event)

    def _on_transcript(self, _client: Any, result: Any = None, **kwargs: Any) -> None:
        try:
            self._deliver(self._mapper.on_result(result))
        except Exception as e:
            logger.error(f"Error processing Deepgram result: {e}")

    def _on_speech_started(self, _client: Any, speech_started: Any = None, **kwargs: Any) -> None:
        self._deliver(self._mapper.on_speech_started())

    def _on_utterance_end(self, _client: Any, utterance_end: Any = None, **kwargs: Any) -> None:
        self._deliver(self._mapper.on_utterance_end())

    def _on_error(self, _client: Any, error: Any = None, **kwargs: Any) -> None:
        logger.error(f"Deepgram WebSocket error: {error}")
        self._emit_threadsafe(ErrorEvent(cause=f"deepgram: {error}"))

    def _on_close(self, _client: Any, close: Any = None, **kwargs: Any) -> None:
        logger.debug("Deepgram WebSocket closed")
        self._emit_threadsafe(ClosedEvent())
