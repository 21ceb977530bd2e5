"""Call session controller: the single object a transport or UI binds to.

Owns the capture session, the supervised transcription channel, the frame
pump and the turn coordinator for one call, and merges everything they
report into one event stream.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from src.config import Settings, get_settings
from src.core.events import (
    CallEnded,
    ChannelEvent,
    ClosedEvent,
    ErrorEvent,
    EventStream,
    EventSubscription,
    SessionEvent,
    StateChanged,
)
from src.core.frames import FramePump, FrameQueue
from src.core.models import AudioFrame, CallState, ConversationTranscript, Scenario
from src.core.session import CallSession
from src.core.supervisor import ReconnectPolicy, ReconnectSupervisor, Sleep
from src.core.turns import TurnConfig, TurnCoordinator
from src.logging_config import get_logger
from src.observability.metrics import ACTIVE_CALLS, record_call_metrics
from src.services.audio.exceptions import CaptureError
from src.services.audio.protocol import AudioCaptureSession, AudioPlayer, CaptureConstraints
from src.services.llm.protocol import PersonaContext, PersonaResponder
from src.services.stt.exceptions import ChannelUnrecoverable
from src.services.stt.protocol import ChannelConfig, ChannelFactory
from src.services.tts.protocol import SpeechSynthesizer

logger: Any = get_logger(__name__)

OnEnded = Callable[[CallSession], Awaitable[None]]


@dataclass(frozen=True)
class CallConfig:
    """Everything tunable about one call, fixed when the controller is built."""

    capture: CaptureConstraints = field(default_factory=CaptureConstraints)
    channel: ChannelConfig = field(default_factory=ChannelConfig)
    turns: TurnConfig = field(default_factory=TurnConfig)
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)
    frame_queue_size: int = 50

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        voice_id: str | None = None,
    ) -> CallConfig:
        """Create config from application settings."""
        s = settings or get_settings()
        turns = TurnConfig.from_settings(s)
        if voice_id:
            turns = TurnConfig(
                min_utterance_chars=turns.min_utterance_chars,
                responder_timeout_seconds=turns.responder_timeout_seconds,
                synthesis_timeout_seconds=turns.synthesis_timeout_seconds,
                fallback_reply=turns.fallback_reply,
                transcript_window=turns.transcript_window,
                voice_id=voice_id,
            )
        return cls(
            capture=CaptureConstraints(
                sample_rate=s.capture_sample_rate,
                channels=1,
                frame_ms=s.capture_frame_ms,
                device=s.capture_device,
            ),
            channel=ChannelConfig(
                sample_rate=s.capture_sample_rate,
                encoding="linear16",
                channels=1,
                language=s.stt_language,
                interim_results=True,
                endpointing_ms=s.stt_endpointing_ms,
                utterance_end_ms=s.stt_utterance_end_ms,
                model=s.stt_model,
            ),
            turns=turns,
            reconnect=ReconnectPolicy.from_settings(s),
            frame_queue_size=s.frame_queue_size,
        )


class CallSessionController:
    """Runs one practice call from start() to end().

    Usage:
        controller = CallSessionController(capture=..., channel_factory=..., ...)
        events = controller.events()
        await controller.start(scenario)
        async for event in events:
            ...

    Subscribe before start() to receive every event. The stream ends after
    CallEnded.
    """

    def __init__(
        self,
        *,
        capture: AudioCaptureSession,
        channel_factory: ChannelFactory,
        responder: PersonaResponder,
        synthesizer: SpeechSynthesizer,
        player: AudioPlayer,
        config: CallConfig | None = None,
        fallback_synthesizer: SpeechSynthesizer | None = None,
        session_id: str | None = None,
        source: str = "local",
        on_ended: OnEnded | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._capture = capture
        self._channel_factory = channel_factory
        self._responder = responder
        self._synthesizer = synthesizer
        self._fallback_synthesizer = fallback_synthesizer
        self._player = player
        self._config = config or CallConfig()
        self._session_id = session_id
        self._source = source
        self._on_ended = on_ended
        self._sleep = sleep
        self._clock = clock

        self._stream = EventStream()
        self._session: CallSession | None = None
        self._coordinator: TurnCoordinator | None = None
        self._supervisor: ReconnectSupervisor | None = None
        self._queue: FrameQueue | None = None
        self._pump: FramePump | None = None
        self._active_counted = False
        self._ending = False
        self._ended = asyncio.Event()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def session(self) -> CallSession | None:
        return self._session

    @property
    def state(self) -> CallState:
        if self._session is None:
            return CallState.IDLE
        return self._session.state

    @property
    def transcript(self) -> ConversationTranscript | None:
        return self._session.transcript if self._session else None

    @property
    def coordinator(self) -> TurnCoordinator | None:
        return self._coordinator

    @property
    def supervisor(self) -> ReconnectSupervisor | None:
        return self._supervisor

    @property
    def is_active(self) -> bool:
        return self._session is not None and not self._ending

    def events(self) -> EventSubscription:
        """Subscribe to the unified event stream."""
        return self._stream.subscribe()

    async def wait_ended(self) -> None:
        await self._ended.wait()

    def status(self) -> dict[str, Any]:
        """Live view of the call for status endpoints."""
        if self._session is None:
            return {"state": CallState.IDLE.name.lower()}
        data = self._session.to_dict()
        data["duration_seconds"] = round(
            self._coordinator.duration_seconds if self._coordinator else 0.0, 2
        )
        if self._supervisor is not None:
            data["channel"] = {
                **self._supervisor.health.to_dict(),
                "generation": self._supervisor.generation,
                "reconnects": self._supervisor.reconnects,
            }
        if self._coordinator is not None:
            data["turns"] = self._coordinator.metrics.to_dict()
        return data

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, scenario: Scenario) -> CallSession:
        """Start the call and return once the persona's opening is scheduled.

        Raises:
            CaptureError: Microphone unavailable; the call never starts
            ChannelUnrecoverable: Transcription backend unreachable
        """
        if self._session is not None:
            raise RuntimeError("Call already started")

        session = CallSession(scenario=scenario, source=self._source)
        if self._session_id:
            session.session_id = self._session_id
        self._session = session
        name = session.session_id[:8]

        config = self._config
        coordinator = TurnCoordinator(
            persona=PersonaContext.from_scenario(scenario),
            transcript=session.transcript,
            responder=self._responder,
            synthesizer=self._synthesizer,
            fallback_synthesizer=self._fallback_synthesizer,
            player=self._player,
            config=config.turns,
            emit=self._publish,
            clock=self._clock,
            name=name,
        )
        supervisor = ReconnectSupervisor(
            self._channel_factory,
            config.channel,
            on_event=self._on_channel_event,
            policy=config.reconnect,
            emit=self._publish,
            on_replaced=coordinator.channel_replaced,
            on_unrecoverable=self._on_unrecoverable,
            sleep=self._sleep,
            name=name,
        )
        queue = FrameQueue(max_size=config.frame_queue_size)
        pump = FramePump(queue, lambda: supervisor.channel, name=name)
        self._coordinator = coordinator
        self._supervisor = supervisor
        self._queue = queue
        self._pump = pump

        ACTIVE_CALLS.inc()
        self._active_counted = True
        logger.info(
            f"[{name}] Starting call: scenario={scenario.scenario_id or 'custom'} "
            f"persona={scenario.client_name} source={self._source}"
        )

        try:
            await self._capture.open(config.capture)
        except CaptureError as e:
            logger.warning(f"[{name}] Capture failed: {e}")
            await self.end(reason="capture_failed", error=e)
            raise

        try:
            await supervisor.connect()
        except ChannelUnrecoverable as e:
            if self._ending:
                await self._ended.wait()
                return session
            await self.end(reason="channel_unrecoverable", error=e)
            raise

        if self._ending:
            return session

        pump.start()
        loop = asyncio.get_running_loop()

        def on_frame(frame: AudioFrame) -> None:
            try:
                loop.call_soon_threadsafe(queue.put, frame)
            except RuntimeError:
                # Loop already closed; capture is being torn down
                pass

        try:
            self._capture.start_streaming(on_frame)
        except CaptureError as e:
            logger.warning(f"[{name}] Capture failed to stream: {e}")
            await self.end(reason="capture_failed", error=e)
            raise

        coordinator.begin(scenario.opening_line)
        return session

    async def end(self, reason: str = "ended", error: BaseException | None = None) -> None:
        """End the call and release everything it holds. Idempotent."""
        if self._ending:
            await self._ended.wait()
            return
        self._ending = True

        try:
            await self._shutdown(reason, error)
        finally:
            self._ended.set()

        if self._on_ended is not None and self._session is not None:
            try:
                await self._on_ended(self._session)
            except Exception as e:
                logger.error(f"on_ended hook failed: {e}")

    async def _shutdown(self, reason: str, error: BaseException | None) -> None:
        session = self._session
        name = session.session_id[:8] if session else "call"

        if self._coordinator is not None:
            await self._coordinator.end()
        if self._supervisor is not None:
            await self._supervisor.stop()
        if self._pump is not None:
            await self._pump.stop()
        try:
            self._capture.stop()
        except Exception as e:
            logger.warning(f"[{name}] Capture stop failed: {e}")

        duration = self._coordinator.duration_seconds if self._coordinator else 0.0
        transcript: tuple = ()
        error_message: str | None = None
        if session is not None:
            session.state = CallState.ENDED
            session.duration_seconds = duration
            session.end_reason = reason
            session.failure = error
            transcript = session.transcript.entries
            error_message = session.failure_message

        if self._active_counted:
            ACTIVE_CALLS.dec()
            self._active_counted = False
            record_call_metrics(
                outcome=reason,
                duration_seconds=duration,
                source=session.source if session else self._source,
            )

        self._stream.publish(CallEnded(
            transcript=transcript,
            duration_seconds=duration,
            reason=reason,
            error=error_message,
        ))
        self._stream.close()
        logger.info(f"[{name}] Call ended: reason={reason} duration={duration:.1f}s")

    # =========================================================================
    # Event routing
    # =========================================================================

    def _on_channel_event(self, generation: int, event: ChannelEvent) -> None:
        supervisor = self._supervisor
        if supervisor is None or self._ending or not supervisor.is_current(generation):
            return

        self._stream.publish(event)
        if self._coordinator is not None:
            self._coordinator.dispatch(event)

        if isinstance(event, ErrorEvent):
            supervisor.report_failure(generation, event.cause)
        elif isinstance(event, ClosedEvent) and not event.expected:
            supervisor.report_failure(generation, "channel closed unexpectedly")

    def _publish(self, event: SessionEvent) -> None:
        if isinstance(event, StateChanged) and self._session is not None:
            self._session.state = event.current
        self._stream.publish(event)

    async def _on_unrecoverable(self, error: ChannelUnrecoverable) -> None:
        await self.end(reason="channel_unrecoverable", error=error)
