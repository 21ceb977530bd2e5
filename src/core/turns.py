"""Turn-taking state machine for a practice call.

The coordinator decides when the user has finished a turn, obtains the
persona's reply, voices it and hands the floor back. It consumes typed
channel events through a single synchronous ``dispatch()``; each reply
cycle runs as its own task so channel errors stay observable while a
responder call is outstanding.

There is no barge-in. While the persona is speaking, transcripts are masked
so the persona's own audio is never taken for user speech.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from src.config import Settings, get_settings
from src.core.events import (
    BoundaryKind,
    ChannelEvent,
    ClosedEvent,
    Diagnostic,
    ErrorEvent,
    InterimCaption,
    SessionEvent,
    SpeechBoundaryEvent,
    StateChanged,
    TranscriptEvent,
    UtteranceAppended,
)
from src.core.models import CallState, ConversationTranscript, Speaker, Utterance
from src.logging_config import get_logger
from src.observability.metrics import (
    RESPONDER_FALLBACKS,
    RESPONDER_LATENCY,
    SYNTHESIS_FALLBACKS,
    SYNTHESIS_LATENCY,
    USER_TURNS,
)
from src.services.audio.protocol import AudioPlayer
from src.services.llm.exceptions import GenerationError, GenerationTimeout
from src.services.llm.protocol import PersonaContext, PersonaResponder
from src.services.tts.protocol import SpeechSynthesizer, SynthesizedAudio

logger: Any = get_logger(__name__)


@dataclass(frozen=True)
class TurnConfig:
    """Turn-taking parameters for one call."""

    min_utterance_chars: int = 3
    responder_timeout_seconds: float = 10.0
    synthesis_timeout_seconds: float = 10.0
    fallback_reply: str = "Could you say that again?"
    transcript_window: int = 10
    voice_id: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> TurnConfig:
        """Create config from application settings."""
        s = settings or get_settings()
        return cls(
            min_utterance_chars=s.min_utterance_chars,
            responder_timeout_seconds=s.responder_timeout_seconds,
            synthesis_timeout_seconds=s.synthesis_timeout_seconds,
            fallback_reply=s.fallback_reply,
            transcript_window=s.transcript_window,
        )


@dataclass
class TurnMetrics:
    """Counters collected over one call."""

    user_turns: int = 0
    responder_fallbacks: int = 0
    synthesis_fallbacks: int = 0
    text_only_lines: int = 0
    noise_discarded: int = 0
    stray_finals_dropped: int = 0
    responder_latencies_ms: list[float] = field(default_factory=list)
    synthesis_latencies_ms: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_turns": self.user_turns,
            "responder_fallbacks": self.responder_fallbacks,
            "synthesis_fallbacks": self.synthesis_fallbacks,
            "text_only_lines": self.text_only_lines,
            "noise_discarded": self.noise_discarded,
            "stray_finals_dropped": self.stray_finals_dropped,
            "avg_responder_latency_ms": self._avg(self.responder_latencies_ms),
            "avg_synthesis_latency_ms": self._avg(self.synthesis_latencies_ms),
        }

    def _avg(self, values: list[float]) -> float:
        return sum(values) / len(values) if values else 0.0


def _no_emit(event: SessionEvent) -> None:
    return None


class TurnCoordinator:
    """Decides whose turn it is and drives the persona's replies.

    States: IDLE → PERSONA_SPEAKING (opening line) → LISTENING_FOR_USER →
    TRANSCRIBING → GENERATING_REPLY → PERSONA_SPEAKING → LISTENING_FOR_USER
    → … → ENDED.

    Only one reply cycle is in flight at a time. Speech that starts while a
    reply is being generated is buffered and becomes the next user turn as
    soon as the floor returns to the user.
    """

    def __init__(
        self,
        *,
        persona: PersonaContext,
        transcript: ConversationTranscript,
        responder: PersonaResponder,
        synthesizer: SpeechSynthesizer,
        player: AudioPlayer,
        config: TurnConfig | None = None,
        emit: Callable[[SessionEvent], None] | None = None,
        fallback_synthesizer: SpeechSynthesizer | None = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "call",
    ) -> None:
        self._persona = persona
        self._transcript = transcript
        self._responder = responder
        self._synthesizer = synthesizer
        self._fallback_synthesizer = fallback_synthesizer
        self._player = player
        self._config = config or TurnConfig()
        self._emit = emit or _no_emit
        self._clock = clock
        self._name = name
        self._metrics = TurnMetrics()

        self._state = CallState.IDLE
        self._started_at: float | None = None
        self._ended_at: float | None = None

        # Current user segment
        self._interim = ""
        # Set from finalization until the floor returns to the user
        self._cycle_active = False
        self._reply_task: asyncio.Task[None] | None = None
        # Speech that began while a reply was being generated
        self._buffer_armed = False
        self._buffered: list[str] = []
        self._buffered_confidence: float | None = None

        self.responder_invocations = 0

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def interim_text(self) -> str:
        return self._interim

    @property
    def metrics(self) -> TurnMetrics:
        return self._metrics

    @property
    def duration_seconds(self) -> float:
        """Seconds from begin() until end(), or until now while running."""
        if self._started_at is None:
            return 0.0
        finished = self._ended_at if self._ended_at is not None else self._clock()
        return max(0.0, finished - self._started_at)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def begin(self, opening_line: str | None = None) -> None:
        """Start the conversation.

        With an opening line the persona speaks first; the line is voiced in
        the background and this returns immediately.
        """
        if self._state is not CallState.IDLE:
            logger.warning(f"[{self._name}] begin() ignored in state {self._state.name}")
            return

        self._started_at = self._clock()
        if opening_line and opening_line.strip():
            self._cycle_active = True
            self._set_state(CallState.PERSONA_SPEAKING)
            self._reply_task = asyncio.create_task(
                self._opening_cycle(opening_line.strip()),
                name=f"opening-{self._name}",
            )
        else:
            self._set_state(CallState.LISTENING_FOR_USER)

    async def end(self) -> None:
        """Stop the conversation. Idempotent.

        Cancels the in-flight reply cycle and any playback in progress.
        """
        if self._state is CallState.ENDED:
            return
        self._ended_at = self._clock()
        self._set_state(CallState.ENDED)
        self._interim = ""
        self._buffered.clear()
        self._buffer_armed = False

        task, self._reply_task = self._reply_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        try:
            await self._player.stop()
        except Exception as e:
            logger.warning(f"[{self._name}] Player stop failed: {e}")

        logger.info(
            f"[{self._name}] Conversation ended after {self.duration_seconds:.1f}s, "
            f"{len(self._transcript)} utterances"
        )

    async def settle(self) -> None:
        """Wait until no reply cycle is running (including chained ones)."""
        while True:
            task = self._reply_task
            if task is None or task.done() or task is asyncio.current_task():
                return
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # =========================================================================
    # Channel events
    # =========================================================================

    def dispatch(self, event: ChannelEvent) -> None:
        """Apply one channel event. Runs synchronously on the event loop."""
        if self._state in (CallState.ENDED, CallState.IDLE):
            return

        if isinstance(event, TranscriptEvent):
            self._on_transcript(event)
        elif isinstance(event, SpeechBoundaryEvent):
            self._on_boundary(event)
        elif isinstance(event, (ErrorEvent, ClosedEvent)):
            self._on_channel_lost()
        else:
            raise TypeError(f"Unknown channel event: {type(event).__name__}")

    def channel_replaced(self) -> None:
        """Forget interim text heard on a channel that has been replaced."""
        if self._state is CallState.ENDED:
            return
        self._discard_segment()

    def _on_boundary(self, event: SpeechBoundaryEvent) -> None:
        if event.kind is not BoundaryKind.STARTED:
            return
        if self._state is CallState.LISTENING_FOR_USER:
            self._set_state(CallState.TRANSCRIBING)
        elif self._state is CallState.GENERATING_REPLY:
            self._buffer_armed = True

    def _on_transcript(self, event: TranscriptEvent) -> None:
        state = self._state

        if state in (CallState.GENERATING_REPLY, CallState.PERSONA_SPEAKING):
            if not event.is_final:
                return
            if self._buffer_armed:
                text = event.text.strip()
                if text:
                    self._buffered.append(text)
                    self._buffered_confidence = event.confidence
            elif state is CallState.GENERATING_REPLY and event.text.strip():
                self._metrics.stray_finals_dropped += 1
                logger.debug(f"[{self._name}] Dropped stray final: {event.text[:40]!r}")
            return

        if not event.is_final:
            text = event.text.strip()
            if not text:
                return
            if state is CallState.LISTENING_FOR_USER:
                self._set_state(CallState.TRANSCRIBING)
            self._interim = text
            self._emit(InterimCaption(text))
            return

        self._finalize(event.text, event.confidence)

    def _on_channel_lost(self) -> None:
        if self._state is CallState.TRANSCRIBING:
            logger.debug(f"[{self._name}] Channel lost mid-utterance, segment dropped")
            self._discard_segment()

    def _discard_segment(self) -> None:
        if self._interim:
            self._interim = ""
            self._emit(InterimCaption(""))
        if self._state is CallState.TRANSCRIBING:
            self._set_state(CallState.LISTENING_FOR_USER)

    # =========================================================================
    # Turn handling
    # =========================================================================

    def _finalize(self, text: str, confidence: float | None) -> None:
        text = text.strip()
        if not text:
            return
        if self._cycle_active:
            return

        if self._interim:
            self._interim = ""
            self._emit(InterimCaption(""))

        if len(text) <= self._config.min_utterance_chars:
            self._metrics.noise_discarded += 1
            logger.debug(f"[{self._name}] Discarded short final as noise: {text!r}")
            if self._state is CallState.TRANSCRIBING:
                self._set_state(CallState.LISTENING_FOR_USER)
            return

        self._cycle_active = True
        self._append(Utterance(
            speaker=Speaker.USER,
            text=text,
            offset_seconds=self._offset(),
            confidence=confidence,
        ))
        self._metrics.user_turns += 1
        USER_TURNS.inc()

        self._buffer_armed = False
        self._buffered.clear()
        self._set_state(CallState.GENERATING_REPLY)
        self._reply_task = asyncio.create_task(
            self._reply_cycle(text),
            name=f"reply-{self._name}",
        )

    async def _opening_cycle(self, line: str) -> None:
        await self._speak(line)
        self._finish_cycle()

    async def _reply_cycle(self, user_text: str) -> None:
        reply = await self._generate(user_text)
        if self._state is CallState.ENDED:
            return
        await self._speak(reply)
        self._finish_cycle()

    def _finish_cycle(self) -> None:
        if self._state is CallState.ENDED:
            return
        self._cycle_active = False
        buffered = " ".join(self._buffered)
        confidence = self._buffered_confidence
        self._buffered.clear()
        self._buffered_confidence = None
        self._buffer_armed = False

        self._set_state(CallState.LISTENING_FOR_USER)
        if buffered:
            logger.debug(f"[{self._name}] Replaying buffered speech as next turn")
            self._finalize(buffered, confidence)

    async def _generate(self, user_text: str) -> str:
        """Persona reply, or the fallback line on any failure."""
        history = self._transcript.window(self._config.transcript_window)
        self.responder_invocations += 1
        start = time.perf_counter()

        try:
            reply = await asyncio.wait_for(
                self._responder.respond(user_text, history, self._persona),
                timeout=self._config.responder_timeout_seconds,
            )
        except (TimeoutError, GenerationTimeout):
            reason = "timeout"
            detail = f"no reply within {self._config.responder_timeout_seconds:.0f}s"
        except GenerationError as e:
            reason = "error"
            detail = str(e)
        except Exception as e:
            reason = "error"
            detail = f"{type(e).__name__}: {e}"
        else:
            reply = (reply or "").strip()
            if reply:
                elapsed = time.perf_counter() - start
                RESPONDER_LATENCY.observe(elapsed)
                self._metrics.responder_latencies_ms.append(elapsed * 1000)
                return reply
            reason = "empty"
            detail = "responder returned no text"

        logger.warning(f"[{self._name}] Responder fallback ({reason}): {detail}")
        self._metrics.responder_fallbacks += 1
        RESPONDER_FALLBACKS.labels(reason=reason).inc()
        self._emit(Diagnostic(kind="responder_fallback", detail=f"{reason}: {detail}"))
        return self._config.fallback_reply

    async def _speak(self, text: str) -> None:
        """Voice one persona line and record it."""
        audio = await self._synthesize(text)
        if self._state is CallState.ENDED:
            return

        self._append(Utterance(
            speaker=Speaker.PERSONA,
            text=text,
            offset_seconds=self._offset(),
            text_only=audio is None,
        ))
        self._set_state(CallState.PERSONA_SPEAKING)

        if audio is None:
            return
        try:
            await self._player.play(audio)
        except Exception as e:
            logger.warning(f"[{self._name}] Playback failed: {e}")
            self._emit(Diagnostic(kind="playback_failed", detail=str(e)))

    async def _synthesize(self, text: str) -> SynthesizedAudio | None:
        """Primary voice, then fallback voice, then None (text-only)."""
        voice_id = self._config.voice_id
        audio = await self._try_synthesize(self._synthesizer, text, voice_id, "primary")
        if audio is not None:
            return audio

        if self._fallback_synthesizer is not None:
            audio = await self._try_synthesize(self._fallback_synthesizer, text, None, "fallback")
            if audio is not None:
                self._metrics.synthesis_fallbacks += 1
                SYNTHESIS_FALLBACKS.labels(outcome="fallback_voice").inc()
                self._emit(Diagnostic(kind="synthesis_fallback", detail=audio.provider or "fallback"))
                return audio

        self._metrics.text_only_lines += 1
        SYNTHESIS_FALLBACKS.labels(outcome="text_only").inc()
        self._emit(Diagnostic(kind="text_only", detail=text))
        return None

    async def _try_synthesize(
        self,
        synthesizer: SpeechSynthesizer,
        text: str,
        voice_id: str | None,
        label: str,
    ) -> SynthesizedAudio | None:
        start = time.perf_counter()
        try:
            audio = await asyncio.wait_for(
                synthesizer.synthesize(text, voice_id),
                timeout=self._config.synthesis_timeout_seconds,
            )
        except TimeoutError:
            logger.warning(f"[{self._name}] {label} synthesis timed out")
            return None
        except Exception as e:
            logger.warning(f"[{self._name}] {label} synthesis failed: {e}")
            return None

        elapsed = time.perf_counter() - start
        SYNTHESIS_LATENCY.observe(elapsed)
        self._metrics.synthesis_latencies_ms.append(elapsed * 1000)
        return audio

    # =========================================================================
    # Helpers
    # =========================================================================

    def _append(self, utterance: Utterance) -> None:
        index = self._transcript.append(utterance)
        self._emit(UtteranceAppended(utterance=utterance, index=index))

    def _offset(self) -> float:
        if self._started_at is None:
            return 0.0
        return max(0.0, self._clock() - self._started_at)

    def _set_state(self, new_state: CallState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        logger.debug(f"[{self._name}] State: {old_state.name} → {new_state.name}")
        self._emit(StateChanged(previous=old_state, current=new_state))
