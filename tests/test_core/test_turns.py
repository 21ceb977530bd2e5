"""Tests for the turn-taking coordinator."""

import asyncio

import pytest

from src.core.events import (
    BoundaryKind,
    ClosedEvent,
    Diagnostic,
    ErrorEvent,
    InterimCaption,
    SpeechBoundaryEvent,
    StateChanged,
    TranscriptEvent,
    UtteranceAppended,
)
from src.core.models import CallState, ConversationTranscript, Speaker
from src.core.turns import TurnConfig, TurnCoordinator, TurnMetrics
from src.services.llm.exceptions import GenerationError
from src.services.llm.protocol import PersonaContext
from tests.fakes import (
    FakePlayer,
    FakeResponder,
    FakeSynthesizer,
    GatedResponder,
    HangingResponder,
)

PERSONA = PersonaContext(client_name="Sarah", client_type="Busy Executive")

STARTED = SpeechBoundaryEvent(BoundaryKind.STARTED)


def final(text: str, confidence: float = 0.9) -> TranscriptEvent:
    return TranscriptEvent(text=text, is_final=True, confidence=confidence)


def interim(text: str) -> TranscriptEvent:
    return TranscriptEvent(text=text, is_final=False)


class GatedPlayer(FakePlayer):
    """Player whose clips last until the test releases them."""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()
        self.playing = asyncio.Event()

    async def play(self, audio) -> None:
        self.played.append(audio)
        self.playing.set()
        await self.release.wait()


class ErrorResponder(FakeResponder):
    async def respond(self, utterance_text, transcript, persona) -> str:
        self.calls.append((utterance_text, tuple(transcript), persona))
        raise GenerationError("rate limited")


def make_coordinator(
    *,
    responder=None,
    synthesizer=None,
    fallback_synthesizer=None,
    player=None,
    config=None,
):
    events: list = []
    transcript = ConversationTranscript()
    coordinator = TurnCoordinator(
        persona=PERSONA,
        transcript=transcript,
        responder=responder or FakeResponder(),
        synthesizer=synthesizer or FakeSynthesizer(),
        fallback_synthesizer=fallback_synthesizer,
        player=player or FakePlayer(),
        config=config or TurnConfig(),
        emit=events.append,
    )
    return coordinator, transcript, events


def states(events: list) -> list[CallState]:
    return [e.current for e in events if isinstance(e, StateChanged)]


class TestTurnConfig:
    """Tests for TurnConfig."""

    def test_defaults(self) -> None:
        """Test default turn parameters."""
        config = TurnConfig()

        assert config.min_utterance_chars == 3
        assert config.responder_timeout_seconds == 10.0
        assert config.transcript_window == 10
        assert config.voice_id is None

    def test_from_settings(self, settings_factory) -> None:
        """Test creating config from settings."""
        settings = settings_factory(
            min_utterance_chars=5,
            responder_timeout_seconds=4.0,
            fallback_reply="Sorry, go on?",
            transcript_window=6,
        )
        config = TurnConfig.from_settings(settings)

        assert config.min_utterance_chars == 5
        assert config.responder_timeout_seconds == 4.0
        assert config.fallback_reply == "Sorry, go on?"
        assert config.transcript_window == 6


class TestTurnMetrics:
    """Tests for TurnMetrics."""

    def test_to_dict(self) -> None:
        """Test averages are computed from recorded latencies."""
        metrics = TurnMetrics(user_turns=2, responder_latencies_ms=[100.0, 300.0])

        result = metrics.to_dict()

        assert result["user_turns"] == 2
        assert result["avg_responder_latency_ms"] == 200.0
        assert result["avg_synthesis_latency_ms"] == 0.0


class TestOpeningLine:
    """Tests for how a call begins."""

    @pytest.mark.asyncio
    async def test_persona_speaks_first(self) -> None:
        """Test the opening line is voiced, recorded, then the user gets the floor."""
        player = FakePlayer()
        coordinator, transcript, events = make_coordinator(player=player)

        coordinator.begin("Hi, I saw your listing.")
        assert coordinator.state is CallState.PERSONA_SPEAKING

        await coordinator.settle()

        assert coordinator.state is CallState.LISTENING_FOR_USER
        assert transcript[0].speaker is Speaker.PERSONA
        assert transcript[0].text == "Hi, I saw your listing."
        assert len(player.played) == 1
        assert states(events) == [CallState.PERSONA_SPEAKING, CallState.LISTENING_FOR_USER]

    @pytest.mark.asyncio
    async def test_without_opening_line(self) -> None:
        """Test the user speaks first when there is no opening line."""
        coordinator, transcript, _ = make_coordinator()

        coordinator.begin(None)

        assert coordinator.state is CallState.LISTENING_FOR_USER
        assert len(transcript) == 0

    @pytest.mark.asyncio
    async def test_user_speech_masked_while_persona_speaks(self) -> None:
        """Test transcripts during the persona's audio are not taken as user turns."""
        player = GatedPlayer()
        responder = FakeResponder()
        coordinator, transcript, _ = make_coordinator(player=player, responder=responder)

        coordinator.begin("Hi, I saw your listing.")
        await player.playing.wait()
        coordinator.dispatch(interim("Hi I saw"))
        coordinator.dispatch(final("Hi, I saw your listing."))
        player.release.set()
        await coordinator.settle()

        assert len(transcript) == 1
        assert responder.calls == []
        assert coordinator.interim_text == ""


class TestUserTurn:
    """Tests for a complete user turn and reply."""

    @pytest.mark.asyncio
    async def test_happy_path_order(self) -> None:
        """Test state order and transcript for one exchange."""
        responder = FakeResponder(["What's your budget?"])
        synthesizer = FakeSynthesizer()
        player = FakePlayer()
        coordinator, transcript, events = make_coordinator(
            responder=responder, synthesizer=synthesizer, player=player
        )
        coordinator.begin(None)

        coordinator.dispatch(STARTED)
        coordinator.dispatch(interim("I have a"))
        coordinator.dispatch(final("I have a two bedroom in the Marina"))
        await coordinator.settle()

        assert states(events) == [
            CallState.LISTENING_FOR_USER,
            CallState.TRANSCRIBING,
            CallState.GENERATING_REPLY,
            CallState.PERSONA_SPEAKING,
            CallState.LISTENING_FOR_USER,
        ]
        assert [(u.speaker, u.text) for u in transcript] == [
            (Speaker.USER, "I have a two bedroom in the Marina"),
            (Speaker.PERSONA, "What's your budget?"),
        ]
        assert transcript[0].confidence == 0.9
        assert synthesizer.calls == [("What's your budget?", None)]
        assert player.played[0].provider == "fake"
        assert coordinator.metrics.user_turns == 1

    @pytest.mark.asyncio
    async def test_responder_sees_persona_and_history(self) -> None:
        """Test the responder gets the utterance, windowed history and persona."""
        responder = FakeResponder()
        config = TurnConfig(transcript_window=2)
        coordinator, _, _ = make_coordinator(responder=responder, config=config)
        coordinator.begin("Hello there.")
        await coordinator.settle()

        coordinator.dispatch(final("Good morning, how can I help?"))
        await coordinator.settle()

        text, history, persona = responder.calls[0]
        assert text == "Good morning, how can I help?"
        assert [u.text for u in history] == ["Hello there.", "Good morning, how can I help?"]
        assert persona == PERSONA

    @pytest.mark.asyncio
    async def test_voice_id_passed_to_primary(self) -> None:
        """Test the configured voice is requested from the primary synthesizer."""
        synthesizer = FakeSynthesizer()
        coordinator, _, _ = make_coordinator(
            synthesizer=synthesizer, config=TurnConfig(voice_id="voice-123")
        )

        coordinator.begin("Hello.")
        await coordinator.settle()

        assert synthesizer.calls == [("Hello.", "voice-123")]

    @pytest.mark.asyncio
    async def test_interim_caption(self) -> None:
        """Test interim text is published as a caption and cleared on final."""
        coordinator, _, events = make_coordinator()
        coordinator.begin(None)

        coordinator.dispatch(interim("I was"))
        assert coordinator.state is CallState.TRANSCRIBING
        assert coordinator.interim_text == "I was"

        coordinator.dispatch(final("I was wondering about the price"))
        await coordinator.settle()

        captions = [e.text for e in events if isinstance(e, InterimCaption)]
        assert captions == ["I was", ""]

    @pytest.mark.asyncio
    async def test_multiple_turns_append_in_order(self) -> None:
        """Test the transcript grows append-only across turns."""
        responder = FakeResponder(["First reply.", "Second reply."])
        coordinator, transcript, events = make_coordinator(responder=responder)
        coordinator.begin(None)

        coordinator.dispatch(final("First question please"))
        await coordinator.settle()
        first_two = transcript.entries
        coordinator.dispatch(final("Second question please"))
        await coordinator.settle()

        assert transcript.entries[:2] == first_two
        assert [u.text for u in transcript] == [
            "First question please",
            "First reply.",
            "Second question please",
            "Second reply.",
        ]
        indices = [e.index for e in events if isinstance(e, UtteranceAppended)]
        assert indices == [0, 1, 2, 3]


class TestNoiseAndEmptyFinals:
    """Tests for finals that should not start a turn."""

    @pytest.mark.asyncio
    async def test_short_final_is_noise(self) -> None:
        """Test finals at or under the minimum length return to listening."""
        responder = FakeResponder()
        coordinator, transcript, _ = make_coordinator(responder=responder)
        coordinator.begin(None)

        coordinator.dispatch(STARTED)
        coordinator.dispatch(final("uh"))
        coordinator.dispatch(final("yes"))
        await coordinator.settle()

        assert coordinator.state is CallState.LISTENING_FOR_USER
        assert len(transcript) == 0
        assert responder.calls == []
        assert coordinator.metrics.noise_discarded == 2

    @pytest.mark.asyncio
    async def test_empty_final_causes_no_transition(self) -> None:
        """Test an empty final leaves the state unchanged."""
        coordinator, transcript, events = make_coordinator()
        coordinator.begin(None)
        coordinator.dispatch(STARTED)
        before = len(events)

        coordinator.dispatch(final("   "))

        assert coordinator.state is CallState.TRANSCRIBING
        assert len(events) == before
        assert len(transcript) == 0


class TestAtMostOnceResponder:
    """Tests that each user turn produces at most one responder call."""

    @pytest.mark.asyncio
    async def test_duplicate_final_during_generation_dropped(self) -> None:
        """Test a second final without new speech is not a new turn."""
        responder = GatedResponder()
        coordinator, transcript, _ = make_coordinator(responder=responder)
        coordinator.begin(None)

        coordinator.dispatch(final("Is the flat still available?"))
        await responder.entered.wait()
        coordinator.dispatch(final("Is the flat still available?"))
        responder.gate.set()
        await coordinator.settle()

        assert len(responder.calls) == 1
        assert coordinator.responder_invocations == 1
        assert transcript.count(Speaker.USER) == 1
        assert coordinator.metrics.stray_finals_dropped == 1

    @pytest.mark.asyncio
    async def test_speech_during_generation_becomes_next_turn(self) -> None:
        """Test speech that starts mid-generation is replayed after the reply."""
        responder = GatedResponder(["Sure, which one?"])
        coordinator, transcript, _ = make_coordinator(responder=responder)
        coordinator.begin(None)

        coordinator.dispatch(final("Can I see the listing?"))
        await responder.entered.wait()
        coordinator.dispatch(STARTED)
        coordinator.dispatch(final("The one in Downtown"))
        assert len(responder.calls) == 1

        responder.gate.set()
        await coordinator.settle()

        assert len(responder.calls) == 2
        assert responder.calls[1][0] == "The one in Downtown"
        assert [u.speaker for u in transcript] == [
            Speaker.USER,
            Speaker.PERSONA,
            Speaker.USER,
            Speaker.PERSONA,
        ]
        assert coordinator.state is CallState.LISTENING_FOR_USER


class TestResponderFallback:
    """Tests for the fallback line when the responder fails."""

    @pytest.mark.asyncio
    async def test_timeout_uses_fallback(self) -> None:
        """Test a hung responder is abandoned after the timeout."""
        config = TurnConfig(responder_timeout_seconds=0.05, fallback_reply="Sorry, say again?")
        coordinator, transcript, events = make_coordinator(
            responder=HangingResponder(), config=config
        )
        coordinator.begin(None)

        coordinator.dispatch(final("What about service charges?"))
        await coordinator.settle()

        assert transcript[1].text == "Sorry, say again?"
        assert coordinator.state is CallState.LISTENING_FOR_USER
        diagnostics = [e for e in events if isinstance(e, Diagnostic)]
        assert diagnostics[0].kind == "responder_fallback"
        assert diagnostics[0].detail.startswith("timeout")
        assert coordinator.metrics.responder_fallbacks == 1

    @pytest.mark.asyncio
    async def test_error_uses_fallback(self) -> None:
        """Test a responder error is absorbed with the fallback line."""
        coordinator, transcript, events = make_coordinator(responder=ErrorResponder())
        coordinator.begin(None)

        coordinator.dispatch(final("What about service charges?"))
        await coordinator.settle()

        assert transcript[1].text == TurnConfig().fallback_reply
        assert any(
            isinstance(e, Diagnostic) and e.detail.startswith("error") for e in events
        )

    @pytest.mark.asyncio
    async def test_empty_reply_uses_fallback(self) -> None:
        """Test an empty reply is treated as a failure."""
        coordinator, transcript, _ = make_coordinator(responder=FakeResponder(["  "]))
        coordinator.begin(None)

        coordinator.dispatch(final("Hello, is this Sarah?"))
        await coordinator.settle()

        assert transcript[1].text == TurnConfig().fallback_reply


class TestSynthesisFallback:
    """Tests for voice fallbacks."""

    @pytest.mark.asyncio
    async def test_fallback_voice(self) -> None:
        """Test the fallback synthesizer voices the line when the primary fails."""
        player = FakePlayer()
        coordinator, transcript, events = make_coordinator(
            synthesizer=FakeSynthesizer(fail=True),
            fallback_synthesizer=FakeSynthesizer(provider="edge"),
            player=player,
        )

        coordinator.begin("Hello?")
        await coordinator.settle()

        assert player.played[0].provider == "edge"
        assert transcript[0].text_only is False
        assert any(isinstance(e, Diagnostic) and e.kind == "synthesis_fallback" for e in events)

    @pytest.mark.asyncio
    async def test_text_only_when_every_voice_fails(self) -> None:
        """Test the line is still recorded, marked text-only, when nothing can voice it."""
        player = FakePlayer()
        coordinator, transcript, events = make_coordinator(
            synthesizer=FakeSynthesizer(fail=True),
            fallback_synthesizer=FakeSynthesizer(provider="edge", fail=True),
            player=player,
        )

        coordinator.begin("Hello?")
        await coordinator.settle()

        assert player.played == []
        assert transcript[0].text == "Hello?"
        assert transcript[0].text_only is True
        assert coordinator.state is CallState.LISTENING_FOR_USER
        assert coordinator.metrics.text_only_lines == 1
        assert any(isinstance(e, Diagnostic) and e.kind == "text_only" for e in events)


class TestChannelLoss:
    """Tests for channel errors during a turn."""

    @pytest.mark.asyncio
    async def test_error_mid_utterance_discards_segment(self) -> None:
        """Test a partially heard utterance is dropped, never half-committed."""
        coordinator, transcript, _ = make_coordinator()
        coordinator.begin(None)

        coordinator.dispatch(interim("I'm looking for a"))
        coordinator.dispatch(ErrorEvent(cause="connection reset"))

        assert coordinator.state is CallState.LISTENING_FOR_USER
        assert coordinator.interim_text == ""
        assert len(transcript) == 0

    @pytest.mark.asyncio
    async def test_disconnect_mid_generation_keeps_reply(self) -> None:
        """Test a channel drop while generating does not cancel the reply."""
        responder = GatedResponder(["Let me check."])
        coordinator, transcript, _ = make_coordinator(responder=responder)
        coordinator.begin(None)

        coordinator.dispatch(final("Is parking included?"))
        await responder.entered.wait()
        coordinator.dispatch(ClosedEvent(expected=False))
        coordinator.channel_replaced()
        assert coordinator.state is CallState.GENERATING_REPLY

        responder.gate.set()
        await coordinator.settle()

        assert [u.text for u in transcript] == ["Is parking included?", "Let me check."]
        assert len(responder.calls) == 1


class TestEnd:
    """Tests for ending a conversation."""

    @pytest.mark.asyncio
    async def test_end_cancels_reply_and_is_idempotent(self) -> None:
        """Test end cancels an outstanding reply and stops playback once."""
        player = FakePlayer()
        responder = HangingResponder()
        coordinator, transcript, _ = make_coordinator(responder=responder, player=player)
        coordinator.begin(None)
        coordinator.dispatch(final("Are you still there?"))
        await asyncio.sleep(0)

        await coordinator.end()
        await coordinator.end()

        assert coordinator.state is CallState.ENDED
        assert player.stop_calls == 1
        assert [u.speaker for u in transcript] == [Speaker.USER]

    @pytest.mark.asyncio
    async def test_events_after_end_ignored(self) -> None:
        """Test nothing changes once the call has ended."""
        responder = FakeResponder()
        coordinator, transcript, _ = make_coordinator(responder=responder)
        coordinator.begin(None)
        await coordinator.end()

        coordinator.dispatch(final("Hello, anyone there?"))
        await coordinator.settle()

        assert len(transcript) == 0
        assert responder.calls == []

    @pytest.mark.asyncio
    async def test_duration(self) -> None:
        """Test duration is measured between begin and end."""
        ticks = iter([100.0, 112.5])
        coordinator = TurnCoordinator(
            persona=PERSONA,
            transcript=ConversationTranscript(),
            responder=FakeResponder(),
            synthesizer=FakeSynthesizer(),
            player=FakePlayer(),
            clock=lambda: next(ticks),
        )

        coordinator.begin(None)
        await coordinator.end()

        assert coordinator.duration_seconds == 12.5

    @pytest.mark.asyncio
    async def test_unknown_event_raises(self) -> None:
        """Test dispatching an unknown event type fails loudly."""
        coordinator, _, _ = make_coordinator()
        coordinator.begin(None)

        with pytest.raises(TypeError):
            coordinator.dispatch(object())  # type: ignore[arg-type]
