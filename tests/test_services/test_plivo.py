"""Tests for Plivo telephony: call control, status tracking and media stream."""

import asyncio
import base64
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from src.services.telephony.exceptions import TelephonyError, TelephonyNotConfigured
from src.services.telephony.plivo import (
    STREAM_CONTENT_TYPE,
    CallStatus,
    PhoneCall,
    PhoneCallTracker,
    PlivoCallControl,
    generate_hangup_xml,
    generate_stream_xml,
    normalize_call_status,
)
from src.services.telephony.stream import PlivoStreamPlayer, StreamStart, decode_media_payload
from src.services.tts.protocol import SynthesizedAudio


def plivo_client(request_uuid="req-123", error=None):
    calls = SimpleNamespace(
        create=MagicMock(return_value=SimpleNamespace(request_uuid=request_uuid), side_effect=error),
        delete=MagicMock(),
        cancel=MagicMock(),
    )
    return SimpleNamespace(calls=calls, account=SimpleNamespace(get=MagicMock()))


class TestCallStatus:
    """Tests for status normalisation."""

    def test_aliases(self) -> None:
        """Test Plivo webhook values map onto API statuses."""
        assert normalize_call_status("initiated") is CallStatus.QUEUED
        assert normalize_call_status("early-media") is CallStatus.RINGING
        assert normalize_call_status("answered") is CallStatus.IN_PROGRESS
        assert normalize_call_status("In_Progress") is CallStatus.IN_PROGRESS
        assert normalize_call_status("hangup") is CallStatus.COMPLETED
        assert normalize_call_status("timeout") is CallStatus.NO_ANSWER
        assert normalize_call_status("cancel") is CallStatus.NO_ANSWER

    def test_unknown(self) -> None:
        """Test unknown and empty statuses are None."""
        assert normalize_call_status("transferred") is None
        assert normalize_call_status("") is None
        assert normalize_call_status(None) is None

    def test_terminal(self) -> None:
        """Test which statuses end a call."""
        assert CallStatus.COMPLETED.is_terminal
        assert CallStatus.BUSY.is_terminal
        assert not CallStatus.RINGING.is_terminal
        assert not CallStatus.IN_PROGRESS.is_terminal


class TestPhoneCall:
    """Tests for PhoneCall."""

    def test_to_dict_masks_number(self, scenario) -> None:
        """Test the dialled number is masked in API output."""
        call = PhoneCall(
            call_id="c1", request_id="r1", phone_number="+971501234567", scenario=scenario
        )

        data = call.to_dict()

        assert data["phone_number"] == "+9XXXX4567"
        assert data["status"] == "queued"
        assert data["scenario_id"] == scenario.scenario_id


class TestPhoneCallTracker:
    """Tests for PhoneCallTracker."""

    def test_update_progression(self) -> None:
        """Test statuses advance and call details are recorded."""
        tracker = PhoneCallTracker()
        tracker.register(PhoneCall(call_id="c1", request_id="r1", phone_number="+15550001111"))

        tracker.update("c1", "ringing")
        call = tracker.update("c1", "answered", call_uuid="uuid-1")

        assert call.status is CallStatus.IN_PROGRESS
        assert call.call_uuid == "uuid-1"
        assert tracker.find_by_uuid("uuid-1") is call
        assert tracker.find_by_uuid("r1") is call

    def test_terminal_status_is_final(self) -> None:
        """Test late webhooks cannot revive a finished call."""
        tracker = PhoneCallTracker()
        tracker.register(PhoneCall(call_id="c1", request_id="r1", phone_number="+15550001111"))

        tracker.update("c1", "completed", duration_seconds=42, hangup_cause="NORMAL_CLEARING")
        call = tracker.update("c1", "in-progress")

        assert call.status is CallStatus.COMPLETED
        assert call.duration_seconds == 42
        assert call.hangup_cause == "NORMAL_CLEARING"

    def test_unknown_call(self) -> None:
        """Test updates for unknown calls return None."""
        assert PhoneCallTracker().update("missing", "ringing") is None

    def test_unrecognised_status_kept(self) -> None:
        """Test an unknown status leaves the call unchanged."""
        tracker = PhoneCallTracker()
        tracker.register(PhoneCall(call_id="c1", request_id="r1", phone_number="+15550001111"))

        call = tracker.update("c1", "transferred")

        assert call.status is CallStatus.QUEUED

    def test_eviction_keeps_live_calls(self) -> None:
        """Test a full tracker evicts the oldest finished calls only."""
        tracker = PhoneCallTracker(max_calls=3)
        base = datetime(2026, 1, 1, tzinfo=UTC)
        for i, status in enumerate([CallStatus.COMPLETED, CallStatus.IN_PROGRESS, CallStatus.FAILED]):
            call = PhoneCall(call_id=f"c{i}", request_id=f"r{i}", phone_number="+15550001111")
            call.status = status
            call.updated_at = base + timedelta(minutes=i)
            tracker.register(call)

        tracker.register(PhoneCall(call_id="c3", request_id="r3", phone_number="+15550001111"))

        assert tracker.get("c0") is None
        assert tracker.get("c1") is not None
        assert tracker.get("c2") is not None
        assert len(tracker) == 3


class TestXmlGeneration:
    """Tests for Plivo XML responses."""

    def test_stream_xml(self) -> None:
        """Test the stream element points at the websocket."""
        xml = generate_stream_xml("wss://example.com/ws/plivo/c1")

        assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert ">wss://example.com/ws/plivo/c1</Stream>" in xml
        assert 'bidirectional="true"' in xml
        assert 'audioTrack="inbound"' in xml
        assert f'contentType="{STREAM_CONTENT_TYPE}"' in xml

    def test_hangup_xml(self) -> None:
        """Test hangup with and without a spoken reason."""
        assert "<Speak" not in generate_hangup_xml()
        assert "<Hangup />" in generate_hangup_xml()

        xml = generate_hangup_xml("Sorry, this practice call has expired.")
        assert "Sorry, this practice call has expired." in xml


class TestPlivoCallControl:
    """Tests for PlivoCallControl with a mocked REST client."""

    def test_not_configured(self, settings) -> None:
        """Test the client refuses to build without credentials."""
        control = PlivoCallControl(settings)

        assert not control.configured
        with pytest.raises(TelephonyNotConfigured):
            _ = control.client

    @pytest.mark.asyncio
    async def test_start_call(self, settings_factory) -> None:
        """Test placing a call passes the webhook URLs."""
        settings = settings_factory(plivo_phone_number="+14155550100")
        client = plivo_client()
        control = PlivoCallControl(settings, client=client)

        call = await control.start_call(
            "+971501234567",
            "https://example.com/api/plivo/answer?call_id=c1",
            hangup_url="https://example.com/api/plivo/hangup?call_id=c1",
            call_id="c1",
        )

        assert call.call_id == "c1"
        assert call.request_id == "req-123"
        kwargs = client.calls.create.call_args.kwargs
        assert kwargs["from_"] == "+14155550100"
        assert kwargs["to_"] == "+971501234567"
        assert kwargs["answer_method"] == "POST"
        assert kwargs["hangup_url"].endswith("call_id=c1")
        assert "ring_url" not in kwargs

    @pytest.mark.asyncio
    async def test_start_call_rejected(self, settings) -> None:
        """Test Plivo errors surface as TelephonyError."""
        control = PlivoCallControl(settings, client=plivo_client(error=RuntimeError("invalid number")))

        with pytest.raises(TelephonyError):
            await control.start_call("+15550001111", "https://example.com/answer")

    @pytest.mark.asyncio
    async def test_end_answered_call(self, settings) -> None:
        """Test an answered call is hung up by CallUUID."""
        client = plivo_client()
        control = PlivoCallControl(settings, client=client)
        call = PhoneCall(call_id="c1", request_id="r1", phone_number="+15550001111", call_uuid="u1")

        await control.end_call(call)

        client.calls.delete.assert_called_once_with("u1")
        client.calls.cancel.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_ringing_call(self, settings) -> None:
        """Test a call without a CallUUID is cancelled by request id."""
        client = plivo_client()
        control = PlivoCallControl(settings, client=client)
        call = PhoneCall(call_id="c1", request_id="r1", phone_number="+15550001111")

        await control.end_call(call)

        client.calls.cancel.assert_called_once_with("r1")

    @pytest.mark.asyncio
    async def test_health_check(self, settings) -> None:
        """Test health reflects configuration and API reachability."""
        assert await PlivoCallControl(settings).health_check() is False
        assert await PlivoCallControl(settings, client=plivo_client()).health_check() is True


class TestStreamMessages:
    """Tests for parsing media stream messages."""

    def test_stream_start(self) -> None:
        """Test start events expose stream id and format."""
        start = StreamStart.from_message(
            {
                "event": "start",
                "start": {
                    "streamId": "s-1",
                    "callId": "u-1",
                    "mediaFormat": {"encoding": "audio/x-L16", "sampleRate": 8000},
                },
            }
        )

        assert start == StreamStart(
            stream_id="s-1", call_uuid="u-1", encoding="audio/x-l16", sample_rate=8000
        )

    def test_stream_start_defaults(self) -> None:
        """Test a bare start event falls back to 16 kHz L16."""
        start = StreamStart.from_message({"event": "start", "streamId": "s-2"})

        assert start.stream_id == "s-2"
        assert start.sample_rate == 16000

    def test_decode_media_payload(self) -> None:
        """Test base64 payloads decode and bad ones yield nothing."""
        pcm = b"\x01\x02" * 160
        message = {"event": "media", "media": {"payload": base64.b64encode(pcm).decode()}}

        assert decode_media_payload(message) == pcm
        assert decode_media_payload({"event": "media", "media": {"payload": "!!!"}}) == b""
        assert decode_media_payload({"event": "media"}) == b""


class TestPlivoStreamPlayer:
    """Tests for persona playback into a call."""

    @pytest.fixture(autouse=True)
    def fake_decoder(self, monkeypatch):
        monkeypatch.setattr(
            "src.services.telephony.stream.decode_to_pcm16", lambda data, rate: b"\x00\x00" * 4
        )
        monkeypatch.setattr("src.services.audio.remote.audio_duration_seconds", lambda *a: 0.0)

    @pytest.mark.asyncio
    async def test_play_sends_audio_and_checkpoint(self) -> None:
        """Test a clip is sent as playAudio followed by a named checkpoint."""
        sent: list[dict] = []

        async def send_json(message):
            sent.append(message)

        player = PlivoStreamPlayer(send_json, stream_id="s-1", padding_seconds=5.0)
        task = asyncio.create_task(player.play(SynthesizedAudio(audio_bytes=b"ID3")))
        while len(sent) < 2:
            await asyncio.sleep(0)

        play, checkpoint = sent
        assert play["event"] == "playAudio"
        assert play["media"]["contentType"] == "audio/x-l16"
        assert base64.b64decode(play["media"]["payload"]) == b"\x00\x00" * 4
        assert checkpoint["event"] == "checkpoint"
        assert checkpoint["streamId"] == "s-1"

        assert player.acknowledge(checkpoint["name"])
        await asyncio.wait_for(task, timeout=1.0)
        assert player.unacknowledged == 0

    @pytest.mark.asyncio
    async def test_stop_clears_audio(self) -> None:
        """Test stopping mid-clip sends clearAudio for the stream."""
        sent: list[dict] = []

        async def send_json(message):
            sent.append(message)

        player = PlivoStreamPlayer(send_json, padding_seconds=5.0)
        player.stream_id = "s-9"
        task = asyncio.create_task(player.play(SynthesizedAudio(audio_bytes=b"ID3")))
        while len(sent) < 2:
            await asyncio.sleep(0)

        await player.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert sent[-1] == {"event": "clearAudio", "streamId": "s-9"}
