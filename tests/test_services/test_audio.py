"""Tests for audio framing, remote capture/playback and decoding."""

import asyncio
import base64
import io
import wave

import numpy as np
import pytest

from src.api.websocket.browser_call import forward_events
from src.core.events import EventStream, InterimCaption
from src.core.models import AudioFrame
from src.services.audio.codec import audio_duration_seconds, decode_to_pcm16, pcm16_to_array
from src.services.audio.exceptions import (
    AudioDecodeError,
    DeviceUnavailable,
    PermissionDenied,
    PlaybackError,
)
from src.services.audio.frames import FrameChunker
from src.services.audio.microphone import SoundDeviceCapture, _classify_portaudio_error
from src.services.audio.protocol import CaptureConstraints
from src.services.audio.remote import StreamedCapture, WebSocketPlayer
from src.services.tts.protocol import SynthesizedAudio


def wav_bytes(samples: np.ndarray, sample_rate: int = 16000) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(samples.astype(np.int16).tobytes())
    return buffer.getvalue()


@pytest.fixture
def no_clip_length(monkeypatch):
    """Treat every clip as zero-length so acks time out after the padding."""
    monkeypatch.setattr("src.services.audio.remote.audio_duration_seconds", lambda *a: 0.0)


class TestCaptureConstraints:
    """Tests for CaptureConstraints."""

    def test_frame_size(self):
        """Test 20 ms of 16 kHz mono PCM16 is 640 bytes."""
        constraints = CaptureConstraints()

        assert constraints.samples_per_frame == 320
        assert constraints.frame_bytes == 640


class TestFrameChunker:
    """Tests for FrameChunker."""

    def test_uneven_payloads(self):
        """Test leftovers carry into the next push and sequences increase."""
        chunker = FrameChunker(640)

        first = chunker.push(b"\x01" * 1000)
        second = chunker.push(b"\x02" * 300)

        assert len(first) == 1
        assert chunker.pending_bytes == 20
        assert len(second) == 1
        assert second[0].pcm[:360] == b"\x01" * 360
        assert [f.sequence for f in first + second] == [0, 1]

    def test_flush_pads_remainder(self):
        """Test flush zero-pads the partial frame."""
        chunker = FrameChunker(8)
        chunker.push(b"\x05\x05")

        frame = chunker.flush()

        assert frame.pcm == b"\x05\x05" + b"\x00" * 6
        assert chunker.flush() is None

    def test_invalid_frame_size(self):
        """Test odd and zero frame sizes are rejected."""
        with pytest.raises(ValueError):
            FrameChunker(0)
        with pytest.raises(ValueError):
            FrameChunker(641)


class TestStreamedCapture:
    """Tests for StreamedCapture."""

    @pytest.mark.asyncio
    async def test_push_emits_frames(self):
        """Test pushed payloads arrive as uniform frames."""
        capture = StreamedCapture()
        frames: list[AudioFrame] = []
        await capture.open(CaptureConstraints())
        capture.start_streaming(frames.append)

        emitted = capture.push(b"\x00" * 1600)

        assert emitted == 2
        assert [len(f.pcm) for f in frames] == [640, 640]
        assert capture.frames_pushed == 2

    @pytest.mark.asyncio
    async def test_push_before_streaming_is_ignored(self):
        """Test audio before start_streaming is counted and dropped."""
        capture = StreamedCapture()
        await capture.open(CaptureConstraints())

        assert capture.push(b"\x00" * 640) == 0
        assert capture.bytes_ignored == 640

    @pytest.mark.asyncio
    async def test_denied_microphone(self):
        """Test a client-side refusal surfaces from open()."""
        capture = StreamedCapture()
        capture.deny("NotAllowedError: Permission denied")

        with pytest.raises(PermissionDenied, match="NotAllowedError"):
            await capture.open(CaptureConstraints())

    @pytest.mark.asyncio
    async def test_stop(self):
        """Test stop is idempotent and later audio is ignored."""
        capture = StreamedCapture()
        frames: list = []
        await capture.open(CaptureConstraints())
        capture.start_streaming(frames.append)

        capture.stop()
        capture.stop()
        capture.push(b"\x00" * 640)

        assert frames == []
        with pytest.raises(DeviceUnavailable):
            await capture.open(CaptureConstraints())

    def test_start_before_open(self):
        """Test streaming requires an open capture."""
        with pytest.raises(DeviceUnavailable):
            StreamedCapture().start_streaming(lambda f: None)


class TestWebSocketPlayer:
    """Tests for WebSocketPlayer."""

    @pytest.mark.asyncio
    async def test_play_waits_for_ack(self, no_clip_length):
        """Test play returns once the client acknowledges the clip."""
        sent: list[dict] = []

        async def send_json(message):
            sent.append(message)

        player = WebSocketPlayer(send_json, padding_seconds=5.0)
        task = asyncio.create_task(player.play(SynthesizedAudio(audio_bytes=b"ID3clip")))
        while not sent:
            await asyncio.sleep(0)

        message = sent[0]
        assert message["type"] == "persona_audio"
        assert base64.b64decode(message["audio"]) == b"ID3clip"
        assert player.acknowledge(message["id"]) is True
        await asyncio.wait_for(task, timeout=1.0)

        assert player.clips_played == 1
        assert player.unacknowledged == 0
        assert player.acknowledge(message["id"]) is False

    @pytest.mark.asyncio
    async def test_play_times_out_without_ack(self, no_clip_length):
        """Test an unacknowledged clip finishes after the padding."""

        async def send_json(message):
            return None

        player = WebSocketPlayer(send_json, padding_seconds=0.01)

        await player.play(SynthesizedAudio(audio_bytes=b"ID3clip"))

        assert player.unacknowledged == 1
        assert player.clips_played == 1

    @pytest.mark.asyncio
    async def test_stop_interrupts(self, no_clip_length):
        """Test stop releases the waiting play and tells the client."""
        sent: list[dict] = []

        async def send_json(message):
            sent.append(message)

        player = WebSocketPlayer(send_json, padding_seconds=5.0)
        task = asyncio.create_task(player.play(SynthesizedAudio(audio_bytes=b"ID3clip")))
        while not sent:
            await asyncio.sleep(0)

        await player.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert sent[-1] == {"type": "stop_audio"}

    @pytest.mark.asyncio
    async def test_clip_waits_for_earlier_events(self, no_clip_length):
        """Test a clip goes out only after the events published before it."""
        sent: list[dict] = []

        async def send_json(message):
            sent.append(message)

        stream = EventStream()
        events = stream.subscribe()
        player = WebSocketPlayer(send_json, padding_seconds=0.01)
        player.follow(events)

        stream.publish(InterimCaption(text="line"))
        play = asyncio.create_task(player.play(SynthesizedAudio(audio_bytes=b"ID3clip")))
        await asyncio.sleep(0.01)
        assert sent == []

        forwarder = asyncio.create_task(forward_events(events, send_json))
        await asyncio.wait_for(play, timeout=1.0)
        stream.close()
        await asyncio.wait_for(forwarder, timeout=1.0)

        assert [m["type"] for m in sent] == ["caption", "persona_audio"]

    @pytest.mark.asyncio
    async def test_send_failure(self):
        """Test a dead socket raises PlaybackError."""

        async def send_json(message):
            raise ConnectionError("socket closed")

        player = WebSocketPlayer(send_json)

        with pytest.raises(PlaybackError):
            await player.play(SynthesizedAudio(audio_bytes=b"ID3clip"))


class TestCodec:
    """Tests for decoding synthesized audio."""

    def test_decode_wav(self):
        """Test a wav clip decodes to the same PCM16 samples."""
        samples = (np.sin(np.linspace(0, 20, 1600)) * 8000).astype(np.int16)

        pcm = decode_to_pcm16(wav_bytes(samples), sample_rate=16000)

        assert np.array_equal(pcm16_to_array(pcm)[:, 0], samples)

    def test_decode_empty(self):
        """Test empty data is rejected."""
        with pytest.raises(AudioDecodeError):
            decode_to_pcm16(b"")

    def test_decode_garbage(self):
        """Test undecodable data is rejected."""
        with pytest.raises(AudioDecodeError):
            decode_to_pcm16(b"definitely not audio" * 10)

    def test_duration(self):
        """Test clip duration is read from the header."""
        data = wav_bytes(np.zeros(8000, dtype=np.int16))

        assert audio_duration_seconds(data, "audio/wav") == pytest.approx(0.5)
        assert audio_duration_seconds(b"", "audio/wav") == 0.0
        assert audio_duration_seconds(data, "audio/unknown") == 0.0

    def test_pcm16_to_array(self):
        """Test PCM bytes are viewed as (frames, channels)."""
        array = pcm16_to_array(b"\x01\x00\x02\x00\x03\x00\x04\x00", channels=2)

        assert array.shape == (2, 2)
        assert array[1, 0] == 3


class TestSoundDeviceCapture:
    """Tests for local capture that do not touch PortAudio."""

    def test_classify_permission_error(self):
        """Test OS permission failures map to PermissionDenied."""
        error = _classify_portaudio_error(RuntimeError("Input permission denied by the OS"))

        assert isinstance(error, PermissionDenied)

    def test_classify_device_error(self):
        """Test other failures map to DeviceUnavailable."""
        error = _classify_portaudio_error(RuntimeError("Invalid device [PaErrorCode -9996]"))

        assert isinstance(error, DeviceUnavailable)

    def test_callback_builds_frames(self):
        """Test each PortAudio block becomes one sequenced frame."""
        capture = SoundDeviceCapture()
        frames: list[AudioFrame] = []
        capture._on_frame = frames.append

        capture._callback(b"\x00" * 640, 320, None, None)
        capture._callback(b"\x00" * 640, 320, None, "input overflow")

        assert [f.sequence for f in frames] == [0, 1]
        assert capture.overflows == 1

    def test_start_before_open(self):
        """Test streaming requires an open device."""
        with pytest.raises(DeviceUnavailable):
            SoundDeviceCapture().start_streaming(lambda f: None)

    def test_device_index(self):
        """Test numeric device names select by index."""
        assert SoundDeviceCapture._resolve_device("2") == 2
        assert SoundDeviceCapture._resolve_device("USB Mic") == "USB Mic"
