"""Capture and playback for audio carried over a client connection.

The browser call websocket and the Plivo media stream both deliver user
audio as pushed payloads and play persona audio on the far end, reporting
back when a clip has finished.
"""

from __future__ import annotations

import asyncio
import base64
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from src.core.events import EventSubscription
from src.logging_config import get_logger
from src.services.audio.codec import audio_duration_seconds
from src.services.audio.exceptions import DeviceUnavailable, PermissionDenied, PlaybackError
from src.services.audio.frames import FrameChunker
from src.services.audio.protocol import CaptureConstraints, FrameCallback
from src.services.tts.protocol import SynthesizedAudio

logger: Any = get_logger(__name__)

SendJson = Callable[[dict[str, Any]], Awaitable[None]]


class StreamedCapture:
    """Capture session fed by a remote client.

    The transport handler calls ``push()`` with whatever PCM16 payload it
    received; the chunker turns it into uniform frames. ``deny()`` records a
    client-side microphone failure so that ``open()`` fails the same way a
    local permission refusal would.
    """

    def __init__(self, name: str = "remote") -> None:
        self._name = name
        self._constraints: CaptureConstraints | None = None
        self._chunker: FrameChunker | None = None
        self._on_frame: FrameCallback | None = None
        self._denied: str | None = None
        self._stopped = False
        self.frames_pushed = 0
        self.bytes_ignored = 0

    async def open(self, constraints: CaptureConstraints) -> None:
        if self._denied is not None:
            raise PermissionDenied(self._denied)
        if self._stopped:
            raise DeviceUnavailable(f"[{self._name}] Remote audio source is gone")
        self._constraints = constraints
        self._chunker = FrameChunker(
            constraints.frame_bytes,
            sample_rate=constraints.sample_rate,
            channels=constraints.channels,
        )

    def deny(self, reason: str) -> None:
        """Record that the client could not provide microphone audio."""
        self._denied = reason or "Microphone access denied"
        logger.warning(f"[{self._name}] Client microphone failure: {self._denied}")

    @property
    def denied(self) -> str | None:
        return self._denied

    def start_streaming(self, on_frame: FrameCallback) -> None:
        if self._chunker is None:
            raise DeviceUnavailable(f"[{self._name}] Capture is not open")
        self._on_frame = on_frame

    def push(self, data: bytes) -> int:
        """Feed a payload; returns the number of frames emitted."""
        on_frame = self._on_frame
        if on_frame is None or self._chunker is None or self._stopped:
            self.bytes_ignored += len(data)
            return 0
        frames = self._chunker.push(data)
        for frame in frames:
            on_frame(frame)
        self.frames_pushed += len(frames)
        return len(frames)

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._on_frame = None
        if self._chunker is not None:
            self._chunker.reset()


class AcknowledgedPlayer:
    """Player for a far end that reports when each clip finishes.

    Subclasses deliver the clip and interrupt playback; ``acknowledge()``
    completes the matching ``play()``. Without an acknowledgement the clip
    is considered finished after its estimated length plus padding.
    """

    def __init__(self, *, padding_seconds: float = 2.0, name: str = "remote") -> None:
        self._padding_seconds = padding_seconds
        self._name = name
        self._pending: dict[str, asyncio.Future[None]] = {}
        self.clips_played = 0
        self.unacknowledged = 0

    async def play(self, audio: SynthesizedAudio) -> None:
        clip_id = uuid.uuid4().hex[:12]
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._pending[clip_id] = future

        try:
            try:
                await self._deliver(clip_id, audio)
            except PlaybackError:
                raise
            except Exception as e:
                raise PlaybackError(f"[{self._name}] Could not send audio: {e}") from e

            timeout = audio_duration_seconds(audio.audio_bytes, audio.mime_type)
            timeout += self._padding_seconds
            try:
                await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
            except TimeoutError:
                self.unacknowledged += 1
                logger.debug(f"[{self._name}] No playback ack for {clip_id} after {timeout:.1f}s")
            self.clips_played += 1
        finally:
            self._pending.pop(clip_id, None)

    def acknowledge(self, clip_id: str) -> bool:
        """Mark a clip as played. Returns False for unknown ids."""
        future = self._pending.get(clip_id)
        if future is None or future.done():
            return False
        future.set_result(None)
        return True

    async def stop(self) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_result(None)
        if pending:
            try:
                await self._interrupt()
            except Exception as e:
                logger.debug(f"[{self._name}] Interrupt failed: {e}")

    async def _deliver(self, clip_id: str, audio: SynthesizedAudio) -> None:
        raise NotImplementedError

    async def _interrupt(self) -> None:
        raise NotImplementedError


class WebSocketPlayer(AcknowledgedPlayer):
    """Sends persona clips to a browser as base64 JSON messages.

    When bound to the call's event subscription, a clip is sent only after
    the events published before it (the line's utterance and state change)
    have reached the client.
    """

    def __init__(self, send_json: SendJson, *, padding_seconds: float = 2.0) -> None:
        super().__init__(padding_seconds=padding_seconds, name="browser")
        self._send_json = send_json
        self._events: EventSubscription | None = None

    def follow(self, events: EventSubscription) -> None:
        self._events = events

    async def _deliver(self, clip_id: str, audio: SynthesizedAudio) -> None:
        if self._events is not None:
            await self._events.join()
        await self._send_json(
            {
                "type": "persona_audio",
                "id": clip_id,
                "mime_type": audio.mime_type,
                "audio": base64.b64encode(audio.audio_bytes).decode("ascii"),
            }
        )

    async def _interrupt(self) -> None:
        await self._send_json({"type": "stop_audio"})
