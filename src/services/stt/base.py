"""Lifecycle shared by every transcription channel implementation."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any

from src.core.events import ChannelEvent, ChannelSink, ClosedEvent, ErrorEvent
from src.core.models import AudioFrame, ChannelHealth, ChannelState
from src.logging_config import get_logger
from src.observability.metrics import record_frames_dropped
from src.services.stt.exceptions import ChannelOpenError
from src.services.stt.protocol import ChannelConfig

logger: Any = get_logger(__name__)

# 1s of 20ms frames held while the stream is being established
DEFAULT_PENDING_FRAMES = 50


class BaseTranscriptionChannel:
    """Buffering, health tracking and event delivery for a streaming channel.

    Subclasses implement the transport:
    - ``_connect(config)``: establish the stream, raise ChannelOpenError on failure
    - ``_transmit(pcm)``: send one frame of audio
    - ``_finish()``: tell the backend no more audio is coming
    - ``_disconnect()``: release sockets/threads; must tolerate partial setup

    Backend messages are reported with ``_emit`` (on the event loop) or
    ``_emit_threadsafe`` (from SDK callback threads).
    """

    provider = "base"

    def __init__(
        self,
        sink: ChannelSink,
        *,
        max_pending_frames: int = DEFAULT_PENDING_FRAMES,
    ) -> None:
        self._sink = sink
        self._health = ChannelHealth()
        self._pending: deque[AudioFrame] = deque()
        self._max_pending = max_pending_frames
        self._config: ChannelConfig | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._frames_lost = 0
        self._frames_sent = 0
        self._closed = False
        self._close_requested = False
        self._released = False
        self._closed_delivered = False
        self._flush_lock = asyncio.Lock()

    @property
    def health(self) -> ChannelHealth:
        return self._health

    @property
    def frames_lost(self) -> int:
        return self._frames_lost

    @property
    def frames_sent(self) -> int:
        return self._frames_sent

    @property
    def is_open(self) -> bool:
        return self._health.state is ChannelState.OPEN and not self._closed

    async def open(self, config: ChannelConfig) -> None:
        if self._closed:
            raise ChannelOpenError(f"{self.provider} channel already closed")
        self._config = config
        self._loop = asyncio.get_running_loop()
        self._health.mark_connecting()

        try:
            await self._connect(config)
        except ChannelOpenError:
            await self._abort_open()
            raise
        except Exception as e:
            await self._abort_open()
            raise ChannelOpenError(f"{self.provider} connection failed: {e}") from e

        self._health.mark_open()
        logger.debug(f"{self.provider} channel open ({config.sample_rate}Hz, {config.language})")
        await self._flush_pending()

    async def _abort_open(self) -> None:
        self._health.mark_errored()
        self._closed = True
        await self._release()

    async def send_frame(self, frame: AudioFrame) -> None:
        if self._closed:
            self._count_lost("channel_closed")
            return

        if self._health.state is not ChannelState.OPEN:
            if len(self._pending) >= self._max_pending:
                self._pending.popleft()
                self._count_lost("pending_overflow")
            self._pending.append(frame)
            return

        await self._send(frame)

    async def _send(self, frame: AudioFrame) -> None:
        try:
            await self._transmit(frame.pcm)
            self._frames_sent += 1
        except Exception as e:
            self._count_lost("send_failed")
            self._emit(ErrorEvent(cause=f"{self.provider} send failed: {e}", exception=e))

    async def _flush_pending(self, *, closing: bool = False) -> None:
        # close() drains whatever an interrupted open-time flush left behind
        async with self._flush_lock:
            while self._pending and (closing or not self._closed):
                await self._send(self._pending.popleft())

    def _count_lost(self, reason: str) -> None:
        self._frames_lost += 1
        record_frames_dropped(reason)

    async def close(self) -> None:
        if self._released:
            return
        self._close_requested = True
        was_open = self._health.state is ChannelState.OPEN and not self._closed
        self._closed = True
        try:
            if was_open:
                await self._flush_pending(closing=True)
                await self._finish()
        except Exception as e:
            logger.warning(f"{self.provider} channel did not close cleanly: {e}")
        finally:
            self._pending.clear()
            await self._release()
            if self._health.state is not ChannelState.ERRORED:
                self._health.mark_closed()

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            await self._disconnect()
        except Exception as e:
            logger.warning(f"{self.provider} transport release failed: {e}")

    def _emit(self, event: ChannelEvent) -> None:
        """Deliver one backend event to the sink. Must run on the event loop."""
        if isinstance(event, ClosedEvent):
            if self._closed_delivered:
                return
            self._closed_delivered = True
            self._closed = True
            event = ClosedEvent(expected=self._close_requested)
            if self._health.state is ChannelState.OPEN:
                self._health.mark_closed()
        elif isinstance(event, ErrorEvent):
            if self._close_requested:
                logger.debug(f"{self.provider} error after close ignored: {event.cause}")
                return
            self._health.mark_errored()
        else:
            self._health.touch()
        self._sink(event)

    def _emit_threadsafe(self, event: ChannelEvent) -> None:
        """Deliver an event raised on an SDK thread, preserving arrival order."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._emit, event)

    # Transport hooks

    async def _connect(self, config: ChannelConfig) -> None:
        raise NotImplementedError

    async def _transmit(self, pcm: bytes) -> None:
        raise NotImplementedError

    async def _finish(self) -> None:
        return None

    async def _disconnect(self) -> None:
        return None
