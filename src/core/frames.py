"""Frame hand-off between the capture callback and the transcription channel.

The capture path only enqueues. A separate pump task drains the queue into
whichever channel is current, so capture never waits on the network.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from typing import Any

from src.core.models import AudioFrame
from src.logging_config import get_logger
from src.observability.metrics import record_frames_dropped
from src.services.stt.protocol import TranscriptionChannel

logger: Any = get_logger(__name__)


class FrameQueue:
    """Bounded frame queue that drops the oldest frame instead of blocking."""

    def __init__(self, max_size: int = 50) -> None:
        self._queue: asyncio.Queue[AudioFrame | None] = asyncio.Queue(maxsize=max_size)
        self._closed = False
        self.dropped = 0

    def put(self, frame: AudioFrame) -> None:
        """Add a frame, evicting the oldest one when full."""
        if self._closed:
            return
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            with contextlib.suppress(asyncio.QueueEmpty):
                self._queue.get_nowait()
                self.dropped += 1
                record_frames_dropped("backpressure")
            self._queue.put_nowait(frame)

    async def get(self, timeout: float | None = None) -> AudioFrame | None:
        """Next frame, or None on timeout or once closed and drained."""
        if self._closed and self._queue.empty():
            return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except TimeoutError:
            return None

    def clear(self) -> None:
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break

    def close(self) -> None:
        """Close the queue and wake the consumer."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self.dropped += 1
            self._queue.put_nowait(None)

    @property
    def size(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed


class FramePump:
    """Forwards queued frames to the current transcription channel.

    ``channel_provider`` is called per frame so a reconnect swaps the target
    without restarting the pump. Frames arriving while no channel is
    available are dropped and counted.
    """

    def __init__(
        self,
        queue: FrameQueue,
        channel_provider: Callable[[], TranscriptionChannel | None],
        *,
        name: str = "call",
    ) -> None:
        self._queue = queue
        self._channel_provider = channel_provider
        self._name = name
        self._task: asyncio.Task[None] | None = None
        self.forwarded = 0
        self.dropped = 0

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"frame-pump-{self._name}")

    async def _run(self) -> None:
        while True:
            frame = await self._queue.get()
            if frame is None:
                break
            channel = self._channel_provider()
            if channel is None:
                self.dropped += 1
                record_frames_dropped("no_channel")
                continue
            try:
                await channel.send_frame(frame)
                self.forwarded += 1
            except Exception as e:
                # Channel failures surface through its own error events
                self.dropped += 1
                logger.warning(f"[{self._name}] Frame forward failed: {e}")

    async def stop(self, timeout: float = 1.0) -> None:
        """Close the queue and wait briefly for the pump to exit."""
        self._queue.close()
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except TimeoutError:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
