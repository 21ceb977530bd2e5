"""Re-chunk arbitrary PCM payloads into fixed-size frames."""

from __future__ import annotations

from src.core.models import AudioFrame


class FrameChunker:
    """Accumulates PCM bytes and cuts them into equal frames.

    Remote clients send whatever block size their audio stack produces
    (browsers use 4096-sample worklet buffers, Plivo sends 20 ms chunks).
    The transcription channel expects uniform frames, so leftovers are
    carried into the next push.
    """

    def __init__(self, frame_bytes: int, sample_rate: int = 16000, channels: int = 1) -> None:
        if frame_bytes <= 0 or frame_bytes % 2:
            raise ValueError(f"frame_bytes must be a positive even number, got {frame_bytes}")
        self._frame_bytes = frame_bytes
        self._sample_rate = sample_rate
        self._channels = channels
        self._pending = bytearray()
        self._sequence = 0

    def push(self, data: bytes) -> list[AudioFrame]:
        """Add bytes and return every complete frame now available."""
        self._pending.extend(data)
        frames: list[AudioFrame] = []
        while len(self._pending) >= self._frame_bytes:
            chunk = bytes(self._pending[: self._frame_bytes])
            del self._pending[: self._frame_bytes]
            frames.append(self._frame(chunk))
        return frames

    def flush(self) -> AudioFrame | None:
        """Return the partial remainder zero-padded to a full frame, if any."""
        if not self._pending:
            return None
        chunk = bytes(self._pending).ljust(self._frame_bytes, b"\x00")
        self._pending.clear()
        return self._frame(chunk)

    def reset(self) -> None:
        self._pending.clear()

    @property
    def pending_bytes(self) -> int:
        return len(self._pending)

    def _frame(self, pcm: bytes) -> AudioFrame:
        frame = AudioFrame(
            pcm=pcm,
            sample_rate=self._sample_rate,
            channels=self._channels,
            sequence=self._sequence,
        )
        self._sequence += 1
        return frame
