"""Audio capture and playback protocols."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from src.core.models import AudioFrame
from src.services.tts.protocol import SynthesizedAudio

FrameCallback = Callable[[AudioFrame], None]


@dataclass(frozen=True, slots=True)
class CaptureConstraints:
    """Format the capture session must deliver.

    Attributes:
        sample_rate: Output sample rate (Hz)
        channels: Output channel count
        frame_ms: Frame length in milliseconds
        device: Input device name or index (local capture only)
    """

    sample_rate: int = 16000
    channels: int = 1
    frame_ms: int = 20
    device: str | int | None = None

    @property
    def samples_per_frame(self) -> int:
        return self.sample_rate * self.frame_ms // 1000

    @property
    def frame_bytes(self) -> int:
        # 16-bit samples
        return self.samples_per_frame * self.channels * 2


class AudioCaptureSession(Protocol):
    """Source of fixed-size PCM16 frames from the user's microphone."""

    async def open(self, constraints: CaptureConstraints) -> None:
        """Acquire the input device.

        Raises:
            PermissionDenied: Microphone access was refused
            DeviceUnavailable: No usable input device
        """
        ...

    def start_streaming(self, on_frame: FrameCallback) -> None:
        """Begin delivering frames.

        ``on_frame`` may be called from a capture thread and must only
        enqueue.
        """
        ...

    def stop(self) -> None:
        """Release the device. Idempotent and safe in any state."""
        ...


class AudioPlayer(Protocol):
    """Plays persona lines to the user."""

    async def play(self, audio: SynthesizedAudio) -> None:
        """Play a clip and return once playback has finished.

        Raises:
            PlaybackError: The clip could not be played
        """
        ...

    async def stop(self) -> None:
        """Abort any playback in progress."""
        ...
