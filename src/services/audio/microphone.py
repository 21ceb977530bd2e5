"""Local microphone capture using PortAudio (sounddevice)."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

from src.core.models import AudioFrame
from src.logging_config import get_logger
from src.services.audio.exceptions import CaptureError, DeviceUnavailable, PermissionDenied
from src.services.audio.protocol import CaptureConstraints, FrameCallback

if TYPE_CHECKING:
    import sounddevice

logger: Any = get_logger(__name__)

_PERMISSION_MARKERS = ("permission", "denied", "not authorized", "not permitted")


def _classify_portaudio_error(error: Exception) -> CaptureError:
    message = str(error)
    if any(marker in message.lower() for marker in _PERMISSION_MARKERS):
        return PermissionDenied(f"Microphone access denied: {message}")
    return DeviceUnavailable(f"Microphone unavailable: {message}")


class SoundDeviceCapture:
    """Captures int16 mono frames from a local input device.

    The stream's blocksize is exactly one frame, so every PortAudio callback
    yields one AudioFrame. The callback runs on the PortAudio thread.
    """

    def __init__(self, device: str | int | None = None) -> None:
        self._device = device
        self._constraints = CaptureConstraints()
        self._stream: sounddevice.RawInputStream | None = None
        self._on_frame: FrameCallback | None = None
        self._sequence = 0
        self._lock = threading.Lock()
        self.overflows = 0

    @staticmethod
    def _resolve_device(device: str | int | None) -> str | int | None:
        if isinstance(device, str) and device.isdigit():
            return int(device)
        return device

    async def open(self, constraints: CaptureConstraints) -> None:
        if self._stream is not None:
            return
        import sounddevice as sd

        self._constraints = constraints
        device = self._resolve_device(constraints.device or self._device)
        try:
            if device is None:
                sd.query_devices(kind="input")
            self._stream = sd.RawInputStream(
                samplerate=constraints.sample_rate,
                blocksize=constraints.samples_per_frame,
                dtype="int16",
                channels=constraints.channels,
                device=device,
                callback=self._callback,
            )
        except sd.PortAudioError as e:
            raise _classify_portaudio_error(e) from e
        except ValueError as e:
            # query_devices raises ValueError when there is no input device
            raise DeviceUnavailable(f"No input device: {e}") from e

        logger.info(
            f"Microphone opened: device={device or 'default'} "
            f"rate={constraints.sample_rate} frame={constraints.frame_ms}ms"
        )

    def start_streaming(self, on_frame: FrameCallback) -> None:
        if self._stream is None:
            raise DeviceUnavailable("Capture is not open")
        self._on_frame = on_frame
        import sounddevice as sd

        try:
            self._stream.start()
        except sd.PortAudioError as e:
            raise _classify_portaudio_error(e) from e

    def _callback(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            self.overflows += 1
            logger.debug(f"PortAudio callback status: {status}")
        on_frame = self._on_frame
        if on_frame is None:
            return
        frame = AudioFrame(
            pcm=bytes(indata),
            sample_rate=self._constraints.sample_rate,
            channels=self._constraints.channels,
            sequence=self._sequence,
        )
        self._sequence += 1
        on_frame(frame)

    def stop(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
            self._on_frame = None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.warning(f"Error closing microphone stream: {e}")
        logger.info(f"Microphone released after {self._sequence} frames")
