"""Audio capture and playback.

- SoundDeviceCapture / SoundDevicePlayer: local microphone and speakers
- StreamedCapture / WebSocketPlayer: audio carried over a client websocket
"""

from src.services.audio.codec import audio_duration_seconds, decode_to_pcm16
from src.services.audio.exceptions import (
    AudioDecodeError,
    CaptureError,
    DeviceUnavailable,
    PermissionDenied,
    PlaybackError,
)
from src.services.audio.frames import FrameChunker
from src.services.audio.microphone import SoundDeviceCapture
from src.services.audio.playback import SoundDevicePlayer
from src.services.audio.protocol import (
    AudioCaptureSession,
    AudioPlayer,
    CaptureConstraints,
    FrameCallback,
)
from src.services.audio.remote import AcknowledgedPlayer, StreamedCapture, WebSocketPlayer

__all__ = [
    # Implementations
    "SoundDeviceCapture",
    "SoundDevicePlayer",
    "StreamedCapture",
    "AcknowledgedPlayer",
    "WebSocketPlayer",
    "FrameChunker",
    # Protocol
    "AudioCaptureSession",
    "AudioPlayer",
    "CaptureConstraints",
    "FrameCallback",
    # Codec
    "audio_duration_seconds",
    "decode_to_pcm16",
    # Exceptions
    "CaptureError",
    "PermissionDenied",
    "DeviceUnavailable",
    "PlaybackError",
    "AudioDecodeError",
]
