"""Custom exceptions for audio capture and playback."""


class CaptureError(Exception):
    """Base exception for microphone capture errors."""

    pass


class PermissionDenied(CaptureError):
    """Raised when the user or OS refuses microphone access."""

    pass


class DeviceUnavailable(CaptureError):
    """Raised when no usable input device exists or it cannot be opened."""

    pass


class PlaybackError(Exception):
    """Base exception for persona audio playback errors."""

    pass


class AudioDecodeError(PlaybackError):
    """Raised when synthesized audio cannot be decoded to PCM."""

    pass
