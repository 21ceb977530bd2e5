"""Custom exceptions for transcription channels."""


class TranscriptionError(Exception):
    """Base exception for transcription channel errors."""

    pass


class ChannelOpenError(TranscriptionError):
    """Raised when the stream to the recognition backend cannot be established."""

    pass


class ChannelUnrecoverable(TranscriptionError):
    """Raised when reopening the channel failed on every allowed attempt."""

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts
