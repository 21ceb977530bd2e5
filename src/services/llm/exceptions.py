"""Custom exceptions for persona responders."""


class GenerationError(Exception):
    """Base exception for reply generation errors."""

    pass


class GenerationTimeout(GenerationError):
    """Raised when the backend did not produce a reply in time."""

    pass


class GenerationRateLimitError(GenerationError):
    """Raised when rate limit is exceeded."""

    def __init__(self, message: str, retry_after: float = 60.0):
        super().__init__(message)
        self.retry_after = retry_after


class GenerationConnectionError(GenerationError):
    """Raised when unable to connect to the responder API."""

    pass


class GenerationAuthenticationError(GenerationError):
    """Raised when API key is invalid."""

    pass
