"""Custom exceptions for speech synthesizers."""


class SynthesisError(Exception):
    """Base exception for speech synthesis errors."""

    pass


class SynthesisConnectionError(SynthesisError):
    """Raised when unable to reach the synthesis backend."""

    pass


class SynthesisConfigurationError(SynthesisError):
    """Raised when a synthesizer is selected but not configured (missing key)."""

    pass
