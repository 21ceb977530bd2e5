"""Custom exceptions for telephony."""


class TelephonyError(Exception):
    """Base exception for phone call placement and control."""

    pass


class TelephonyNotConfigured(TelephonyError):
    """Raised when Plivo credentials or caller ID are missing."""

    pass
