"""Repository pattern implementations for data access."""

from src.db.repositories.calls import CallLog, CallLogRepository

__all__ = [
    # Call repositories
    "CallLog",
    "CallLogRepository",
]
