"""Observability module for call metrics."""

from src.observability.metrics import (
    ACTIVE_CALLS,
    CALL_DURATION,
    CALL_TOTAL,
    CHANNEL_RECONNECTS,
    FRAMES_DROPPED,
    RESPONDER_FALLBACKS,
    RESPONDER_LATENCY,
    SYNTHESIS_FALLBACKS,
    SYNTHESIS_LATENCY,
    USER_TURNS,
    record_call_metrics,
    record_frames_dropped,
)

__all__ = [
    "CALL_TOTAL",
    "CALL_DURATION",
    "ACTIVE_CALLS",
    "USER_TURNS",
    "RESPONDER_FALLBACKS",
    "RESPONDER_LATENCY",
    "SYNTHESIS_FALLBACKS",
    "SYNTHESIS_LATENCY",
    "FRAMES_DROPPED",
    "CHANNEL_RECONNECTS",
    "record_call_metrics",
    "record_frames_dropped",
]
