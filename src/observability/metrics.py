"""Prometheus metrics for practice calls.

Provides metrics for monitoring call health, turn latency and recovery paths.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

# =============================================================================
# Counters
# =============================================================================

CALL_TOTAL = Counter(
    "rehearsal_call_total",
    "Total practice calls by outcome",
    ["outcome", "source"],
)

USER_TURNS = Counter(
    "rehearsal_user_turns_total",
    "User utterances that triggered a persona reply",
)

RESPONDER_FALLBACKS = Counter(
    "rehearsal_responder_fallbacks_total",
    "Persona replies replaced by the fallback line",
    ["reason"],
)

SYNTHESIS_FALLBACKS = Counter(
    "rehearsal_synthesis_fallbacks_total",
    "Persona lines delivered without the primary voice",
    ["outcome"],
)

FRAMES_DROPPED = Counter(
    "rehearsal_frames_dropped_total",
    "Audio frames discarded before reaching the transcription backend",
    ["reason"],
)

CHANNEL_RECONNECTS = Counter(
    "rehearsal_channel_reconnects_total",
    "Transcription channel reopen attempts",
    ["result"],
)

# =============================================================================
# Gauges
# =============================================================================

ACTIVE_CALLS = Gauge(
    "rehearsal_active_calls",
    "Currently active practice calls",
)

# =============================================================================
# Histograms
# =============================================================================

CALL_DURATION = Histogram(
    "rehearsal_call_duration_seconds",
    "Call duration in seconds",
    buckets=[10, 30, 60, 120, 300, 600, 900, 1800],
)

RESPONDER_LATENCY = Histogram(
    "rehearsal_responder_latency_seconds",
    "Time for the persona responder to produce a reply",
    buckets=[0.25, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0, 10.0],
)

SYNTHESIS_LATENCY = Histogram(
    "rehearsal_synthesis_latency_seconds",
    "Time to synthesize one persona line",
    buckets=[0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0],
)

# =============================================================================
# Helper Functions
# =============================================================================


def record_call_metrics(
    outcome: str,
    duration_seconds: float,
    *,
    source: str = "local",
) -> None:
    """Record metrics for a finished call.

    Args:
        outcome: Call outcome (completed, channel_unrecoverable, capture_failed)
        duration_seconds: Total call duration
        source: Where the call audio came from (local, browser, phone)
    """
    CALL_TOTAL.labels(outcome=outcome, source=source).inc()
    if duration_seconds > 0:
        CALL_DURATION.observe(duration_seconds)


def record_frames_dropped(reason: str, count: int = 1) -> None:
    """Count audio frames that never reached a transcription backend."""
    if count > 0:
        FRAMES_DROPPED.labels(reason=reason).inc(count)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output.

    Returns:
        Metrics in Prometheus text exposition format.
    """
    return generate_latest()


def get_content_type() -> str:
    """Get the content type for Prometheus metrics.

    Returns:
        Content-Type header value for Prometheus metrics.
    """
    return CONTENT_TYPE_LATEST
