"""Health check and metrics endpoints.

Provides:
- Basic health check (GET /health)
- Detailed health check with dependency status (GET /health/detailed)
- Prometheus metrics (GET /metrics)
"""

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from src.api.dependencies import get_registry
from src.api.websocket.registry import CallRegistry
from src.config import Settings, get_settings
from src.observability.metrics import get_content_type, get_metrics

router = APIRouter()

VERSION = "0.1.0"


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str


class DetailedHealthResponse(BaseModel):
    """Detailed health check response."""

    status: str
    checks: dict[str, str]
    active_calls: int
    max_calls: int
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check endpoint.

    Returns:
        Simple status indicating the API is running.
    """
    return HealthResponse(status="healthy")


@router.get("/health/detailed", response_model=DetailedHealthResponse)
async def detailed_health_check(
    request: Request,
    registry: CallRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
) -> DetailedHealthResponse:
    """Detailed health check including dependency status.

    Checks:
    - Call services initialized
    - External service configuration status
    - Selected transcription and voice providers

    Returns:
        Status with individual component checks.
    """
    checks: dict[str, str] = {}

    services = getattr(request.app.state, "services", None)
    checks["call_services"] = "ok" if services is not None else "error: not initialized"

    # External services (just check if configured, don't call APIs)
    checks["groq"] = "configured" if settings.groq_api_key.get_secret_value() else "missing"
    checks["deepgram"] = (
        "configured" if settings.deepgram_api_key.get_secret_value() else "missing"
    )
    checks["elevenlabs"] = "configured" if settings.elevenlabs_api_key else "missing"
    checks["plivo"] = "configured" if settings.telephony_configured else "missing"

    checks["stt_provider"] = settings.stt_provider
    if settings.stt_provider == "relay" and not settings.stt_relay_url:
        checks["stt_relay"] = "missing"
    checks["tts_provider"] = settings.tts_provider
    checks["edge_tts_fallback"] = "enabled" if settings.edge_tts_fallback_enabled else "disabled"

    # Overall status
    healthy = checks["call_services"] == "ok" and checks.get("stt_relay") != "missing"
    return DetailedHealthResponse(
        status="healthy" if healthy else "degraded",
        checks=checks,
        active_calls=registry.active_count,
        max_calls=registry.max_calls,
        version=VERSION,
    )


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Response with metrics in Prometheus exposition format.
    """
    return Response(
        content=get_metrics(),
        media_type=get_content_type(),
    )
