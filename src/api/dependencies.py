"""FastAPI dependencies for objects created at application startup."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.api.websocket.registry import CallRegistry
from src.db.repositories.calls import CallLogRepository
from src.services.factory import CallServices
from src.services.telephony.plivo import PhoneCallTracker, PlivoCallControl


def get_registry(request: Request) -> CallRegistry:
    return request.app.state.registry


def get_call_logs(request: Request) -> CallLogRepository:
    return request.app.state.call_logs


def get_phone_calls(request: Request) -> PhoneCallTracker:
    return request.app.state.phone_calls


def get_call_services(request: Request) -> CallServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Call services are not available",
        )
    return services


def get_call_control(request: Request) -> PlivoCallControl:
    """Plivo call control, 503 when telephony is not configured."""
    control: PlivoCallControl = request.app.state.call_control
    if not control.configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Phone calls are not configured",
        )
    return control
