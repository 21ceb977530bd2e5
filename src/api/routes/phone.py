"""Phone practice calls placed through Plivo.

Handles:
- Placing, inspecting and ending outbound calls
- Answer webhook: returns XML that opens the media stream
- Ring and hangup webhooks: keep the call status current
"""

from __future__ import annotations

import uuid
from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field

from src.api.dependencies import get_call_control, get_phone_calls, get_registry
from src.api.websocket.registry import CallRegistry
from src.config import Settings, get_settings
from src.logging_config import get_logger, mask_phone
from src.prompts.persona import resolve_scenario
from src.services.telephony.exceptions import TelephonyError
from src.services.telephony.plivo import (
    PhoneCallTracker,
    PlivoCallControl,
    generate_hangup_xml,
    generate_stream_xml,
)

router = APIRouter(tags=["Phone"])
logger: Any = get_logger(__name__)


# =============================================================================
# Request Schemas
# =============================================================================


class PhoneCallRequest(BaseModel):
    """Place a practice call to the user's phone."""

    phone_number: str = Field(..., pattern=r"^\+[1-9]\d{6,14}$", description="E.164 number")
    scenario_id: str | None = None
    personality: str | None = None
    difficulty: str | None = None
    client_name: str | None = Field(None, max_length=100)
    client_type: str | None = Field(None, max_length=100)


def _webhook_url(settings: Settings, path: str, call_id: str) -> str:
    base = settings.public_base_url.rstrip("/")
    return f"{base}{path}?{urlencode({'call_id': call_id})}"


async def _form_dict(request: Request) -> dict[str, str]:
    form_data = await request.form()
    return {k: str(v) for k, v in form_data.items()}


# =============================================================================
# Call Control
# =============================================================================


@router.post("/phone-calls", status_code=status.HTTP_201_CREATED)
async def place_phone_call(
    body: PhoneCallRequest,
    control: PlivoCallControl = Depends(get_call_control),
    phone_calls: PhoneCallTracker = Depends(get_phone_calls),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Dial the user; the persona starts talking once they pick up."""
    scenario = resolve_scenario(
        body.scenario_id,
        personality=body.personality,
        difficulty=body.difficulty,
        client_name=body.client_name,
        client_type=body.client_type,
    )
    call_id = str(uuid.uuid4())

    try:
        call = await control.start_call(
            body.phone_number,
            answer_url=_webhook_url(settings, "/api/plivo/answer", call_id),
            hangup_url=_webhook_url(settings, "/api/plivo/hangup", call_id),
            ring_url=_webhook_url(settings, "/api/plivo/ring", call_id),
            call_id=call_id,
        )
    except TelephonyError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    call.scenario = scenario
    phone_calls.register(call)
    return call.to_dict()


@router.get("/phone-calls/{call_id}")
async def get_phone_call(
    call_id: str,
    phone_calls: PhoneCallTracker = Depends(get_phone_calls),
) -> dict[str, Any]:
    call = phone_calls.get(call_id)
    if call is None:
        raise HTTPException(status_code=404, detail="Phone call not found")
    return call.to_dict()


@router.post("/phone-calls/{call_id}/end")
async def end_phone_call(
    call_id: str,
    control: PlivoCallControl = Depends(get_call_control),
    phone_calls: PhoneCallTracker = Depends(get_phone_calls),
) -> dict[str, Any]:
    """Hang up an answered call or cancel one that is still ringing."""
    call = phone_calls.get(call_id)
    if call is None:
        raise HTTPException(status_code=404, detail="Phone call not found")
    if call.status.is_terminal:
        return call.to_dict()

    try:
        await control.end_call(call)
    except TelephonyError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e
    return call.to_dict()


# =============================================================================
# Plivo Webhooks
# =============================================================================


@router.post("/plivo/answer")
async def plivo_answer_webhook(
    request: Request,
    call_id: str = Query(...),
    phone_calls: PhoneCallTracker = Depends(get_phone_calls),
) -> Response:
    """Return XML that streams the answered call to /ws/plivo/{call_id}.

    Expected form data:
    - CallUUID: Plivo call identifier
    - CallStatus: current call status
    """
    form = await _form_dict(request)
    call = phone_calls.update(
        call_id,
        form.get("CallStatus") or "in-progress",
        call_uuid=form.get("CallUUID") or None,
    )
    if call is None:
        logger.error(f"Answer webhook for unknown call {call_id}, hanging up")
        return Response(
            content=generate_hangup_xml("Sorry, this practice call has expired."),
            media_type="application/xml",
        )

    logger.info(f"Call answered: {call_id} ({mask_phone(call.phone_number)})")

    # Use forwarded headers if behind proxy
    host = request.headers.get("x-forwarded-host") or request.headers.get("host", "localhost:8000")
    proto = request.headers.get("x-forwarded-proto", request.url.scheme)
    scheme = "wss" if proto == "https" else "ws"
    websocket_url = f"{scheme}://{host}/ws/plivo/{call_id}"

    return Response(
        content=generate_stream_xml(websocket_url),
        media_type="application/xml",
    )


@router.post("/plivo/ring")
async def plivo_ring_webhook(
    request: Request,
    call_id: str = Query(...),
    phone_calls: PhoneCallTracker = Depends(get_phone_calls),
) -> dict[str, bool]:
    form = await _form_dict(request)
    phone_calls.update(
        call_id,
        form.get("CallStatus") or "ringing",
        call_uuid=form.get("CallUUID") or None,
    )
    return {"ok": True}


@router.post("/plivo/hangup")
async def plivo_hangup_webhook(
    request: Request,
    call_id: str = Query(...),
    phone_calls: PhoneCallTracker = Depends(get_phone_calls),
    registry: CallRegistry = Depends(get_registry),
) -> dict[str, bool]:
    """Record the final status and end the practice session if one is bound.

    Expected form data:
    - CallUUID: Plivo call identifier
    - CallStatus: final status (completed, busy, no-answer, ...)
    - Duration: call duration in seconds
    - HangupCause: reason for hangup
    """
    form = await _form_dict(request)
    try:
        duration = int(form.get("Duration") or 0)
    except ValueError:
        duration = None

    call = phone_calls.update(
        call_id,
        form.get("CallStatus") or "completed",
        call_uuid=form.get("CallUUID") or None,
        duration_seconds=duration,
        hangup_cause=form.get("HangupCause") or None,
    )
    if call is None:
        return {"ok": True}

    logger.info(f"Call ended: {call_id} ({call.status.value}, {call.hangup_cause or 'no cause'})")

    if call.session_id:
        entry = await registry.get(call.session_id)
        if entry is not None:
            await entry.controller.end(reason="caller_hung_up")

    return {"ok": True}
