"""Plivo telephony for practice calls on a real phone.

Handles:
- Placing and ending outbound calls via the Plivo SDK
- Tracking call status reported by webhooks
- XML that streams call audio to the practice call websocket
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from xml.etree.ElementTree import Element, SubElement, tostring

from src.config import Settings, get_settings
from src.core.models import Scenario
from src.logging_config import get_logger, mask_phone
from src.services.telephony.exceptions import TelephonyError, TelephonyNotConfigured

if TYPE_CHECKING:
    import plivo

logger: Any = get_logger(__name__)

# Plivo streams linear PCM at the capture rate, no transcoding needed
STREAM_CONTENT_TYPE = "audio/x-l16;rate=16000"
STREAM_TIMEOUT_SECONDS = 3600


class CallStatus(str, Enum):
    """Phone call status as exposed by the API."""

    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {CallStatus.COMPLETED, CallStatus.FAILED, CallStatus.BUSY, CallStatus.NO_ANSWER}
)

# Plivo webhook CallStatus values and their API equivalents
_STATUS_ALIASES: dict[str, CallStatus] = {
    "initiated": CallStatus.QUEUED,
    "queued": CallStatus.QUEUED,
    "ringing": CallStatus.RINGING,
    "early-media": CallStatus.RINGING,
    "answered": CallStatus.IN_PROGRESS,
    "in-progress": CallStatus.IN_PROGRESS,
    "completed": CallStatus.COMPLETED,
    "hangup": CallStatus.COMPLETED,
    "failed": CallStatus.FAILED,
    "busy": CallStatus.BUSY,
    "no-answer": CallStatus.NO_ANSWER,
    "timeout": CallStatus.NO_ANSWER,
    "cancel": CallStatus.NO_ANSWER,
    "canceled": CallStatus.NO_ANSWER,
    "cancelled": CallStatus.NO_ANSWER,
}


def normalize_call_status(raw: str | None) -> CallStatus | None:
    """Map a Plivo status string to CallStatus, None if unrecognised."""
    if not raw:
        return None
    return _STATUS_ALIASES.get(raw.strip().lower().replace("_", "-"))


@dataclass
class PhoneCall:
    """An outbound practice call and what webhooks have said about it.

    Attributes:
        call_id: Our identifier, embedded in webhook and stream URLs
        request_id: Plivo request UUID returned when the call was placed
        phone_number: Number that was dialled
        scenario: Persona the caller will practice against
        status: Latest normalized status
        call_uuid: Plivo CallUUID, known once the call is answered
        session_id: Practice session bound to the media stream
    """

    call_id: str
    request_id: str
    phone_number: str
    scenario: Scenario | None = None
    status: CallStatus = CallStatus.QUEUED
    call_uuid: str | None = None
    session_id: str | None = None
    duration_seconds: int | None = None
    hangup_cause: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "request_id": self.request_id,
            "phone_number": mask_phone(self.phone_number),
            "status": self.status.value,
            "call_uuid": self.call_uuid,
            "session_id": self.session_id,
            "scenario_id": self.scenario.scenario_id if self.scenario else None,
            "duration_seconds": self.duration_seconds,
            "hangup_cause": self.hangup_cause,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class PhoneCallTracker:
    """In-memory status of placed calls, fed by Plivo webhooks.

    Terminal statuses are final: late or duplicate webhooks never move a
    finished call back to an earlier status.
    """

    def __init__(self, max_calls: int = 500) -> None:
        self._calls: dict[str, PhoneCall] = {}
        self._max_calls = max_calls

    def register(self, call: PhoneCall) -> None:
        if len(self._calls) >= self._max_calls:
            self._evict_finished()
        self._calls[call.call_id] = call

    def get(self, call_id: str) -> PhoneCall | None:
        return self._calls.get(call_id)

    def find_by_uuid(self, call_uuid: str) -> PhoneCall | None:
        for call in self._calls.values():
            if call.call_uuid == call_uuid or call.request_id == call_uuid:
                return call
        return None

    def update(
        self,
        call_id: str,
        raw_status: str | None,
        *,
        call_uuid: str | None = None,
        duration_seconds: int | None = None,
        hangup_cause: str | None = None,
    ) -> PhoneCall | None:
        """Apply a webhook report. Returns the call, or None if unknown."""
        call = self._calls.get(call_id)
        if call is None:
            logger.warning(f"Status update for unknown call {call_id}")
            return None

        if call_uuid and not call.call_uuid:
            call.call_uuid = call_uuid
        if duration_seconds is not None:
            call.duration_seconds = duration_seconds
        if hangup_cause:
            call.hangup_cause = hangup_cause

        status = normalize_call_status(raw_status)
        if status is None:
            if raw_status:
                logger.debug(f"Ignoring unrecognised call status {raw_status!r} for {call_id}")
        elif call.status.is_terminal:
            logger.debug(f"Call {call_id} already {call.status.value}, ignoring {status.value}")
        elif status is not call.status:
            logger.info(f"Call {call_id}: {call.status.value} → {status.value}")
            call.status = status

        call.updated_at = datetime.now(UTC)
        return call

    def all(self) -> list[PhoneCall]:
        return list(self._calls.values())

    def _evict_finished(self) -> None:
        finished = sorted(
            (c for c in self._calls.values() if c.status.is_terminal),
            key=lambda c: c.updated_at,
        )
        for call in finished[: max(1, len(finished) // 2)]:
            self._calls.pop(call.call_id, None)

    def __len__(self) -> int:
        return len(self._calls)


def generate_stream_xml(
    websocket_url: str,
    *,
    bidirectional: bool = True,
    audio_track: str = "inbound",
    content_type: str = STREAM_CONTENT_TYPE,
    stream_timeout: int = STREAM_TIMEOUT_SECONDS,
) -> str:
    """Plivo XML that streams call audio to ``websocket_url``."""
    response = Element("Response")

    stream = SubElement(response, "Stream")
    stream.set("bidirectional", str(bidirectional).lower())
    stream.set("keepCallAlive", "true")
    stream.set("audioTrack", audio_track)
    stream.set("contentType", content_type)
    stream.set("streamTimeout", str(stream_timeout))
    stream.text = websocket_url

    xml_str = tostring(response, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>{xml_str}'


def generate_hangup_xml(reason: str = "") -> str:
    """Plivo XML that optionally speaks ``reason`` and hangs up."""
    response = Element("Response")

    if reason:
        speak = SubElement(response, "Speak")
        speak.set("voice", "WOMAN")
        speak.set("language", "en-US")
        speak.text = reason

    SubElement(response, "Hangup")

    xml_str = tostring(response, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>{xml_str}'


class PlivoCallControl:
    """Places and ends outbound practice calls."""

    def __init__(self, settings: Settings | None = None, *, client: plivo.RestClient | None = None) -> None:
        self._settings = settings or get_settings()
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or self._settings.telephony_configured

    @property
    def client(self) -> plivo.RestClient:
        """Lazy-initialize Plivo REST client."""
        if self._client is None:
            if not self._settings.telephony_configured:
                raise TelephonyNotConfigured("Plivo credentials and phone number are required")
            import plivo

            self._client = plivo.RestClient(
                auth_id=self._settings.plivo_auth_id,
                auth_token=self._settings.plivo_auth_token.get_secret_value(),
            )
        return self._client

    async def start_call(
        self,
        phone_number: str,
        answer_url: str,
        hangup_url: str | None = None,
        ring_url: str | None = None,
        *,
        call_id: str | None = None,
    ) -> PhoneCall:
        """Dial ``phone_number``; Plivo fetches ``answer_url`` when it picks up.

        Raises:
            TelephonyNotConfigured: Missing credentials or caller ID
            TelephonyError: Plivo rejected the request
        """
        params: dict[str, Any] = {
            "from_": self._settings.plivo_phone_number,
            "to_": phone_number,
            "answer_url": answer_url,
            "answer_method": "POST",
        }
        if hangup_url:
            params["hangup_url"] = hangup_url
            params["hangup_method"] = "POST"
        if ring_url:
            params["ring_url"] = ring_url
            params["ring_method"] = "POST"

        client = self.client
        try:
            response = await asyncio.to_thread(client.calls.create, **params)
        except Exception as e:
            logger.error(f"Failed to place call to {mask_phone(phone_number)}: {e}")
            raise TelephonyError(f"Could not start call: {e}") from e

        request_id = str(response.request_uuid)
        logger.info(f"Placed call to {mask_phone(phone_number)} (request {request_id})")
        return PhoneCall(
            call_id=call_id or request_id,
            request_id=request_id,
            phone_number=phone_number,
        )

    async def end_call(self, call: PhoneCall) -> None:
        """Hang up an answered call or cancel one that is still ringing.

        Raises:
            TelephonyError: Plivo rejected the request
        """
        client = self.client
        try:
            if call.call_uuid:
                await asyncio.to_thread(client.calls.delete, call.call_uuid)
            else:
                await asyncio.to_thread(client.calls.cancel, call.request_id)
        except Exception as e:
            logger.error(f"Failed to end call {call.call_id}: {e}")
            raise TelephonyError(f"Could not end call: {e}") from e
        logger.info(f"Ended call {call.call_id}")

    async def health_check(self) -> bool:
        """Check Plivo API connectivity."""
        if not self.configured:
            return False
        try:
            await asyncio.to_thread(self.client.account.get)
            return True
        except Exception as e:
            logger.warning(f"Plivo health check failed: {e}")
            return False
