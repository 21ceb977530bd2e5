"""WebSocket handler for practice calls from the browser.

Protocol:
- Client → server: ``start_call``, binary PCM16 frames (or ``audio`` with a
  base64 payload), ``playback_ended``, ``mic_error``, ``end_call``
- Server → client: ``call_started``, serialized session events,
  ``persona_audio``, ``stop_audio`` and ``error``
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import json
import uuid
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from src.api.websocket.registry import CallCapacityError, CallRegistry
from src.core.controller import CallSessionController
from src.core.events import CallEnded, EventSubscription, event_to_dict
from src.core.session import CallSession
from src.db.repositories.calls import CallLogRepository
from src.logging_config import get_logger
from src.prompts.persona import resolve_scenario
from src.services.audio.exceptions import CaptureError, PermissionDenied
from src.services.audio.remote import SendJson, StreamedCapture, WebSocketPlayer
from src.services.factory import CallServices
from src.services.stt.exceptions import ChannelUnrecoverable

logger: Any = get_logger(__name__)

FORWARDER_DRAIN_SECONDS = 2.0


async def forward_events(events: EventSubscription, send_json: SendJson) -> None:
    """Relay session events to the client until the call ends."""
    try:
        async for event in events:
            await send_json(event_to_dict(event))
            if isinstance(event, CallEnded) and event.error:
                await send_json({"type": "error", "error": event.error, "fatal": True})
    except Exception as e:
        logger.debug(f"Stopped forwarding events: {e}")
    finally:
        events.release()


def make_on_ended(registry: CallRegistry, call_logs: CallLogRepository):
    """Hook that archives a finished call and frees its registry slot."""

    async def on_ended(session: CallSession) -> None:
        await registry.remove(session.session_id)
        await call_logs.save(session)

    return on_ended


async def browser_call_endpoint(websocket: WebSocket) -> None:
    """Run one browser practice call over ``websocket``."""
    await websocket.accept()

    state = websocket.app.state
    services: CallServices = state.services
    registry: CallRegistry = state.registry
    call_logs: CallLogRepository = state.call_logs

    send_lock = asyncio.Lock()

    async def send_json(message: dict[str, Any]) -> None:
        async with send_lock:
            await websocket.send_json(message)

    capture = StreamedCapture(name="browser")
    player = WebSocketPlayer(send_json, padding_seconds=services.settings.playback_padding_seconds)
    controller: CallSessionController | None = None
    forwarder: asyncio.Task[None] | None = None

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            if message.get("bytes") is not None:
                capture.push(message["bytes"])
                continue

            try:
                data = json.loads(message.get("text") or "")
            except json.JSONDecodeError:
                logger.warning("Invalid JSON received on browser call socket")
                continue
            if not isinstance(data, dict):
                continue

            kind = data.get("type", "")

            if kind == "start_call":
                if controller is not None:
                    await send_json({"type": "error", "error": "Call already started", "fatal": False})
                    continue

                scenario = resolve_scenario(
                    data.get("scenario_id"),
                    personality=data.get("personality"),
                    difficulty=data.get("difficulty"),
                    client_name=data.get("client_name"),
                    client_type=data.get("client_type"),
                )
                session_id = str(uuid.uuid4())
                controller = services.create_controller(
                    capture,
                    player,
                    source="browser",
                    session_id=session_id,
                    on_ended=make_on_ended(registry, call_logs),
                )
                try:
                    await registry.add(session_id, controller, source="browser")
                except CallCapacityError as e:
                    controller = None
                    await send_json({"type": "error", "error": str(e), "fatal": True})
                    break

                events = controller.events()
                player.follow(events)
                forwarder = asyncio.create_task(
                    forward_events(events, send_json),
                    name=f"browser-events-{session_id[:8]}",
                )
                await send_json(
                    {"type": "call_started", "session_id": session_id, "scenario": scenario.to_dict()}
                )
                try:
                    await controller.start(scenario)
                except (CaptureError, ChannelUnrecoverable) as e:
                    # The forwarder reports the failure with the final call_ended
                    logger.warning(f"Browser call {session_id} failed to start: {e}")
                    break

            elif kind == "audio":
                try:
                    capture.push(base64.b64decode(data.get("audio", "")))
                except (binascii.Error, ValueError):
                    logger.warning("Failed to decode browser audio payload")

            elif kind == "playback_ended":
                player.acknowledge(str(data.get("id", "")))

            elif kind == "mic_error":
                reason = str(data.get("error") or "Microphone access denied")
                capture.deny(reason)
                if controller is not None and controller.is_active:
                    await controller.end(reason="capture_failed", error=PermissionDenied(reason))
                    break

            elif kind == "end_call":
                if controller is not None:
                    await controller.end(reason="user_ended")
                break

            else:
                logger.debug(f"Ignoring browser message type {kind!r}")

    except WebSocketDisconnect:
        logger.info("Browser call socket disconnected")

    except Exception as e:
        logger.error(f"Browser call socket error: {e}")

    finally:
        if controller is not None:
            await controller.end(reason="client_disconnected")
        if forwarder is not None:
            try:
                await asyncio.wait_for(forwarder, timeout=FORWARDER_DRAIN_SECONDS)
            except TimeoutError:
                forwarder.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await forwarder
        capture.stop()
        with contextlib.suppress(Exception):
            await websocket.close()
