"""WebSocket handler for the Plivo bidirectional media stream.

A phone practice call binds the same controller the browser uses; only the
audio transport differs. The stream URL carries our call id, which links
it to the scenario chosen when the call was placed.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from src.api.websocket.browser_call import make_on_ended
from src.api.websocket.registry import CallCapacityError, CallRegistry
from src.core.controller import CallSessionController
from src.db.repositories.calls import CallLogRepository
from src.logging_config import get_logger
from src.prompts.persona import resolve_scenario
from src.services.audio.exceptions import CaptureError
from src.services.audio.remote import StreamedCapture
from src.services.factory import CallServices
from src.services.stt.exceptions import ChannelUnrecoverable
from src.services.telephony.plivo import PhoneCallTracker
from src.services.telephony.stream import PlivoStreamPlayer, StreamStart, decode_media_payload

logger: Any = get_logger(__name__)


async def plivo_stream_endpoint(websocket: WebSocket, call_id: str) -> None:
    """Handle one Plivo media stream.

    Protocol:
    - Receives JSON events: start, media, playedStream, stop
    - Sends JSON events: playAudio, checkpoint, clearAudio
    """
    await websocket.accept()
    logger.info(f"Media stream connected for call {call_id}")

    state = websocket.app.state
    services: CallServices = state.services
    registry: CallRegistry = state.registry
    call_logs: CallLogRepository = state.call_logs
    phone_calls: PhoneCallTracker = state.phone_calls

    send_lock = asyncio.Lock()

    async def send_json(message: dict[str, Any]) -> None:
        async with send_lock:
            await websocket.send_json(message)

    capture = StreamedCapture(name=f"plivo-{call_id[:8]}")
    player = PlivoStreamPlayer(send_json, padding_seconds=services.settings.playback_padding_seconds)
    controller: CallSessionController | None = None

    try:
        while True:
            try:
                data = json.loads(await websocket.receive_text())
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON received for call {call_id}")
                continue

            event = data.get("event", "")

            if event == "start":
                start = StreamStart.from_message(data)
                player.stream_id = start.stream_id
                logger.info(f"Stream started: {start.stream_id}, {start.encoding}@{start.sample_rate}Hz")
                if controller is not None:
                    continue

                phone_call = phone_calls.get(call_id)
                scenario = phone_call.scenario if phone_call and phone_call.scenario else resolve_scenario()
                session_id = str(uuid.uuid4())
                controller = services.create_controller(
                    capture,
                    player,
                    source="phone",
                    session_id=session_id,
                    on_ended=make_on_ended(registry, call_logs),
                )
                try:
                    await registry.add(session_id, controller, source="phone")
                except CallCapacityError as e:
                    logger.warning(f"Call {call_id} rejected: {e}")
                    controller = None
                    break

                if phone_call is not None:
                    phone_call.session_id = session_id
                try:
                    await controller.start(scenario)
                except (CaptureError, ChannelUnrecoverable) as e:
                    logger.error(f"Phone call {call_id} failed to start: {e}")
                    break

            elif event == "media":
                payload = decode_media_payload(data)
                if payload:
                    capture.push(payload)

            elif event == "playedStream":
                player.acknowledge(str(data.get("name", "")))

            elif event == "stop":
                logger.info(f"Stream stopped for call {call_id}")
                break

    except WebSocketDisconnect:
        logger.info(f"Media stream disconnected for call {call_id}")

    except Exception as e:
        logger.error(f"Media stream error for call {call_id}: {e}")

    finally:
        if controller is not None:
            await controller.end(reason="caller_hung_up")
        capture.stop()
        with contextlib.suppress(Exception):
            await websocket.close()
