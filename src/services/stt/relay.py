"""Transcription channel speaking the relay JSON protocol.

Wire format:
- outbound: one ``start`` control message, binary PCM16 frames, ``stop``
- inbound: ``transcript``, ``speech_started``, ``speech_ended`` and ``error``
  JSON messages

Any recognizer fronted by a relay that speaks this protocol (including an
on-device recognizer exposed over a local socket) can be selected with
``stt_provider=relay`` without touching the call flow.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from src.core.events import (
    BoundaryKind,
    ChannelEvent,
    ChannelSink,
    ClosedEvent,
    ErrorEvent,
    SpeechBoundaryEvent,
    TranscriptEvent,
)
from src.logging_config import get_logger
from src.services.stt.base import DEFAULT_PENDING_FRAMES, BaseTranscriptionChannel
from src.services.stt.exceptions import ChannelOpenError
from src.services.stt.protocol import ChannelConfig

logger: Any = get_logger(__name__)

CONNECT_TIMEOUT = 10.0

_SPEECH_ENDED_TYPES = {"speech_ended", "utterance_end"}


def parse_relay_message(raw: str | bytes) -> list[ChannelEvent]:
    """Decode one inbound relay message into channel events.

    Unknown message types and malformed JSON produce no events.
    """
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Relay sent a non-JSON text message")
        return []
    if not isinstance(message, dict):
        return []

    message_type = message.get("type")
    if message_type == "transcript":
        return [
            TranscriptEvent(
                text=str(message.get("text") or ""),
                is_final=bool(message.get("is_final", False)),
                confidence=float(message.get("confidence") or 0.0),
            )
        ]
    if message_type == "speech_started":
        return [SpeechBoundaryEvent(BoundaryKind.STARTED)]
    if message_type in _SPEECH_ENDED_TYPES:
        return [SpeechBoundaryEvent(BoundaryKind.ENDED)]
    if message_type == "error":
        return [ErrorEvent(cause=f"relay: {message.get('error') or 'unknown error'}")]

    if message_type not in {"ready", "metadata"}:
        logger.debug(f"Ignoring relay message type: {message_type}")
    return []


class RelayChannel(BaseTranscriptionChannel):
    """Transcription channel over a websocket relay."""

    provider = "relay"

    def __init__(
        self,
        sink: ChannelSink,
        url: str,
        *,
        api_key: str | None = None,
        connect_timeout: float = CONNECT_TIMEOUT,
        max_pending_frames: int = DEFAULT_PENDING_FRAMES,
    ) -> None:
        super().__init__(sink, max_pending_frames=max_pending_frames)
        self._url = url
        self._api_key = api_key
        self._connect_timeout = connect_timeout
        self._ws: ClientConnection | None = None
        self._reader: asyncio.Task[None] | None = None

    async def _connect(self, config: ChannelConfig) -> None:
        headers = {"Authorization": f"Token {self._api_key}"} if self._api_key else None
        try:
            self._ws = await asyncio.wait_for(
                connect(self._url, additional_headers=headers, max_size=None),
                timeout=self._connect_timeout,
            )
            await self._ws.send(json.dumps(config.start_message()))
        except (OSError, TimeoutError, InvalidURI, InvalidHandshake, ConnectionClosed) as e:
            raise ChannelOpenError(f"Relay connection to {self._url} failed: {e}") from e

        self._reader = asyncio.create_task(self._read_loop(), name="relay-reader")

    async def _read_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            async for raw in ws:
                if isinstance(raw, bytes):
                    continue
                for event in parse_relay_message(raw):
                    self._emit(event)
        except ConnectionClosed as e:
            if not self._close_requested:
                self._emit(ErrorEvent(cause=f"relay connection lost: {e}", exception=e))
        finally:
            self._emit(ClosedEvent())

    async def _transmit(self, pcm: bytes) -> None:
        if self._ws is None:
            raise ConnectionError("relay socket not connected")
        await self._ws.send(pcm)

    async def _finish(self) -> None:
        if self._ws is not None:
            with contextlib.suppress(ConnectionClosed):
                await self._ws.send(json.dumps({"type": "stop"}))

    async def _disconnect(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            try:
                await asyncio.wait_for(reader, timeout=2.0)
            except TimeoutError:
                logger.warning("Relay reader did not stop after close")
