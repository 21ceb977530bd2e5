"""Plivo bidirectional media stream: message parsing and persona playback.

Protocol (JSON over the stream websocket):
- Inbound: ``start`` (streamId, mediaFormat), ``media`` (base64 payload),
  ``playedStream`` (checkpoint reached), ``stop``
- Outbound: ``playAudio``, ``checkpoint``, ``clearAudio``
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from dataclasses import dataclass
from typing import Any

from src.logging_config import get_logger
from src.services.audio.codec import decode_to_pcm16
from src.services.audio.remote import AcknowledgedPlayer, SendJson
from src.services.tts.protocol import SynthesizedAudio

logger: Any = get_logger(__name__)

PLIVO_SAMPLE_RATE = 16000


@dataclass(frozen=True, slots=True)
class StreamStart:
    """Details from a Plivo ``start`` event."""

    stream_id: str
    call_uuid: str = ""
    encoding: str = "audio/x-l16"
    sample_rate: int = PLIVO_SAMPLE_RATE

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> StreamStart:
        start = message.get("start", {}) or {}
        media_format = start.get("mediaFormat", {}) or {}
        return cls(
            stream_id=str(start.get("streamId") or message.get("streamId") or ""),
            call_uuid=str(start.get("callId") or ""),
            encoding=str(media_format.get("encoding", "audio/x-l16")).lower(),
            sample_rate=int(media_format.get("sampleRate", PLIVO_SAMPLE_RATE)),
        )


def decode_media_payload(message: dict[str, Any]) -> bytes:
    """PCM bytes carried by a ``media`` event, empty if missing or corrupt."""
    payload = (message.get("media") or {}).get("payload", "")
    if not payload:
        return b""
    try:
        return base64.b64decode(payload)
    except (binascii.Error, ValueError):
        logger.warning("Failed to decode audio payload")
        return b""


class PlivoStreamPlayer(AcknowledgedPlayer):
    """Plays persona clips into a phone call.

    Each clip is decoded to 16 kHz PCM, sent with ``playAudio`` and followed
    by a named ``checkpoint``; Plivo reports ``playedStream`` with that name
    once the caller has heard it.
    """

    def __init__(
        self,
        send_json: SendJson,
        stream_id: str = "",
        *,
        padding_seconds: float = 2.0,
        sample_rate: int = PLIVO_SAMPLE_RATE,
    ) -> None:
        super().__init__(padding_seconds=padding_seconds, name="plivo")
        self._send_json = send_json
        self._stream_id = stream_id
        self._sample_rate = sample_rate

    @property
    def stream_id(self) -> str:
        return self._stream_id

    @stream_id.setter
    def stream_id(self, value: str) -> None:
        self._stream_id = value

    async def _deliver(self, clip_id: str, audio: SynthesizedAudio) -> None:
        pcm = await asyncio.to_thread(decode_to_pcm16, audio.audio_bytes, self._sample_rate)
        await self._send_json(
            {
                "event": "playAudio",
                "media": {
                    "contentType": "audio/x-l16",
                    "sampleRate": self._sample_rate,
                    "payload": base64.b64encode(pcm).decode("ascii"),
                },
            }
        )
        await self._send_json(
            {"event": "checkpoint", "streamId": self._stream_id, "name": clip_id}
        )

    async def _interrupt(self) -> None:
        await self._send_json({"event": "clearAudio", "streamId": self._stream_id})
