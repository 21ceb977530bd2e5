"""Speech-to-Text transcription channels (Deepgram, relay)."""

from src.services.stt.base import BaseTranscriptionChannel
from src.services.stt.deepgram import DeepgramChannel, DeepgramEventMapper
from src.services.stt.exceptions import (
    ChannelOpenError,
    ChannelUnrecoverable,
    TranscriptionError,
)
from src.services.stt.protocol import ChannelConfig, ChannelFactory, TranscriptionChannel
from src.services.stt.relay import RelayChannel, parse_relay_message

__all__ = [
    # Protocol
    "TranscriptionChannel",
    "ChannelConfig",
    "ChannelFactory",
    # Implementations
    "BaseTranscriptionChannel",
    "DeepgramChannel",
    "DeepgramEventMapper",
    "RelayChannel",
    "parse_relay_message",
    # Exceptions
    "TranscriptionError",
    "ChannelOpenError",
    "ChannelUnrecoverable",
]
