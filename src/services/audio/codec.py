"""Decode synthesized audio for playback."""

from __future__ import annotations

from typing import Any

import miniaudio
import numpy as np

from src.logging_config import get_logger
from src.services.audio.exceptions import AudioDecodeError

logger: Any = get_logger(__name__)

_INFO_READERS = {
    "audio/mpeg": miniaudio.mp3_get_info,
    "audio/wav": miniaudio.wav_get_info,
    "audio/x-wav": miniaudio.wav_get_info,
    "audio/flac": miniaudio.flac_get_info,
    "audio/ogg": miniaudio.vorbis_get_info,
}


def decode_to_pcm16(data: bytes, sample_rate: int = 16000, channels: int = 1) -> bytes:
    """Decode mp3 (or wav/flac/ogg) bytes to PCM16 at the requested format.

    Raises:
        AudioDecodeError: Data is empty or not a supported encoding
    """
    if not data:
        raise AudioDecodeError("No audio data to decode")
    try:
        decoded = miniaudio.decode(
            data,
            output_format=miniaudio.SampleFormat.SIGNED16,
            nchannels=channels,
            sample_rate=sample_rate,
        )
    except miniaudio.DecodeError as e:
        raise AudioDecodeError(f"Audio decode failed: {e}") from e
    return decoded.samples.tobytes()


def pcm16_to_array(pcm: bytes, channels: int = 1) -> np.ndarray:
    """View PCM16 bytes as an int16 array shaped (frames, channels)."""
    samples = np.frombuffer(pcm, dtype=np.int16)
    return samples.reshape(-1, channels)


def audio_duration_seconds(data: bytes, mime_type: str = "audio/mpeg") -> float:
    """Estimated play length of an encoded clip, 0.0 when unknown."""
    if not data:
        return 0.0
    get_info = _INFO_READERS.get(mime_type)
    if get_info is None:
        return 0.0
    try:
        info = get_info(data)
    except miniaudio.DecodeError as e:
        logger.debug(f"Could not read audio info: {e}")
        return 0.0
    return float(info.duration)
