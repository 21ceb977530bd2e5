"""Local speaker playback using sounddevice."""

from __future__ import annotations

import asyncio
from typing import Any

from src.logging_config import get_logger
from src.services.audio.codec import decode_to_pcm16, pcm16_to_array
from src.services.audio.exceptions import PlaybackError
from src.services.tts.protocol import SynthesizedAudio

logger: Any = get_logger(__name__)

PLAYBACK_SAMPLE_RATE = 24000


class SoundDevicePlayer:
    """Decodes persona clips and plays them on the default output device."""

    def __init__(self, sample_rate: int = PLAYBACK_SAMPLE_RATE, device: str | int | None = None) -> None:
        self._sample_rate = sample_rate
        self._device = device
        self._playing = False

    async def play(self, audio: SynthesizedAudio) -> None:
        import sounddevice as sd

        pcm = await asyncio.to_thread(decode_to_pcm16, audio.audio_bytes, self._sample_rate)
        samples = pcm16_to_array(pcm)

        try:
            sd.play(samples, samplerate=self._sample_rate, device=self._device)
            self._playing = True
            await asyncio.to_thread(sd.wait)
        except asyncio.CancelledError:
            sd.stop()
            raise
        except sd.PortAudioError as e:
            raise PlaybackError(f"Speaker playback failed: {e}") from e
        finally:
            self._playing = False

    async def stop(self) -> None:
        if not self._playing:
            return
        import sounddevice as sd

        sd.stop()
        self._playing = False
