"""Text-to-Speech services (ElevenLabs, Edge TTS).

- ElevenLabsSynthesizer: the persona's primary voice
- EdgeSynthesizer: keyless fallback voice (unofficial API)
"""

from src.services.tts.edge import EdgeSynthesizer
from src.services.tts.elevenlabs import ElevenLabsSynthesizer
from src.services.tts.exceptions import (
    SynthesisConfigurationError,
    SynthesisConnectionError,
    SynthesisError,
)
from src.services.tts.protocol import SpeechSynthesizer, SynthesizedAudio

__all__ = [
    # Services
    "ElevenLabsSynthesizer",
    "EdgeSynthesizer",
    # Protocol
    "SpeechSynthesizer",
    "SynthesizedAudio",
    # Exceptions
    "SynthesisError",
    "SynthesisConnectionError",
    "SynthesisConfigurationError",
]
