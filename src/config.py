"""Application configuration using Pydantic Settings.

All configuration is loaded from environment variables.
See .env.example for required variables.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ==========================================================================
    # API Keys
    # ==========================================================================
    groq_api_key: SecretStr = Field(description="Groq API key for the persona responder")
    deepgram_api_key: SecretStr = Field(description="Deepgram API key for STT")
    elevenlabs_api_key: SecretStr | None = Field(
        default=None, description="ElevenLabs API key for the persona voice"
    )
    plivo_auth_id: str | None = Field(default=None, description="Plivo Auth ID")
    plivo_auth_token: SecretStr | None = Field(default=None, description="Plivo Auth Token")
    plivo_phone_number: str | None = Field(
        default=None, description="Caller ID used for outbound practice calls"
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Externally reachable base URL used in telephony webhooks",
    )
    max_concurrent_calls: int = Field(
        default=10, description="Maximum simultaneous practice calls"
    )

    # ==========================================================================
    # Speech-to-Text
    # ==========================================================================
    stt_provider: Literal["deepgram", "relay"] = Field(
        default="deepgram",
        description="Transcription channel implementation",
    )
    stt_relay_url: str | None = Field(
        default=None,
        description="Websocket URL of a transcription relay (stt_provider=relay)",
    )
    stt_model: str = Field(default="nova-2", description="Deepgram model")
    stt_language: str = Field(default="en-US", description="Recognition language")
    stt_endpointing_ms: int = Field(
        default=300, description="Silence (ms) that ends an utterance"
    )
    stt_utterance_end_ms: int = Field(
        default=1000, description="Word gap (ms) reported as utterance end"
    )

    # ==========================================================================
    # Audio
    # ==========================================================================
    capture_sample_rate: int = Field(default=16000, description="Capture sample rate (Hz)")
    capture_frame_ms: int = Field(default=20, description="Audio frame length (ms)")
    capture_device: str | None = Field(
        default=None, description="Input device name or index for local capture"
    )
    frame_queue_size: int = Field(
        default=50, description="Frames buffered before the oldest are dropped"
    )
    playback_padding_seconds: float = Field(
        default=2.0,
        description="Extra wait after estimated clip length for remote playback acks",
    )

    # ==========================================================================
    # Turn-taking
    # ==========================================================================
    min_utterance_chars: int = Field(
        default=3,
        description="Finals at or below this many characters are treated as noise",
    )
    responder_timeout_seconds: float = Field(
        default=10.0, description="Deadline for a persona reply"
    )
    synthesis_timeout_seconds: float = Field(
        default=10.0, description="Deadline for synthesizing a persona reply"
    )
    fallback_reply: str = Field(
        default="Could you say that again?",
        description="Reply used when the responder fails or times out",
    )
    transcript_window: int = Field(
        default=10, description="Utterances of history sent to the responder"
    )

    # ==========================================================================
    # Reconnection
    # ==========================================================================
    reconnect_base_delay_seconds: float = Field(default=1.0, description="First backoff delay")
    reconnect_max_delay_seconds: float = Field(default=8.0, description="Backoff cap")
    reconnect_max_attempts: int = Field(
        default=5, description="Reopen attempts before the channel is unrecoverable"
    )

    # ==========================================================================
    # Persona Responder
    # ==========================================================================
    groq_model: str = Field(
        default="llama-3.3-70b-versatile", description="Groq chat model"
    )
    responder_max_tokens: int = Field(default=80, description="Reply token limit")
    responder_temperature: float = Field(default=0.9, description="Reply sampling temperature")

    # ==========================================================================
    # TTS Configuration
    # ==========================================================================
    tts_provider: Literal["elevenlabs", "edge"] = Field(
        default="elevenlabs",
        description="Primary persona voice provider",
    )
    elevenlabs_voice_id: str = Field(
        default="pNInz6obpgDQGcFmaJgB",
        description="Default ElevenLabs voice ID",
    )
    elevenlabs_model_id: str = Field(
        default="eleven_turbo_v2_5",
        description="Default ElevenLabs model ID",
    )
    edge_tts_voice: str = Field(
        default="en-US-JennyNeural",
        description="Edge TTS voice name",
    )
    edge_tts_fallback_enabled: bool = Field(
        default=True,
        description="Use Edge TTS when the primary voice fails",
    )

    # ==========================================================================
    # Derived Properties
    # ==========================================================================
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def telephony_configured(self) -> bool:
        """Check whether outbound phone calls can be placed."""
        return bool(self.plivo_auth_id and self.plivo_auth_token and self.plivo_phone_number)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Use dependency injection in FastAPI:
        settings: Settings = Depends(get_settings)
    """
    return Settings()  # type: ignore[call-arg]  # loads from env
