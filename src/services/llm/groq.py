"""Groq persona responder."""

from __future__ import annotations

import re
import time
from collections.abc import Sequence
from typing import Any

import groq
from groq import AsyncGroq

from src.config import Settings, get_settings
from src.core.models import Speaker, Utterance
from src.logging_config import get_logger
from src.prompts.persona import build_persona_prompt
from src.services.llm.exceptions import (
    GenerationAuthenticationError,
    GenerationConnectionError,
    GenerationError,
    GenerationRateLimitError,
    GenerationTimeout,
)
from src.services.llm.protocol import Message, PersonaContext, Role

logger: Any = get_logger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_QUOTES = "\"'“”"


def clean_reply(text: str | None) -> str:
    """Collapse whitespace and strip quoting the model sometimes adds."""
    if not text:
        return ""
    reply = _WHITESPACE_RE.sub(" ", text).strip()
    if len(reply) >= 2 and reply[0] in _QUOTES and reply[-1] in _QUOTES:
        reply = reply[1:-1].strip()
    return reply


class GroqPersonaResponder:
    """Persona replies from Groq chat completions.

    One non-streaming completion per user turn; replies are short enough
    that streaming buys nothing once synthesis needs the full sentence.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
        *,
        client: AsyncGroq | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model = model or self._settings.groq_model
        self._client = client
        self._max_tokens = self._settings.responder_max_tokens
        self._temperature = self._settings.responder_temperature

    @property
    def client(self) -> AsyncGroq:
        """Lazy initialization of AsyncGroq client."""
        if self._client is None:
            self._client = AsyncGroq(
                api_key=self._settings.groq_api_key.get_secret_value(),
                timeout=self._settings.responder_timeout_seconds,
                max_retries=1,
            )
        return self._client

    async def respond(
        self,
        utterance_text: str,
        transcript: Sequence[Utterance],
        persona: PersonaContext,
    ) -> str:
        """Generate the persona's reply.

        Raises:
            GenerationTimeout: When the request times out
            GenerationRateLimitError: When rate limit exceeded
            GenerationConnectionError: When API unreachable
            GenerationAuthenticationError: When API key invalid
            GenerationError: For other API errors or an empty reply
        """
        messages = self.build_messages(utterance_text, transcript, persona)
        start = time.perf_counter()

        try:
            response = await self.client.chat.completions.create(  # type: ignore[call-overload]
                messages=[m.to_api() for m in messages],
                model=self._model,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )

        except groq.RateLimitError as e:
            logger.warning(f"Groq rate limit hit: {e}")
            raise GenerationRateLimitError(
                "Rate limit exceeded",
                retry_after=self._extract_retry_after(e),
            ) from e

        except groq.APITimeoutError as e:
            logger.warning("Groq request timed out")
            raise GenerationTimeout("Groq request timed out") from e

        except groq.APIConnectionError as e:
            logger.error(f"Groq connection error: {e.__cause__}")
            raise GenerationConnectionError("Failed to connect to Groq API") from e

        except groq.AuthenticationError as e:
            logger.error("Groq authentication failed")
            raise GenerationAuthenticationError("Invalid Groq API key") from e

        except groq.APIStatusError as e:
            logger.error(f"Groq API error: {e.status_code} - {e.message}")
            raise GenerationError(f"Groq API error: {e.status_code}") from e

        reply = clean_reply(response.choices[0].message.content if response.choices else None)
        if not reply:
            raise GenerationError("Empty reply from Groq")

        logger.debug(
            f"Persona reply in {(time.perf_counter() - start) * 1000:.0f}ms "
            f"({len(reply)} chars)"
        )
        return reply

    def build_messages(
        self,
        utterance_text: str,
        transcript: Sequence[Utterance],
        persona: PersonaContext,
    ) -> list[Message]:
        """System prompt, prior turns, then the utterance being answered.

        The coordinator appends the user's utterance before asking for a
        reply, so a trailing copy in the transcript is not repeated.
        """
        history = list(transcript)
        if (
            history
            and history[-1].speaker is Speaker.USER
            and history[-1].text.strip() == utterance_text.strip()
        ):
            history.pop()

        messages = [Message(Role.SYSTEM, build_persona_prompt(persona))]
        for utterance in history:
            role = Role.ASSISTANT if utterance.speaker is Speaker.PERSONA else Role.USER
            messages.append(Message(role, utterance.text))
        messages.append(Message(Role.USER, utterance_text))
        return messages

    def _extract_retry_after(self, error: groq.RateLimitError) -> float:
        """Extract retry-after from rate limit error."""
        if hasattr(error, "response") and error.response:
            retry_after = error.response.headers.get("retry-after")
            if retry_after:
                try:
                    return float(retry_after)
                except ValueError:
                    pass
        return 60.0

    async def health_check(self) -> bool:
        """Check if Groq API is reachable."""
        try:
            response = await self.client.chat.completions.create(
                messages=[{"role": "user", "content": "hi"}],
                model=self._model,
                max_tokens=1,
            )
            return bool(response.choices)
        except Exception as e:
            logger.warning(f"Groq health check failed: {e}")
            return False

    async def close(self) -> None:
        """Close the client connection."""
        if self._client:
            await self._client.close()
            self._client = None
