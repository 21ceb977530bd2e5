"""Persona responder services (Groq)."""

from src.services.llm.exceptions import (
    GenerationAuthenticationError,
    GenerationConnectionError,
    GenerationError,
    GenerationRateLimitError,
    GenerationTimeout,
)
from src.services.llm.groq import GroqPersonaResponder, clean_reply
from src.services.llm.protocol import Message, PersonaContext, PersonaResponder, Role

__all__ = [
    # Protocol and types
    "PersonaResponder",
    "PersonaContext",
    "Message",
    "Role",
    # Implementation
    "GroqPersonaResponder",
    "clean_reply",
    # Exceptions
    "GenerationError",
    "GenerationTimeout",
    "GenerationRateLimitError",
    "GenerationConnectionError",
    "GenerationAuthenticationError",
]
