"""Persona responder protocol and data types."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from src.core.models import Scenario, Utterance


class Role(str, Enum):
    """Message role in conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class Message:
    """A single chat message sent to the backend."""

    role: Role
    content: str

    def to_api(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True, slots=True)
class PersonaContext:
    """Who the persona is for the duration of one call."""

    client_name: str
    client_type: str
    scenario: str = ""
    personality: str | None = None
    difficulty: str | None = None

    @classmethod
    def from_scenario(cls, scenario: Scenario) -> PersonaContext:
        return cls(
            client_name=scenario.client_name,
            client_type=scenario.client_type,
            scenario=scenario.description,
            personality=scenario.personality or None,
            difficulty=scenario.difficulty or None,
        )


class PersonaResponder(Protocol):
    """Produces the persona's reply to one finalized user utterance."""

    async def respond(
        self,
        utterance_text: str,
        transcript: Sequence[Utterance],
        persona: PersonaContext,
    ) -> str:
        """Generate a reply.

        Args:
            utterance_text: The user's finalized utterance
            transcript: Recent conversation, oldest first
            persona: Persona and difficulty descriptors

        Raises:
            GenerationTimeout: Backend too slow
            GenerationError: Any other backend failure
        """
        ...
