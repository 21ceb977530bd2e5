"""Persona prompts and practice scenarios."""

from src.prompts.persona import (
    DEFAULT_OPENING_LINE,
    DIFFICULTY_MODIFIERS,
    PERSONALITY_NAMES,
    PERSONALITY_TRAITS,
    SCENARIOS,
    build_persona_prompt,
    resolve_scenario,
)

__all__ = [
    "DEFAULT_OPENING_LINE",
    "DIFFICULTY_MODIFIERS",
    "PERSONALITY_NAMES",
    "PERSONALITY_TRAITS",
    "SCENARIOS",
    "build_persona_prompt",
    "resolve_scenario",
]
