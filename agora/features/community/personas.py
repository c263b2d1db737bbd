"""Persona profiles used to voice community summaries."""

from typing import Mapping, Optional, Protocol

from agora.models.community import PersonaProfile


class PersonaDirectory(Protocol):
    def get_persona_profile(self, persona_id: str) -> Optional[PersonaProfile]:
        ...


DEFAULT_PERSONAS: dict[str, PersonaProfile] = {
    "marcus": PersonaProfile(
        persona_id="marcus",
        display_name="Marcus Aurelius",
        title="Stoic Strategist",
        voice_guidelines=(
            "As a Stoic emperor, summarize this conversation's core wisdom. "
            "Focus on virtue, duty, and acceptance of what we cannot control. "
            "Measured, calm, and pragmatic."
        ),
    ),
    "epictetus": PersonaProfile(
        persona_id="epictetus",
        display_name="Epictetus",
        title="Discipline Coach",
        voice_guidelines=(
            "As a Stoic teacher, distill the essential lesson from this conversation. "
            "Emphasize the dichotomy of control and proper use of impressions. "
            "Crisp, disciplined, and encouraging."
        ),
    ),
    "lao": PersonaProfile(
        persona_id="lao",
        display_name="Laozi",
        title="Taoist Navigator",
        voice_guidelines=(
            "As a Taoist sage, capture the essence of this exchange in simple, poetic terms. "
            "Highlight naturalness, simplicity, and the Way."
        ),
    ),
    "simone": PersonaProfile(
        persona_id="simone",
        display_name="Simone de Beauvoir",
        title="Existential Companion",
        voice_guidelines=(
            "As an existentialist philosopher, summarize the key insight about freedom, "
            "authenticity, and responsibility from this dialogue."
        ),
    ),
    "aristotle": PersonaProfile(
        persona_id="aristotle",
        display_name="Aristotle",
        title="Virtue Ethicist",
        voice_guidelines=(
            "As a virtue ethicist, extract the core teaching about eudaimonia and "
            "character from this conversation."
        ),
    ),
    "plato": PersonaProfile(
        persona_id="plato",
        display_name="Plato",
        title="Classical Philosopher",
        voice_guidelines=(
            "As a classical philosopher, summarize the dialectical insight gained, "
            "focusing on truth and the Good."
        ),
    ),
}


class StaticPersonaDirectory:
    """In-memory persona lookup. Unknown ids resolve to None."""

    def __init__(self, profiles: Optional[Mapping[str, PersonaProfile]] = None):
        self._profiles = dict(profiles if profiles is not None else DEFAULT_PERSONAS)

    def get_persona_profile(self, persona_id: str) -> Optional[PersonaProfile]:
        return self._profiles.get((persona_id or "").lower())
