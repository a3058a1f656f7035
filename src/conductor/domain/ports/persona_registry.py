"""Abstract read-only persona registry."""

from abc import ABC, abstractmethod

from conductor.domain.models import AgentPersona, PersonaType


class PersonaRegistry(ABC):
    """Read-only source of persona templates.

    Callers must treat returned personas as templates: anything derived from
    them is a copy, never written back.
    """

    @abstractmethod
    def get(self, persona_id: str) -> AgentPersona | None:
        pass

    @abstractmethod
    def get_by_type(self, persona_type: PersonaType) -> AgentPersona | None:
        """Preferred persona for a type, None if the type has none."""
