"""Dictionary-backed persona registry with one built-in persona per type."""

from conductor.domain.models import AgentPersona, ModelSettings, ModelTier, PersonaType
from conductor.domain.ports.persona_registry import PersonaRegistry


def default_personas() -> list[AgentPersona]:
    """Minimal persona per type so the engine runs without external content."""
    return [
        AgentPersona(
            id="developer-default",
            name="Developer",
            type=PersonaType.DEVELOPER,
            description="Writes, reviews and debugs code",
            capabilities=["coding", "code_review", "debugging"],
            llm_settings=ModelSettings(tier=ModelTier.BALANCED, temperature=0.2),
        ),
        AgentPersona(
            id="research-default",
            name="Researcher",
            type=PersonaType.RESEARCH,
            description="Gathers and summarizes information",
            capabilities=["search", "summarization"],
            llm_settings=ModelSettings(tier=ModelTier.POWERFUL, temperature=0.3),
        ),
        AgentPersona(
            id="marketing-default",
            name="Marketer",
            type=PersonaType.MARKETING,
            description="Drafts campaigns and copy",
            capabilities=["copywriting", "campaign_planning"],
        ),
        AgentPersona(
            id="business-default",
            name="Analyst",
            type=PersonaType.BUSINESS,
            description="Analyses business data and plans",
            capabilities=["analysis", "reporting"],
        ),
        AgentPersona(
            id="custom-default",
            name="Generalist",
            type=PersonaType.CUSTOM,
            description="General purpose assistant",
            llm_settings=ModelSettings(tier=ModelTier.FAST),
        ),
    ]


class InMemoryPersonaRegistry(PersonaRegistry):
    """Persona registry holding templates in memory.

    The first persona registered for a type is the one ``get_by_type``
    returns. Lookups hand out deep copies.
    """

    def __init__(self, personas: list[AgentPersona] | None = None) -> None:
        self._personas: dict[str, AgentPersona] = {}
        self._by_type: dict[PersonaType, str] = {}
        for persona in default_personas() if personas is None else personas:
            self.register(persona)

    def register(self, persona: AgentPersona) -> None:
        self._personas[persona.id] = persona.model_copy(deep=True)
        self._by_type.setdefault(persona.type, persona.id)

    def get(self, persona_id: str) -> AgentPersona | None:
        persona = self._personas.get(persona_id)
        return persona.model_copy(deep=True) if persona else None

    def get_by_type(self, persona_type: PersonaType) -> AgentPersona | None:
        persona_id = self._by_type.get(persona_type)
        return self.get(persona_id) if persona_id else None

    def list_personas(self) -> list[AgentPersona]:
        return [p.model_copy(deep=True) for p in self._personas.values()]
