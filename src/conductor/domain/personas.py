"""Persona override merging.

Precedence when an override is applied to a resolved persona:

=================  ==========================================
Field              Rule
=================  ==========================================
id                 always the base persona's id
name, type,        replaced when the override sets them
description,
system_prompt,
tone
llm_settings       shallow merge, override keys win
capabilities       base list followed by override list
constraints        base list followed by override list
=================  ==========================================

The result is always a new persona; neither input is modified.
"""

from conductor.domain.models import AgentPersona, ModelSettings, PersonaOverride

_SCALAR_FIELDS = ("name", "type", "description", "system_prompt", "tone")


def apply_persona_override(base: AgentPersona, override: PersonaOverride | None) -> AgentPersona:
    """Return a copy of ``base`` with ``override`` applied.

    Args:
        base: Persona resolved from the registry
        override: Caller changes; None returns a plain copy

    Returns:
        Derived persona that keeps ``base.id``
    """
    if override is None:
        return base.model_copy(deep=True)

    updates = {
        field: getattr(override, field)
        for field in _SCALAR_FIELDS
        if getattr(override, field) is not None
    }

    settings = base.llm_settings.model_dump()
    settings.update(override.llm_settings or {})
    updates["llm_settings"] = ModelSettings(**settings)

    updates["capabilities"] = [*base.capabilities, *(override.capabilities or [])]
    updates["constraints"] = [*base.constraints, *(override.constraints or [])]

    merged = base.model_dump()
    merged.update(updates)
    merged["id"] = base.id
    return AgentPersona(**merged)
