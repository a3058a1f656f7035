"""Abstract language model used for plan generation."""

from abc import ABC, abstractmethod


class PlanningLLM(ABC):
    """Language model collaborator for the goal planner.

    The raw text returned is untrusted; the planner parses and validates it.
    """

    @abstractmethod
    async def generate_plan(self, prompt: str) -> str:
        """Return the raw model response for a planning prompt."""
