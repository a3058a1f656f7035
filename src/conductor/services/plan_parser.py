"""Parsing of language model plan responses.

The model is asked for a JSON array of steps. Its answer is untrusted text:
``parse_plan_response`` either returns a ``ParsedPlan`` whose steps passed
schema validation, or a ``PlanParseFailure`` saying why not. It never raises.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)


class RawPlanStep(BaseModel):
    """One step as the model wrote it, before ids are assigned."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    description: str = Field(min_length=1)
    tool_name: str | None = Field(
        default=None, validation_alias=AliasChoices("toolName", "tool", "tool_name")
    )
    tool_arguments: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("toolArguments", "arguments", "tool_arguments")
    )
    depends_on: list[Any] = Field(
        default_factory=list, validation_alias=AliasChoices("dependsOn", "depends_on")
    )

    @field_validator("tool_name", mode="before")
    @classmethod
    def _blank_tool_is_none(cls, value: Any) -> Any:
        if not isinstance(value, str) or not value.strip():
            return None
        return value

    @field_validator("tool_arguments", mode="before")
    @classmethod
    def _non_object_arguments_are_none(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @field_validator("depends_on", mode="before")
    @classmethod
    def _coerce_depends_on(cls, value: Any) -> Any:
        """None means no dependencies; a lone scalar is a one-entry list."""
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value]

    def dependency_positions(self) -> list[int]:
        """Integer dependsOn entries; anything else is not a position."""
        return [d for d in self.depends_on if isinstance(d, int) and not isinstance(d, bool)]


@dataclass(frozen=True)
class ParsedPlan:
    steps: list[RawPlanStep]


@dataclass(frozen=True)
class PlanParseFailure:
    reason: str
    details: list[str] = field(default_factory=list)


def extract_json_array(text: str) -> str | None:
    """Locate the outermost JSON array in free text."""
    cleaned = _THINK_RE.sub("", text)
    fenced = _FENCE_RE.search(cleaned)
    if fenced:
        cleaned = fenced.group(1)

    start = cleaned.find("[")
    end = cleaned.rfind("]")
    if start == -1 or end <= start:
        return None
    return cleaned[start : end + 1]


def parse_plan_response(raw: str, max_chars: int = 20_000) -> ParsedPlan | PlanParseFailure:
    """Parse and validate a raw plan response.

    Args:
        raw: Text returned by the model
        max_chars: Responses longer than this are rejected unread

    Returns:
        ParsedPlan with at least one step, or PlanParseFailure
    """
    if not raw or not raw.strip():
        return PlanParseFailure("empty response")
    if len(raw) > max_chars:
        return PlanParseFailure(f"response exceeds {max_chars} characters")

    snippet = extract_json_array(raw)
    if snippet is None:
        return PlanParseFailure("no JSON array found")

    try:
        data = json.loads(snippet)
    except json.JSONDecodeError as e:
        return PlanParseFailure("invalid JSON", [str(e)])

    if not isinstance(data, list):
        return PlanParseFailure("response is not a JSON array")
    if not data:
        return PlanParseFailure("plan has no steps")

    steps: list[RawPlanStep] = []
    errors: list[str] = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            errors.append(f"step {index}: expected an object")
            continue
        try:
            steps.append(RawPlanStep.model_validate(item))
        except ValidationError as e:
            errors.extend(f"step {index}: {err['msg']}" for err in e.errors())

    if errors:
        return PlanParseFailure("invalid steps", errors)
    return ParsedPlan(steps)
