"""Unit tests for plan response parsing."""

import json

import pytest
from conductor.services.plan_parser import (
    ParsedPlan,
    PlanParseFailure,
    RawPlanStep,
    extract_json_array,
    parse_plan_response,
)


def test_parses_plain_array() -> None:
    raw = json.dumps(
        [
            {"description": "Fetch the document", "toolName": "fetch", "toolArguments": {"url": "x"}},
            {"description": "Summarize the document", "dependsOn": [0]},
        ]
    )

    parsed = parse_plan_response(raw)

    assert isinstance(parsed, ParsedPlan)
    assert len(parsed.steps) == 2
    assert parsed.steps[0].tool_name == "fetch"
    assert parsed.steps[0].tool_arguments == {"url": "x"}
    assert parsed.steps[1].dependency_positions() == [0]


def test_parses_array_inside_prose_and_fences() -> None:
    raw = (
        "<think>let me plan</think>Here is the plan:\n```json\n"
        '[{"description": "Draft the outline", "tool": "write"}]\n```\nDone.'
    )

    parsed = parse_plan_response(raw)

    assert isinstance(parsed, ParsedPlan)
    assert parsed.steps[0].tool_name == "write"


@pytest.mark.parametrize(
    ("raw", "reason"),
    [
        ("", "empty response"),
        ("I cannot help with that.", "no JSON array found"),
        ("[not json]", "invalid JSON"),
        ("[]", "plan has no steps"),
        ('[{"toolName": "fetch"}]', "invalid steps"),
        ('[{"description": "   "}]', "invalid steps"),
        ('["just a string"]', "invalid steps"),
        ('[{"description": 42}]', "invalid steps"),
    ],
)
def test_failures(raw: str, reason: str) -> None:
    parsed = parse_plan_response(raw)

    assert isinstance(parsed, PlanParseFailure)
    assert parsed.reason == reason


def test_oversized_response_is_rejected() -> None:
    raw = json.dumps([{"description": "x" * 500}])

    parsed = parse_plan_response(raw, max_chars=100)

    assert isinstance(parsed, PlanParseFailure)
    assert "exceeds" in parsed.reason


def test_invalid_step_details_name_the_step() -> None:
    parsed = parse_plan_response('[{"description": "ok step"}, {"dependsOn": [0]}]')

    assert isinstance(parsed, PlanParseFailure)
    assert parsed.details and parsed.details[0].startswith("step 1:")


def test_raw_step_normalizes_optional_fields() -> None:
    step = RawPlanStep.model_validate(
        {"description": " Send mail ", "toolName": "", "dependsOn": None, "extra": 1}
    )

    assert step.description == "Send mail"
    assert step.tool_name is None
    assert step.depends_on == []


def test_dependency_positions_skip_non_integers() -> None:
    step = RawPlanStep(description="x", depends_on=[0, "1", True, 2.5, 3])

    assert step.dependency_positions() == [0, 3]


def test_extract_json_array_without_brackets() -> None:
    assert extract_json_array("no array here") is None


def test_lenient_field_shapes_keep_the_plan() -> None:
    raw = json.dumps(
        [
            {"description": "Collect data", "toolName": 7, "toolArguments": "x"},
            {"description": "Write report", "dependsOn": 0},
            {"description": "Publish", "dependsOn": "0", "arguments": ["a"]},
        ]
    )

    parsed = parse_plan_response(raw)

    assert isinstance(parsed, ParsedPlan)
    first, second, third = parsed.steps
    assert first.tool_name is None
    assert first.tool_arguments is None
    assert second.depends_on == [0]
    assert second.dependency_positions() == [0]
    assert third.depends_on == ["0"]
    assert third.dependency_positions() == []
    assert third.tool_arguments is None
