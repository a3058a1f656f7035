"""Plan validation before execution.

Checks structure, individual steps, dependencies, tool references and
alignment with the goal. Error-level issues make a plan invalid; warnings
and info entries are advisory.
"""

from datetime import timedelta, timezone
from enum import Enum

from pydantic import BaseModel, Field

from conductor.domain.models import Goal, Plan, PlanStep, ToolDefinition, utcnow
from conductor.infrastructure.exceptions import PlanValidationError


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationIssue(BaseModel):
    severity: IssueSeverity
    code: str
    message: str
    step_id: str | None = None
    suggestion: str | None = None


class PlanStats(BaseModel):
    step_count: int
    tool_steps: int
    max_depth: int
    estimated_duration_ms: int


class ValidationResult(BaseModel):
    valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    stats: PlanStats

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.ERROR]

    def codes(self) -> list[str]:
        return [i.code for i in self.issues]


class PlanValidator:
    """Validates plans for correctness and feasibility."""

    def __init__(
        self,
        tools: list[ToolDefinition] | None = None,
        max_steps: int = 20,
        max_dependency_depth: int = 10,
        min_step_description_length: int = 10,
    ):
        self.tools: dict[str, ToolDefinition] = {t.name: t for t in tools or []}
        self.max_steps = max_steps
        self.max_dependency_depth = max_dependency_depth
        self.min_step_description_length = min_step_description_length

    def set_available_tools(self, tools: list[ToolDefinition]) -> None:
        self.tools = {t.name: t for t in tools}

    def validate(self, plan: Plan, goal: Goal | None = None) -> ValidationResult:
        """Validate a plan, optionally against the goal it serves."""
        issues: list[ValidationIssue] = []

        self._validate_structure(plan, issues)
        for step in plan.steps:
            self._validate_step(step, issues)
        self._validate_dependencies(plan, issues)
        self._validate_tools(plan, issues)
        if goal is not None:
            self._validate_goal_alignment(plan, goal, issues)

        return ValidationResult(
            valid=not any(i.severity == IssueSeverity.ERROR for i in issues),
            issues=issues,
            stats=PlanStats(
                step_count=len(plan.steps),
                tool_steps=sum(1 for s in plan.steps if s.tool_name),
                max_depth=self.max_dependency_depth_of(plan),
                estimated_duration_ms=plan.estimated_duration_ms,
            ),
        )

    def validate_or_raise(self, plan: Plan, goal: Goal | None = None) -> ValidationResult:
        """Validate and raise PlanValidationError if the plan is invalid."""
        result = self.validate(plan, goal)
        if not result.valid:
            raise PlanValidationError(plan.id, result.errors)
        return result

    def _validate_structure(self, plan: Plan, issues: list[ValidationIssue]) -> None:
        if not plan.steps:
            issues.append(
                ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    code="EMPTY_PLAN",
                    message="Plan has no steps",
                    suggestion="Add at least one step to the plan",
                )
            )
            return

        if len(plan.steps) > self.max_steps:
            issues.append(
                ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    code="TOO_MANY_STEPS",
                    message=f"Plan has {len(plan.steps)} steps, maximum is {self.max_steps}",
                    suggestion="Break the plan into smaller sub-plans or reduce steps",
                )
            )

        seen: set[str] = set()
        for step in plan.steps:
            if step.id in seen:
                issues.append(
                    ValidationIssue(
                        severity=IssueSeverity.ERROR,
                        code="DUPLICATE_STEP_ID",
                        message=f"Duplicate step ID: {step.id}",
                        step_id=step.id,
                    )
                )
            seen.add(step.id)

        orders = sorted(s.order for s in plan.steps)
        if orders != list(range(len(orders))):
            issues.append(
                ValidationIssue(
                    severity=IssueSeverity.WARNING,
                    code="NON_SEQUENTIAL_ORDER",
                    message="Step orders are not sequential",
                    suggestion="Consider renumbering steps to be sequential",
                )
            )

    def _validate_step(self, step: PlanStep, issues: list[ValidationIssue]) -> None:
        if len(step.description.strip()) < self.min_step_description_length:
            issues.append(
                ValidationIssue(
                    severity=IssueSeverity.WARNING,
                    code="SHORT_DESCRIPTION",
                    message=f"Step {step.id} has a short or missing description",
                    step_id=step.id,
                    suggestion=(
                        f"Add a description of at least "
                        f"{self.min_step_description_length} characters"
                    ),
                )
            )

        tool = self.tools.get(step.tool_name) if step.tool_name else None
        if tool is not None and tool.parameters and step.tool_arguments is not None:
            self._validate_tool_arguments(step, tool, issues)

    def _validate_tool_arguments(
        self, step: PlanStep, tool: ToolDefinition, issues: list[ValidationIssue]
    ) -> None:
        params = tool.parameters or {}
        arguments = step.tool_arguments or {}

        for required in params.get("required", []):
            if required not in arguments:
                issues.append(
                    ValidationIssue(
                        severity=IssueSeverity.WARNING,
                        code="MISSING_REQUIRED_ARG",
                        message=f"Step {step.id} missing required argument: {required}",
                        step_id=step.id,
                        suggestion=f"Add the {required} argument",
                    )
                )

        properties = params.get("properties")
        if properties:
            for name in arguments:
                if name not in properties:
                    issues.append(
                        ValidationIssue(
                            severity=IssueSeverity.INFO,
                            code="UNKNOWN_ARG",
                            message=f"Step {step.id} has unknown argument: {name}",
                            step_id=step.id,
                        )
                    )

    def _validate_dependencies(self, plan: Plan, issues: list[ValidationIssue]) -> None:
        orders = {s.id: s.order for s in plan.steps}

        for step in plan.steps:
            for dep_id in step.depends_on:
                if dep_id not in orders:
                    issues.append(
                        ValidationIssue(
                            severity=IssueSeverity.ERROR,
                            code="MISSING_DEPENDENCY",
                            message=f"Step {step.id} depends on non-existent step {dep_id}",
                            step_id=step.id,
                        )
                    )
                elif orders[dep_id] >= step.order:
                    issues.append(
                        ValidationIssue(
                            severity=IssueSeverity.ERROR,
                            code="FORWARD_DEPENDENCY",
                            message=f"Step {step.id} depends on step {dep_id} which comes later",
                            step_id=step.id,
                            suggestion="Reorder steps so dependencies come first",
                        )
                    )

        cycle = self.find_cycle(plan)
        if cycle:
            issues.append(
                ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    code="CIRCULAR_DEPENDENCY",
                    message=f"Circular dependency detected involving steps: {' -> '.join(cycle)}",
                )
            )

        depth = self.max_dependency_depth_of(plan)
        if depth > self.max_dependency_depth:
            issues.append(
                ValidationIssue(
                    severity=IssueSeverity.WARNING,
                    code="DEEP_DEPENDENCY_CHAIN",
                    message=(
                        f"Dependency chain depth ({depth}) exceeds recommended "
                        f"maximum ({self.max_dependency_depth})"
                    ),
                    suggestion="Consider flattening the dependency structure",
                )
            )

    def _validate_tools(self, plan: Plan, issues: list[ValidationIssue]) -> None:
        for step in plan.steps:
            if step.tool_name and step.tool_name not in self.tools:
                issues.append(
                    ValidationIssue(
                        severity=IssueSeverity.WARNING,
                        code="UNKNOWN_TOOL",
                        message=f"Step {step.id} uses unknown tool: {step.tool_name}",
                        step_id=step.id,
                        suggestion="Verify the tool name is correct or register the tool",
                    )
                )

    def _validate_goal_alignment(self, plan: Plan, goal: Goal, issues: list[ValidationIssue]) -> None:
        goal_words = goal.description.lower().split()
        plan_words = " ".join(s.description.lower() for s in plan.steps).split()

        common = [w for w in goal_words if len(w) > 3 and any(w in pw for pw in plan_words)]
        if not common and len(goal_words) > 2:
            issues.append(
                ValidationIssue(
                    severity=IssueSeverity.WARNING,
                    code="GOAL_ALIGNMENT",
                    message="Plan steps may not align well with the goal description",
                    suggestion="Review steps to ensure they address the goal",
                )
            )

        if goal.deadline and plan.estimated_duration_ms:
            deadline = goal.deadline
            if deadline.tzinfo is None:
                deadline = deadline.replace(tzinfo=timezone.utc)
            finish = utcnow() + timedelta(milliseconds=plan.estimated_duration_ms)
            if finish > deadline:
                issues.append(
                    ValidationIssue(
                        severity=IssueSeverity.WARNING,
                        code="DEADLINE_RISK",
                        message=(
                            f"Estimated duration ({round(plan.estimated_duration_ms / 60000)}min) "
                            f"may exceed deadline"
                        ),
                        suggestion="Consider optimizing the plan or adjusting expectations",
                    )
                )

    def find_cycle(self, plan: Plan) -> list[str] | None:
        """Return one dependency cycle as a path of step ids, if any."""
        deps = {s.id: s.depends_on for s in plan.steps}
        visited: set[str] = set()
        on_stack: set[str] = set()
        path: list[str] = []

        def dfs(step_id: str) -> bool:
            visited.add(step_id)
            on_stack.add(step_id)
            path.append(step_id)
            for dep_id in deps.get(step_id, []):
                if dep_id not in visited:
                    if dfs(dep_id):
                        return True
                elif dep_id in on_stack:
                    path.append(dep_id)
                    return True
            path.pop()
            on_stack.discard(step_id)
            return False

        for step in plan.steps:
            if step.id not in visited and dfs(step.id):
                return path
        return None

    def max_dependency_depth_of(self, plan: Plan) -> int:
        """Longest dependency chain length; steps on a cycle count once."""
        deps = {s.id: s.depends_on for s in plan.steps}
        depths: dict[str, int] = {}
        in_progress: set[str] = set()

        def depth(step_id: str) -> int:
            if step_id in depths:
                return depths[step_id]
            if step_id in in_progress or step_id not in deps:
                return 0
            in_progress.add(step_id)
            children = deps[step_id]
            result = 1 + max(depth(d) for d in children) if children else 0
            in_progress.discard(step_id)
            depths[step_id] = result
            return result

        return max((depth(s.id) for s in plan.steps), default=0)
