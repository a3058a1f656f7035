"""Service layer for Conductor."""

from conductor.services.goal_planner import GoalPlanner, ReplanFeedback, ReplanResult
from conductor.services.plan_parser import ParsedPlan, PlanParseFailure, parse_plan_response
from conductor.services.plan_validator import PlanValidator, ValidationIssue, ValidationResult
from conductor.services.task_queue_service import CancellationToken, TaskContext, TaskQueue

__all__ = [
    "CancellationToken",
    "GoalPlanner",
    "ParsedPlan",
    "PlanParseFailure",
    "PlanValidator",
    "ReplanFeedback",
    "ReplanResult",
    "TaskContext",
    "TaskQueue",
    "ValidationIssue",
    "ValidationResult",
    "parse_plan_response",
]
