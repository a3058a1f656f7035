"""Conductor CLI - background task and agent orchestration engine."""

import asyncio
import sys
from typing import Any

import typer
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from conductor import __version__
from conductor.application.orchestrator import Orchestrator
from conductor.domain.models import (
    BackgroundTask,
    OrchestratedAgent,
    SpawnRequest,
    SubAgentTask,
    TaskPriority,
    TaskResult,
    ToolDefinition,
)
from conductor.infrastructure.config import Config, ConfigManager
from conductor.infrastructure.event_sinks import RecordingEventSink
from conductor.infrastructure.logger import setup_logging
from conductor.services.goal_planner import GoalPlanner
from conductor.services.task_queue_service import TaskContext

# Initialize Typer app
app = typer.Typer(
    name="conductor",
    help="Background task queue, agent lifecycle and goal planning engine",
    no_args_is_help=True,
)

console = Console()


# ===== Helper Functions =====
def _load_config(verbose: bool = False) -> Config:
    """Load configuration and set up console logging."""
    config = ConfigManager().load_config()
    setup_logging(log_level=config.log_level if verbose else "WARNING", colors=False)
    return config


def _parse_tools(values: list[str]) -> list[ToolDefinition]:
    tools = []
    for value in values:
        name, sep, description = value.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Expected name=description, got '{value}'", param_hint="--tool")
        tools.append(ToolDefinition(name=name.strip(), description=description.strip()))
    return tools


# ===== Version =====
@app.command()
def version() -> None:
    """Show Conductor version."""
    console.print(f"[bold]Conductor[/bold] version [cyan]{__version__}[/cyan]")


# ===== Config Commands =====
config_app = typer.Typer(help="Configuration management", no_args_is_help=True)
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show() -> None:
    """Show the effective configuration."""
    config = _load_config()

    table = Table(title="Effective Configuration")
    table.add_column("Section", style="cyan")
    table.add_column("Key", style="green")
    table.add_column("Value", style="yellow")

    for section, values in config.model_dump(mode="json").items():
        if isinstance(values, dict):
            for key, value in values.items():
                table.add_row(section, key, str(value))
        else:
            table.add_row("", section, str(values))

    console.print(table)


# ===== Planning =====
@app.command()
def plan(
    goal: str = typer.Argument(..., help="Goal to decompose"),
    tool: list[str] = typer.Option([], "--tool", "-t", help="Available tool as name=description"),
    constraint: list[str] = typer.Option([], "--constraint", "-c", help="Constraint on the plan"),
) -> None:
    """Build a heuristic plan for a goal."""
    config = _load_config()
    tools = _parse_tools(tool)

    async def _plan() -> None:
        planner = GoalPlanner(config.planner, tools=tools)
        new_goal = await planner.create_goal(goal, constraints=constraint)
        result = await planner.generate_plan(new_goal)

        table = Table(title=f"Plan {result.id[:8]}")
        table.add_column("#", justify="right")
        table.add_column("Step", style="cyan")
        table.add_column("Tool", style="green")
        table.add_column("Depends on", style="dim")

        orders = {s.id: str(s.order) for s in result.steps}
        for step in result.steps:
            table.add_row(
                str(step.order),
                step.description,
                step.tool_name or "-",
                ", ".join(orders.get(d, d[:8]) for d in step.depends_on) or "-",
            )

        console.print(table)
        console.print(f"Estimated duration: [cyan]{result.estimated_duration_ms // 1000}s[/cyan]")
        console.print(f"Complexity: [cyan]{result.complexity}[/cyan]/10")
        if constraint:
            console.print(f"[dim]Constraints: {'; '.join(constraint)}[/dim]")

    asyncio.run(_plan())


# ===== Demo =====
@app.command()
def demo(
    tasks: int = typer.Option(3, min=0, help="Number of report tasks to enqueue"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show engine logs"),
) -> None:
    """Run a short in-memory scenario and print queue stats and the agent tree."""
    config = _load_config(verbose)

    async def _demo() -> None:
        events = RecordingEventSink()
        orchestrator = Orchestrator.build(config, events=events)

        async def send_report(task: BackgroundTask, ctx: TaskContext) -> TaskResult:
            await ctx.report_progress(50)
            await ctx.save_checkpoint(1, 2, {"rendered": True})
            return TaskResult.ok({"report": task.description})

        orchestrator.queue.register_handler("send-report", send_report)
        for i in range(tasks):
            priority = TaskPriority.HIGH if i == 0 else TaskPriority.NORMAL
            await orchestrator.queue.enqueue("send-report", f"Report #{i + 1}", priority=priority)

        await orchestrator.spawner.spawn(SpawnRequest(id="lead", initial_task="coordinate reports"))
        await orchestrator.factory.create_sub_agents(
            "lead",
            [SubAgentTask(task="collect metrics"), SubAgentTask(task="draft summary")],
        )

        for _ in range(tasks):
            await orchestrator.queue.process_queue()

        stats_table = Table(title="Task Queue")
        stats_table.add_column("Status", style="cyan")
        stats_table.add_column("Count", justify="right")
        for status, count in (await orchestrator.queue.get_stats()).items():
            stats_table.add_row(status, str(count))
        console.print(stats_table)

        agents = {a.id: a for a in await orchestrator.lifecycle.get_all_agents()}
        console.print(_agent_tree(agents, "lead"))
        console.print(f"[dim]{len(events.events)} events emitted[/dim]")

        await orchestrator.lifecycle.terminate("lead", "Demo finished")

    asyncio.run(_demo())


def _agent_tree(agents: dict[str, OrchestratedAgent], root_id: str) -> Tree:
    def label(agent: OrchestratedAgent) -> str:
        task = f" - {agent.current_task}" if agent.current_task else ""
        return f"[cyan]{agent.id}[/cyan] ({agent.persona.name}, {agent.status.value}){task}"

    def add(node: Any, agent: OrchestratedAgent) -> None:
        for child_id in agent.sub_agent_ids:
            child = agents.get(child_id)
            if child is not None:
                add(node.add(label(child)), child)

    root = agents[root_id]
    tree = Tree(label(root))
    add(tree, root)
    return tree


# ===== Main Entry Point =====
def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
