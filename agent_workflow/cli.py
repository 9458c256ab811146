from __future__ import annotations

import json
from collections import Counter
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from agent_workflow.core.compile.compile_plan import (
    compile_plan,
    entry_nodes,
    summarize_plan,
    terminal_node_ids,
)
from agent_workflow.core.engine.coordinator import ExecutionCoordinator
from agent_workflow.core.errors import PlanLoadError, WorkflowError
from agent_workflow.core.executors.llm_agent import LLMAgentInteraction
from agent_workflow.core.executors.registry import LocalTaskRegistry, LocalToolRegistry
from agent_workflow.core.executors.simulated import SimulatedAgent, SimulatedTasks, SimulatedTools
from agent_workflow.core.io.load_plan import load_plan
from agent_workflow.core.logging_setup import configure_logging
from agent_workflow.core.model import CompiledPlan, ExecutionResult
from agent_workflow.core.settings import SettingsError, load_settings

app = typer.Typer(add_completion=False, no_args_is_help=True)


@app.callback()
def _callback() -> None:
    """Agent workflow CLI."""
    return


def _to_item(e: WorkflowError) -> dict[str, Any]:
    source = "load" if isinstance(e, PlanLoadError) else "compile"
    return {
        "code": e.code,
        "message": e.message,
        "file": e.file,
        "path": e.path,
        "severity": "error",
        "source": source,
    }


def _check_format(format: str, command: str) -> None:
    if format not in ("text", "json"):
        err = WorkflowError(
            code=f"E_{command.upper()}_UNKNOWN_FORMAT",
            message=f"unknown format: {format} (choose one of: text, json)",
            path="format",
        )
        _print_errors([err])
        raise typer.Exit(code=2)


def _compile(path: str, format: str, command: str) -> CompiledPlan:
    """Load and compile, or emit errors and exit (1 load, 2 compile)."""

    def _fail(errors: list[WorkflowError], exit_code: int) -> None:
        if format == "json":
            payload = {
                "tool": "workflow",
                "command": command,
                "ok": False,
                "error_count": len(errors),
                "errors": [_to_item(e) for e in errors],
            }
            typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        else:
            _print_errors(errors)
        raise typer.Exit(code=exit_code)

    try:
        plan = load_plan(path)
    except PlanLoadError as e:
        _fail([e], 1)

    compiled, errors = compile_plan(plan)
    if errors:
        _fail(list(errors), 2)
    assert compiled is not None
    return compiled


@app.command("validate")
def validate(
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Load and compile a plan without running it."""
    _check_format(format, "validate")
    compiled = _compile(path, format, "validate")

    if format == "text":
        typer.echo(summarize_plan(compiled))
        return

    counts = Counter(n.activity.activity_type for n in compiled.graph.nodes.values())
    summary = {
        "plan_name": compiled.graph.plan_name,
        "activity_count": len(compiled.graph.nodes),
        "edge_count": len(compiled.graph.edges),
        "type_counts": {k: int(v) for k, v in sorted(counts.items())},
        "order": list(compiled.order),
        "entry": entry_nodes(compiled),
        "terminal": terminal_node_ids(compiled),
    }
    payload = {
        "tool": "workflow",
        "command": "validate",
        "ok": True,
        "error_count": 0,
        "errors": [],
        "summary": summary,
    }
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


@app.command("run")
def run(
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    query: str = typer.Option(..., "--query", "-q", help="User query the plan answers"),
    simulate: bool = typer.Option(
        False, "--simulate", help="Answer every activity with its expected_outcome"
    ),
    workers: Optional[int] = typer.Option(
        None, "--workers", min=1, help="Max concurrent activities (default from config)"
    ),
    config: Optional[str] = typer.Option(None, "--config", help="Engine settings YAML"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Compile and execute a plan."""
    _check_format(format, "run")

    try:
        settings = load_settings(config)
    except SettingsError as e:
        typer.echo(f"config error: {e}", err=True)
        raise typer.Exit(code=2)
    configure_logging(settings.log_level, settings.log_format)  # type: ignore[arg-type]

    compiled = _compile(path, format, "run")

    if simulate:
        agents: Any = SimulatedAgent(compiled.graph)
        tools: Any = SimulatedTools(compiled.graph)
        tasks: Any = SimulatedTasks(compiled.graph)
    else:
        try:
            tools = LocalToolRegistry.from_import_paths(settings.tools)
            tasks = LocalTaskRegistry.from_import_paths(settings.tasks)
        except (ValueError, ImportError) as e:
            typer.echo(f"config error: {e}", err=True)
            raise typer.Exit(code=2)
        agents = LLMAgentInteraction(settings.default_model)

    coordinator = ExecutionCoordinator(
        compiled,
        agents=agents,
        tools=tools,
        tasks=tasks,
        workers=workers or settings.workers,
        poll_interval_s=settings.poll_interval_s,
    )
    result = coordinator.start(query)
    exit_code = 0 if result.success else 3

    if format == "json":
        payload = {
            "tool": "workflow",
            "command": "run",
            "ok": result.success,
            "result": result.to_dict(),
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        raise typer.Exit(code=exit_code)

    _print_run_table(compiled, result)
    if result.success:
        typer.echo(result.output)
        return

    ctx = coordinator.context
    if ctx is not None and ctx.error is not None:
        _print_errors([ctx.error])
    else:
        typer.echo(f"run failed: {result.output}", err=True)
    raise typer.Exit(code=exit_code)


def _print_run_table(compiled: CompiledPlan, result: ExecutionResult) -> None:
    table = Table(title=f"{result.plan_name}: {result.state}")
    table.add_column("activity")
    table.add_column("type")
    table.add_column("status")

    skipped = set(result.skipped)
    for nid in compiled.order:
        activity = compiled.graph.nodes[nid].activity
        if nid in result.activities_outcome:
            status = "done"
        elif nid in skipped:
            status = "skipped"
        else:
            status = "pending"
        table.add_row(nid, activity.activity_type, status)
    Console().print(table)


def _print_errors(errors: list[WorkflowError]) -> None:
    errors_sorted = sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))
    for e in errors_sorted:
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name="workflow")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
