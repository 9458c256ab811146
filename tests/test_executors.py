from pathlib import Path

import pytest

from agent_workflow.core.compile.compile_plan import compile_plan_or_raise
from agent_workflow.core.engine.coordinator import ExecutionCoordinator
from agent_workflow.core.errors import ExecutionError
from agent_workflow.core.executors.registry import (
    LocalTaskRegistry,
    LocalToolRegistry,
    resolve_callable,
)
from agent_workflow.core.executors.simulated import SimulatedAgent, SimulatedTasks, SimulatedTools
from agent_workflow.core.io.load_plan import load_plan
from agent_workflow.core.model import TaskSpec


EXAMPLES = Path(__file__).resolve().parents[1] / "examples"


def test_resolve_callable():
    import textwrap

    assert resolve_callable("textwrap:dedent") is textwrap.dedent
    assert resolve_callable("builtins:str.upper")("abc") == "ABC"


@pytest.mark.parametrize("path", ["textwrap", "textwrap:", ":dedent", "textwrap:nope", "textwrap:__doc__"])
def test_resolve_callable_rejects_bad_paths(path):
    with pytest.raises(ValueError):
        resolve_callable(path)


def test_resolve_callable_missing_module():
    with pytest.raises(ImportError):
        resolve_callable("no_such_module_xyz:run")


def test_tool_registry_calling_conventions():
    reg = LocalToolRegistry()
    reg.register("kw", lambda text, n=1: text * n)
    reg.register("none", lambda: "nothing")
    reg.register("pos", lambda items: ",".join(items))
    reg.register("obj", lambda **kw: {"keys": sorted(kw)})

    assert reg.execute_tool("kw", {"text": "ab", "n": 2}) == "abab"
    assert reg.execute_tool("none", None) == "nothing"
    assert reg.execute_tool("pos", ["a", "b"]) == "a,b"
    # non-string results are serialized as JSON
    assert reg.execute_tool("obj", {"b": 1, "a": 2}) == '{"keys": ["a", "b"]}'


def test_tool_registry_errors():
    reg = LocalToolRegistry({"bad": lambda: 1 / 0})
    with pytest.raises(ExecutionError) as exc:
        reg.execute_tool("missing", None)
    assert exc.value.code == "E_TOOL_EXECUTION"

    with pytest.raises(ExecutionError) as exc:
        reg.execute_tool("bad", None)
    assert exc.value.code == "E_TOOL_EXECUTION"
    assert "ZeroDivisionError" in exc.value.message


def test_tool_registry_from_import_paths():
    reg = LocalToolRegistry.from_import_paths({"echo": "textwrap:dedent"})
    assert reg.execute_tool("echo", {"text": "  hi"}) == "hi"


def test_task_registry_chains_previous_output():
    seen = []

    def first(params, previous):
        seen.append(previous)
        return f"{params}!"

    def second(params, previous):
        seen.append(previous)
        return previous + params

    reg = LocalTaskRegistry({"first": first, "second": second})
    out = reg.execute_tasks(
        [TaskSpec(task_to_use="first", task_parameters="go"), TaskSpec(task_to_use="second", task_parameters="?")]
    )
    assert out == "go!?"
    assert seen == [None, "go!"]


def test_task_registry_errors():
    reg = LocalTaskRegistry({"boom": lambda params, previous: int("x")})
    with pytest.raises(ExecutionError) as exc:
        reg.execute_tasks([])
    assert exc.value.code == "E_TASK_EXECUTION"

    with pytest.raises(ExecutionError) as exc:
        reg.execute_tasks([TaskSpec(task_to_use="nope")])
    assert "unknown task 'nope'" in exc.value.message

    with pytest.raises(ExecutionError) as exc:
        reg.execute_tasks([TaskSpec(task_to_use="boom")])
    assert exc.value.message.startswith("tasks[0]: task 'boom' raised ValueError")


def test_simulated_executors_answer_expected_outcomes():
    compiled = compile_plan_or_raise(load_plan(str(EXAMPLES / "branching-plan.yaml")))
    agent = SimulatedAgent(compiled.graph)
    tools = SimulatedTools(compiled.graph)

    assert agent.execute_task("Research the topic in the user query", "web-search") == "findings: approved"
    assert agent.calls == [("Research the topic in the user query", "web-search")]
    assert tools.execute_tool("publish", None) == "published"

    with pytest.raises(ExecutionError) as exc:
        agent.execute_task("something else", "")
    assert exc.value.code == "E_REMOTE_AGENT_ERROR"
    with pytest.raises(ExecutionError):
        tools.execute_tool("unknown", None)


def test_simulated_tasks_keyed_by_task_names():
    compiled = compile_plan_or_raise(load_plan(str(EXAMPLES / "demo-plan.yaml")))
    tasks = SimulatedTasks(compiled.graph)
    assert tasks.execute_tasks([TaskSpec(task_to_use="format")]) == "report ready"
    with pytest.raises(ExecutionError) as exc:
        tasks.execute_tasks([TaskSpec(task_to_use="other")])
    assert exc.value.code == "E_TASK_EXECUTION"


def test_simulated_run_of_branching_plan():
    compiled = compile_plan_or_raise(load_plan(str(EXAMPLES / "branching-plan.yaml")))
    c = ExecutionCoordinator(
        compiled,
        agents=SimulatedAgent(compiled.graph),
        tools=SimulatedTools(compiled.graph),
        tasks=SimulatedTasks(compiled.graph),
        workers=2,
        poll_interval_s=0.01,
    )
    result = c.start("summarize the topic")
    assert result.success
    assert set(result.activities_outcome) == {"research", "stats", "review", "publish"}
    assert result.skipped == ["reject"]
    assert result.output == "stats: 3 sources\n\npublished"


def test_registry_run_of_demo_plan():
    compiled = compile_plan_or_raise(load_plan(str(EXAMPLES / "demo-plan.yaml")))
    tools = LocalToolRegistry.from_import_paths({"echo": "textwrap:dedent"})
    tasks = LocalTaskRegistry.from_import_paths({"format": "builtins:str.format"})
    c = ExecutionCoordinator(
        compiled,
        agents=SimulatedAgent(compiled.graph),
        tools=tools,
        tasks=tasks,
        poll_interval_s=0.01,
    )
    result = c.start("hi")
    assert result.activities_outcome == {"A": "hello", "B": "report ready"}
    assert result.output == "report ready"


def test_simulated_run_answers_activities_without_tool_or_tasks():
    compiled = compile_plan_or_raise(
        {
            "plan_name": "bare",
            "activities": [
                {
                    "id": "T",
                    "activity_type": "direct_tool_use",
                    "description": "",
                    "type": "tool",
                    "expected_outcome": "tool answer",
                },
                {
                    "id": "K",
                    "activity_type": "direct_task_execution",
                    "description": "",
                    "type": "task",
                    "expected_outcome": "task answer",
                    "dependencies": [{"source": "T"}],
                },
            ],
        }
    )
    c = ExecutionCoordinator(
        compiled,
        agents=SimulatedAgent(compiled.graph),
        tools=SimulatedTools(compiled.graph),
        tasks=SimulatedTasks(compiled.graph),
        poll_interval_s=0.01,
    )
    result = c.start("q")
    assert result.activities_outcome == {"T": "tool answer", "K": "task answer"}
