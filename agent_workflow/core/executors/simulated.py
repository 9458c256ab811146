from __future__ import annotations

from agent_workflow.core.errors import ExecutionError
from agent_workflow.core.model import Document, Graph, TaskSpec


# Dry-run capabilities: each answers with the expected_outcome the plan
# declares for the matching activity, so a plan's wiring can be exercised
# without agents, tools or tasks.


def _task_key(tasks: list[TaskSpec]) -> tuple[str, ...]:
    return tuple(t.task_to_use or "" for t in tasks)


class SimulatedAgent:
    def __init__(self, graph: Graph) -> None:
        self._outcomes: dict[str, str] = {}
        for node in graph.nodes.values():
            a = node.activity
            if a.activity_type == "delegation_agent":
                self._outcomes.setdefault(a.description, a.expected_outcome)
        self.calls: list[tuple[str, str]] = []

    def execute_task(self, task_description: str, skill_hint: str) -> str:
        self.calls.append((task_description, skill_hint))
        try:
            return self._outcomes[task_description]
        except KeyError:
            raise ExecutionError(
                code="E_REMOTE_AGENT_ERROR",
                message=f"no simulated agent answer for task '{task_description}'",
            ) from None


class SimulatedTools:
    def __init__(self, graph: Graph) -> None:
        self._outcomes: dict[str, str] = {}
        for node in graph.nodes.values():
            a = node.activity
            if a.activity_type == "direct_tool_use":
                self._outcomes.setdefault(a.tool_to_use or "", a.expected_outcome)

    def execute_tool(self, tool_name: str, tool_parameters: Document) -> str:
        if tool_name not in self._outcomes:
            raise ExecutionError(code="E_TOOL_EXECUTION", message=f"unknown tool '{tool_name}'")
        return self._outcomes[tool_name]


class SimulatedTasks:
    def __init__(self, graph: Graph) -> None:
        self._outcomes: dict[tuple[str, ...], str] = {}
        for node in graph.nodes.values():
            a = node.activity
            if a.activity_type == "direct_task_execution":
                self._outcomes.setdefault(_task_key(a.tasks), a.expected_outcome)

    def execute_tasks(self, tasks: list[TaskSpec]) -> str:
        key = _task_key(tasks)
        if key not in self._outcomes:
            raise ExecutionError(
                code="E_TASK_EXECUTION",
                message=f"unknown task list {list(key)}",
            )
        return self._outcomes[key]
