from __future__ import annotations

import heapq
from collections import Counter
from typing import Any, Iterable, Optional, cast

from agent_workflow.core.errors import PlanCompileError
from agent_workflow.core.model import (
    Activity,
    ActivityType,
    CompiledPlan,
    Dependency,
    Edge,
    Graph,
    Node,
    TaskSpec,
)


ALLOWED_ACTIVITY_TYPES: set[str] = {
    "delegation_agent",
    "direct_tool_use",
    "direct_task_execution",
}


def compile_plan(plan: dict[str, Any]) -> tuple[Optional[CompiledPlan], list[PlanCompileError]]:
    """Compile a plan document into an executable graph.

    Returns (compiled, errors). Compiled is None when errors exist; no partial
    graph is ever handed out.
    """

    file = cast(Optional[str], plan.get("__file__"))
    errors: list[PlanCompileError] = []

    plan_name = plan.get("plan_name")
    if not isinstance(plan_name, str) or not plan_name.strip():
        errors.append(
            PlanCompileError(
                code="E_REQUIRED_FIELD",
                message="plan_name is required and must be a non-empty string",
                file=file,
                path="plan_name",
            )
        )

    activities = plan.get("activities")
    if not isinstance(activities, list):
        errors.append(
            PlanCompileError(
                code="E_REQUIRED_FIELD",
                message="activities is required and must be an array",
                file=file,
                path="activities",
            )
        )
        return None, _sorted(errors)

    activities_by_id: dict[str, Activity] = {}
    index_by_id: dict[str, int] = {}

    for i, raw in enumerate(activities):
        activity_path = f"activities[{i}]"
        if not isinstance(raw, dict):
            errors.append(
                PlanCompileError(
                    code="E_INVALID_TYPE",
                    message="activity must be an object",
                    file=file,
                    path=activity_path,
                )
            )
            continue

        aid = raw.get("id")
        if isinstance(aid, str) and aid in activities_by_id:
            errors.append(
                PlanCompileError(
                    code="E_DUPLICATE_ID",
                    message=f"duplicate activity id: {aid}",
                    file=file,
                    path=f"{activity_path}.id",
                )
            )
            continue

        activity = _compile_activity(raw, activity_path, file, errors)
        if activity is None:
            continue
        activities_by_id[activity.id] = activity
        index_by_id[activity.id] = i

    # Referential integrity checks.
    for aid, activity in activities_by_id.items():
        for di, dep in enumerate(activity.dependencies):
            dep_path = f"activities[{index_by_id[aid]}].dependencies[{di}].source"
            if dep.source == aid:
                errors.append(
                    PlanCompileError(
                        code="E_CYCLE_DETECTED",
                        message=f"dependency cycle detected: {aid} -> {aid}",
                        file=file,
                        path=dep_path,
                    )
                )
            elif dep.source not in activities_by_id:
                errors.append(
                    PlanCompileError(
                        code="E_UNKNOWN_DEPENDENCY",
                        message=f"dependency references unknown activity id: {dep.source}",
                        file=file,
                        path=dep_path,
                    )
                )

    if errors:
        return None, _sorted(errors)

    edges: list[Edge] = []
    for aid, activity in activities_by_id.items():
        for dep in activity.dependencies:
            edges.append(Edge(source=dep.source, target=aid, condition=dep.condition))

    order = _topological_order(list(activities_by_id.keys()), edges)
    if len(order) != len(activities_by_id):
        remaining = [aid for aid in activities_by_id if aid not in set(order)]
        for aid, msg in _detect_cycles(remaining, edges):
            errors.append(
                PlanCompileError(
                    code="E_CYCLE_DETECTED",
                    message=msg,
                    file=file,
                    path=f"activities[{index_by_id[aid]}].dependencies",
                )
            )
        return None, _sorted(errors)

    graph = Graph(
        plan_name=cast(str, plan_name),
        nodes={aid: Node(id=aid, activity=a) for aid, a in activities_by_id.items()},
        edges=edges,
    )
    return CompiledPlan(graph=graph, order=order), []


def compile_plan_or_raise(plan: dict[str, Any]) -> CompiledPlan:
    compiled, errors = compile_plan(plan)
    if errors:
        raise errors[0]
    assert compiled is not None
    return compiled


def summarize_plan(compiled: CompiledPlan) -> str:
    graph = compiled.graph
    counts = Counter([n.activity.activity_type for n in graph.nodes.values()])
    ordered_types: list[str] = ["delegation_agent", "direct_tool_use", "direct_task_execution"]
    parts = [f"{t}={counts.get(t, 0)}" for t in ordered_types]
    return (
        f"OK: plan '{graph.plan_name}' with {len(graph.nodes)} activities ("
        + ", ".join(parts)
        + f"), {len(graph.edges)} edges"
        + "\nEntry: "
        + ", ".join(entry_nodes(compiled))
        + "\nTerminal: "
        + ", ".join(terminal_node_ids(compiled))
    )


def entry_nodes(compiled: CompiledPlan) -> list[str]:
    targets = {e.target for e in compiled.graph.edges}
    return [nid for nid in compiled.order if nid not in targets]


def terminal_node_ids(compiled: CompiledPlan) -> list[str]:
    sources = {e.source for e in compiled.graph.edges}
    return [nid for nid in compiled.order if nid not in sources]


def _compile_activity(
    raw: dict[str, Any],
    activity_path: str,
    file: Optional[str],
    errors: list[PlanCompileError],
) -> Optional[Activity]:
    def err(code: str, message: str, path: str) -> None:
        errors.append(PlanCompileError(code=code, message=message, file=file, path=path))

    aid = raw.get("id")
    if not isinstance(aid, str) or not aid.strip():
        err("E_REQUIRED_FIELD", "id is required and must be a non-empty string", f"{activity_path}.id")
        return None

    atype = raw.get("activity_type")
    if not isinstance(atype, str) or atype not in ALLOWED_ACTIVITY_TYPES:
        err(
            "E_INVALID_ENUM",
            f"activity_type must be one of {sorted(ALLOWED_ACTIVITY_TYPES)}",
            f"{activity_path}.activity_type",
        )
        return None

    description = raw.get("description")
    if not isinstance(description, str):
        err(
            "E_REQUIRED_FIELD",
            "description is required and must be a string",
            f"{activity_path}.description",
        )
        return None

    kind = raw.get("type")
    if not isinstance(kind, str):
        err("E_REQUIRED_FIELD", "type is required and must be a string", f"{activity_path}.type")
        return None

    expected_outcome = raw.get("expected_outcome")
    if not isinstance(expected_outcome, str):
        err(
            "E_REQUIRED_FIELD",
            "expected_outcome is required and must be a string",
            f"{activity_path}.expected_outcome",
        )
        return None

    # agent block (optional)
    agent = raw.get("agent")
    if agent is None:
        agent = {}
    if not isinstance(agent, dict):
        err("E_INVALID_TYPE", "agent must be an object", f"{activity_path}.agent")
        return None
    for key in ("skill_to_use", "assigned_agent_id_preference"):
        if agent.get(key) is not None and not isinstance(agent.get(key), str):
            err("E_INVALID_TYPE", f"{key} must be a string", f"{activity_path}.agent.{key}")
            return None

    # tools (optional); only the first entry is used
    tools = raw.get("tools")
    tool: dict[str, Any] = {}
    if tools is not None:
        if not isinstance(tools, list) or any(not isinstance(t, dict) for t in tools):
            err("E_INVALID_TYPE", "tools must be an array of objects", f"{activity_path}.tools")
            return None
        if tools:
            tool = tools[0]
        if tool.get("tool_to_use") is not None and not isinstance(tool.get("tool_to_use"), str):
            err("E_INVALID_TYPE", "tool_to_use must be a string", f"{activity_path}.tools[0].tool_to_use")
            return None

    # tasks (optional)
    tasks_raw = raw.get("tasks")
    tasks: list[TaskSpec] = []
    if tasks_raw is not None:
        if not isinstance(tasks_raw, list):
            err("E_INVALID_TYPE", "tasks must be an array of objects", f"{activity_path}.tasks")
            return None
        for ti, t in enumerate(tasks_raw):
            name = t.get("task_to_use") if isinstance(t, dict) else None
            if not isinstance(t, dict) or (name is not None and not isinstance(name, str)):
                err(
                    "E_INVALID_TYPE",
                    "task must be an object with an optional string task_to_use",
                    f"{activity_path}.tasks[{ti}]",
                )
                return None
            tasks.append(TaskSpec(task_to_use=name, task_parameters=t.get("task_parameters")))

    # dependencies (defaults to [])
    deps_raw = raw.get("dependencies")
    if deps_raw is None:
        deps_raw = []
    if not isinstance(deps_raw, list):
        err("E_INVALID_TYPE", "dependencies must be an array", f"{activity_path}.dependencies")
        return None
    dependencies: list[Dependency] = []
    for di, d in enumerate(deps_raw):
        dep_path = f"{activity_path}.dependencies[{di}]"
        if not isinstance(d, dict):
            err("E_INVALID_TYPE", "dependency must be an object", dep_path)
            return None
        source = d.get("source")
        if not isinstance(source, str) or not source.strip():
            err("E_REQUIRED_FIELD", "source is required and must be a non-empty string", f"{dep_path}.source")
            return None
        condition = d.get("condition")
        if condition is not None and not isinstance(condition, str):
            err("E_INVALID_TYPE", "condition must be a string", f"{dep_path}.condition")
            return None
        dependencies.append(Dependency(source=source, condition=condition))

    # A tool activity without a tool, or a task activity without tasks, still
    # compiles; its capability fails the node when it runs.
    return Activity(
        id=aid,
        activity_type=cast(ActivityType, atype),
        description=description,
        type=kind,
        expected_outcome=expected_outcome,
        skill_to_use=agent.get("skill_to_use"),
        assigned_agent_id_preference=agent.get("assigned_agent_id_preference"),
        agent_context=agent.get("agent_context"),
        tool_to_use=tool.get("tool_to_use"),
        tool_parameters=tool.get("tool_parameters"),
        tasks=tasks,
        dependencies=dependencies,
    )


def _topological_order(ids: list[str], edges: list[Edge]) -> list[str]:
    # Kahn's algorithm; among ready nodes the earliest declared goes first.
    position = {nid: i for i, nid in enumerate(ids)}
    indegree: dict[str, int] = {nid: 0 for nid in ids}
    successors: dict[str, list[str]] = {nid: [] for nid in ids}
    for e in edges:
        indegree[e.target] += 1
        successors[e.source].append(e.target)

    ready = [position[nid] for nid in ids if indegree[nid] == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        nid = ids[heapq.heappop(ready)]
        order.append(nid)
        for nxt in successors[nid]:
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                heapq.heappush(ready, position[nxt])
    return order


def _detect_cycles(ids: list[str], edges: list[Edge]) -> list[tuple[str, str]]:
    deps: dict[str, list[str]] = {nid: [] for nid in ids}
    for e in edges:
        if e.target in deps:
            deps[e.target].append(e.source)

    WHITE, GRAY, BLACK = 0, 1, 2
    state: dict[str, int] = {nid: WHITE for nid in ids}
    stack: list[str] = []
    emitted: set[frozenset[str]] = set()
    out: list[tuple[str, str]] = []

    def dfs(u: str) -> None:
        state[u] = GRAY
        stack.append(u)
        for v in deps.get(u, []):
            if v not in state:
                continue
            if state[v] == GRAY:
                cycle = stack[stack.index(v) :] + [v]
                key = frozenset(cycle)
                if key not in emitted:
                    emitted.add(key)
                    out.append((u, "dependency cycle detected: " + " -> ".join(cycle)))
            elif state[v] == WHITE:
                dfs(v)
        stack.pop()
        state[u] = BLACK

    for nid in ids:
        if state[nid] == WHITE:
            dfs(nid)

    return out


def _sorted(errors: Iterable[PlanCompileError]) -> list[PlanCompileError]:
    return sorted(
        list(errors),
        key=lambda e: (
            e.file or "",
            e.path or "",
            e.code,
        ),
    )
