from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Optional, Union

from agent_workflow.core.errors import WorkflowError


ActivityType = Literal["delegation_agent", "direct_tool_use", "direct_task_execution"]

PlanState = Literal[
    "idle",
    "initializing",
    "executing_step",
    "awaiting_agent_response",
    "processing_agent_response",
    "deciding_next_step",
    "paused",
    "completed",
    "failed",
]

ACTIVE_STATES: frozenset[str] = frozenset(
    {
        "initializing",
        "executing_step",
        "awaiting_agent_response",
        "processing_agent_response",
        "deciding_next_step",
        "paused",
    }
)
TERMINAL_STATES: frozenset[str] = frozenset({"completed", "failed"})

# Opaque payloads (agent_context, tool_parameters, task_parameters) are kept as
# parsed YAML/JSON values; the engine never looks inside them.
Document = Union[dict[str, Any], list[Any], str, int, float, bool, None]


@dataclass(frozen=True)
class Dependency:
    source: str
    condition: Optional[str] = None


@dataclass(frozen=True)
class TaskSpec:
    task_to_use: Optional[str] = None
    task_parameters: Document = None


@dataclass
class Activity:
    id: str
    activity_type: ActivityType
    description: str
    type: str
    expected_outcome: str
    skill_to_use: Optional[str] = None
    assigned_agent_id_preference: Optional[str] = None
    agent_context: Document = None
    tool_to_use: Optional[str] = None
    tool_parameters: Document = None
    tasks: list[TaskSpec] = field(default_factory=list)
    dependencies: list[Dependency] = field(default_factory=list)

    # Populated once, by the coordinator, when the activity has run.
    activity_output: Optional[str] = None

    def record_output(self, output: str) -> None:
        if self.activity_output is not None:
            raise RuntimeError(f"activity {self.id} already has a recorded output")
        self.activity_output = output


@dataclass(frozen=True)
class Node:
    id: str
    activity: Activity
    kind: Literal["activity"] = "activity"


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    condition: Optional[str] = None


@dataclass(frozen=True)
class Graph:
    plan_name: str
    nodes: dict[str, Node]
    edges: list[Edge]

    def inbound(self, node_id: str) -> list[Edge]:
        return [e for e in self.edges if e.target == node_id]

    def outbound(self, node_id: str) -> list[Edge]:
        return [e for e in self.edges if e.source == node_id]


@dataclass(frozen=True)
class CompiledPlan:
    graph: Graph
    # Node ids in a topological order; ties broken by declaration order.
    order: list[str]

    def rank(self) -> dict[str, int]:
        return {nid: i for i, nid in enumerate(self.order)}


@dataclass
class PlanContext:
    graph: Graph
    user_query: str
    plan_state: PlanState = "idle"
    current_step_id: Optional[str] = None
    activities_outcome: dict[str, str] = field(default_factory=dict)
    final_outcome: str = ""
    failure_reason: Optional[str] = None
    error: Optional[WorkflowError] = None


@dataclass(frozen=True)
class EvaluationLogData:
    request_id: str
    conversation_id: str
    plan_name: str
    original_user_query: str
    activities_outcome: dict[str, str]
    final_outcome: str


@dataclass(frozen=True)
class JudgeEvaluation:
    rating: str
    score: int
    feedback: str
    suggested_correction: Optional[str] = None


@dataclass(frozen=True)
class ExecutionResult:
    request_id: str
    conversation_id: str
    success: bool
    output: str
    plan_name: str = ""
    state: PlanState = "idle"
    activities_outcome: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    evaluation: Optional[JudgeEvaluation] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
