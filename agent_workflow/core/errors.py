from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class WorkflowError(Exception):
    """Base error envelope shared by loading, compilation and execution.

    `path` locates the problem: a document path such as
    `activities[1].dependencies[0].source` for plan errors, or the activity id
    for errors raised while running a node.
    """

    code: str
    message: str
    file: Optional[str] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        parts: list[str] = []
        if self.file:
            parts.append(self.file)
        if self.path:
            parts.append(self.path)
        loc = ":".join(parts) if parts else "<plan>"
        return f"{loc}: {self.code}: {self.message}"


class PlanLoadError(WorkflowError):
    pass


class PlanCompileError(WorkflowError):
    """E_REQUIRED_FIELD, E_INVALID_TYPE, E_INVALID_ENUM, E_DUPLICATE_ID,
    E_UNKNOWN_DEPENDENCY, E_CYCLE_DETECTED."""


class ExecutionError(WorkflowError):
    """Raised by an executor capability for a single activity.

    E_REMOTE_AGENT_UNAVAILABLE, E_REMOTE_AGENT_ERROR, E_TOOL_EXECUTION,
    E_TASK_EXECUTION, E_TIMEOUT.
    """


@dataclass(frozen=True)
class PlanRunError(WorkflowError):
    """E_EMPTY_FRONTIER, E_CANCELLED, E_NODE_EXECUTION_FAILED, E_NOT_COMPILED,
    E_ALREADY_STARTED, E_NOT_RUNNING, E_NOT_PAUSED.

    For E_NODE_EXECUTION_FAILED, `path` is the failing activity id and `cause`
    the ExecutionError its capability raised.
    """

    cause: Optional[WorkflowError] = None
