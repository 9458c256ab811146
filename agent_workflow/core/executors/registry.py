from __future__ import annotations

import importlib
import json
import logging
from typing import Any, Callable, Mapping, Optional

from agent_workflow.core.errors import ExecutionError
from agent_workflow.core.model import Document, TaskSpec

logger = logging.getLogger(__name__)


ToolFn = Callable[..., Any]
TaskFn = Callable[[Document, Optional[str]], Any]


def resolve_callable(import_path: str) -> Callable[..., Any]:
    """Resolve "package.module:function" to the named callable.

    Dotted attributes after the colon are followed, so "pkg.mod:Class.method"
    works too.
    """
    module_name, sep, attr_path = import_path.partition(":")
    if not sep or not module_name or not attr_path:
        raise ValueError(f"import path must look like 'package.module:function', got {import_path!r}")

    obj: Any = importlib.import_module(module_name)
    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise ValueError(f"{import_path}: module has no attribute {part!r}") from e
    if not callable(obj):
        raise ValueError(f"{import_path} is not callable")
    return obj


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, default=str)


class LocalToolRegistry:
    """ToolExecutor dispatching tool names to in-process callables."""

    def __init__(self, tools: Mapping[str, ToolFn] | None = None) -> None:
        self._tools: dict[str, ToolFn] = dict(tools or {})

    @classmethod
    def from_import_paths(cls, paths: Mapping[str, str]) -> "LocalToolRegistry":
        return cls({name: resolve_callable(p) for name, p in paths.items()})

    def register(self, name: str, fn: ToolFn) -> None:
        self._tools[name] = fn

    def execute_tool(self, tool_name: str, tool_parameters: Document) -> str:
        fn = self._tools.get(tool_name)
        if fn is None:
            raise ExecutionError(
                code="E_TOOL_EXECUTION",
                message=f"unknown tool '{tool_name}'",
            )

        logger.debug("calling tool %s", tool_name)
        try:
            if isinstance(tool_parameters, dict):
                result = fn(**tool_parameters)
            elif tool_parameters is None:
                result = fn()
            else:
                result = fn(tool_parameters)
        except Exception as e:
            raise ExecutionError(
                code="E_TOOL_EXECUTION",
                message=f"tool '{tool_name}' raised {type(e).__name__}: {e}",
            ) from e
        return _as_text(result)


class LocalTaskRegistry:
    """TaskExecutor running a list of named tasks in sequence.

    Each task is called as fn(task_parameters, previous) where `previous` is
    the output of the task before it (None for the first). The last task's
    output is the activity output.
    """

    def __init__(self, tasks: Mapping[str, TaskFn] | None = None) -> None:
        self._tasks: dict[str, TaskFn] = dict(tasks or {})

    @classmethod
    def from_import_paths(cls, paths: Mapping[str, str]) -> "LocalTaskRegistry":
        return cls({name: resolve_callable(p) for name, p in paths.items()})

    def register(self, name: str, fn: TaskFn) -> None:
        self._tasks[name] = fn

    def execute_tasks(self, tasks: list[TaskSpec]) -> str:
        if not tasks:
            raise ExecutionError(code="E_TASK_EXECUTION", message="no tasks to execute")

        previous: str | None = None
        for i, spec in enumerate(tasks):
            name = spec.task_to_use or ""
            fn = self._tasks.get(name)
            if fn is None:
                raise ExecutionError(
                    code="E_TASK_EXECUTION",
                    message=f"tasks[{i}]: unknown task '{name}'",
                )
            try:
                previous = _as_text(fn(spec.task_parameters, previous))
            except Exception as e:
                raise ExecutionError(
                    code="E_TASK_EXECUTION",
                    message=f"tasks[{i}]: task '{name}' raised {type(e).__name__}: {e}",
                ) from e
        assert previous is not None
        return previous
