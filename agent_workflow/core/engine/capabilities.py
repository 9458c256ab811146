from __future__ import annotations

from typing import Protocol

from agent_workflow.core.model import Document, EvaluationLogData, JudgeEvaluation, TaskSpec


# Capabilities are injected into the coordinator. Each returns the activity
# output as a string, or raises ExecutionError; any retry or timeout policy
# lives behind the call.


class AgentInteraction(Protocol):
    def execute_task(self, task_description: str, skill_hint: str) -> str: ...


class ToolExecutor(Protocol):
    def execute_tool(self, tool_name: str, tool_parameters: Document) -> str: ...


class TaskExecutor(Protocol):
    def execute_tasks(self, tasks: list[TaskSpec]) -> str: ...


class EvaluationService(Protocol):
    def log_evaluation(self, data: EvaluationLogData) -> JudgeEvaluation: ...
