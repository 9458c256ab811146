from __future__ import annotations

import json
import logging
import os
import re
import threading
from typing import Any, Callable, Optional

from agent_workflow.core.errors import ExecutionError

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are an agent executing one step of a multi-step workflow.

You receive a task description and, optionally, the skill the planner expects
you to use. Carry out the task and reply with the result only: no preamble,
no markdown fences, no restating of the task.

If the task cannot be completed, reply with a short explanation that starts
with "UNABLE:".
"""


def _role_env_key(role: str) -> str:
    """Map a skill name to a skill-specific env var key.

    Examples:
      - summarize -> OPENAI_MODEL_SUMMARIZE
      - web-search -> OPENAI_MODEL_WEB_SEARCH
    """

    role_key = re.sub(r"[^A-Za-z0-9]+", "_", role).strip("_").upper()
    return f"OPENAI_MODEL_{role_key}"


def model_for_role(role: str, default_model: str) -> str:
    """Return the model to use for a given skill.

    Resolution order:
      1) OPENAI_MODEL_<SKILL>
      2) default_model
    """

    if not role.strip():
        return default_model
    override = (os.getenv(_role_env_key(role), "") or "").strip()
    return override or default_model


class LLMAgentInteraction:
    """AgentInteraction backed by the OpenAI Responses API.

    The SDK is imported lazily so plans without delegation activities run
    without an API key. `client_factory` builds the SDK client; it defaults to
    `openai.OpenAI`.
    """

    def __init__(
        self,
        default_model: str,
        *,
        base_url: str | None = None,
        client_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.default_model = default_model
        self._base_url = base_url
        self._client_factory = client_factory
        self._client: Any = None

        # Delegations run on worker threads; counters are shared.
        self._lock = threading.Lock()
        self.calls = 0
        self.input_tokens = 0
        self.output_tokens = 0
        self.models_used: dict[str, int] = {}

    def is_configured(self) -> bool:
        return self._client_factory is not None or bool(os.getenv("OPENAI_API_KEY"))

    def execute_task(self, task_description: str, skill_hint: str) -> str:
        if not self.is_configured():
            raise ExecutionError(
                code="E_REMOTE_AGENT_UNAVAILABLE",
                message="OPENAI_API_KEY is not set",
            )

        model = model_for_role(skill_hint, self.default_model)
        with self._lock:
            self.models_used[model] = self.models_used.get(model, 0) + 1

        logger.debug("delegating task to %s (skill=%s)", model, skill_hint or "-")
        try:
            resp = self._get_client().responses.create(
                model=model,
                input=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": _render_user_prompt(task_description, skill_hint)},
                ],
            )
        except ExecutionError:
            raise
        except Exception as e:
            raise ExecutionError(
                code="E_REMOTE_AGENT_ERROR",
                message=f"{type(e).__name__}: {e}",
            ) from e

        with self._lock:
            self.calls += 1
            self._accumulate_usage(resp)
        return _extract_output_text(resp)

    def _get_client(self) -> Any:
        with self._lock:
            if self._client is None:
                self._client = self._make_client()
            return self._client

    def _make_client(self) -> Any:
        if self._client_factory is not None:
            return self._client_factory()
        try:
            from openai import OpenAI  # type: ignore
        except ImportError as e:
            raise ExecutionError(
                code="E_REMOTE_AGENT_UNAVAILABLE",
                message="openai package not installed; install with: pip install openai",
            ) from e
        return OpenAI(base_url=self._base_url) if self._base_url else OpenAI()

    def _accumulate_usage(self, response: Any) -> None:
        usage = getattr(response, "usage", None)
        if usage is None:
            return

        def get(k: str) -> int:
            if isinstance(usage, dict):
                return int(usage.get(k, 0) or 0)
            return int(getattr(usage, k, 0) or 0)

        self.input_tokens += get("input_tokens")
        self.output_tokens += get("output_tokens")


def _render_user_prompt(task_description: str, skill_hint: str) -> str:
    payload = {"task": task_description}
    if skill_hint:
        payload["skill"] = skill_hint
    return "TASK_JSON:\n" + json.dumps(payload, indent=2, sort_keys=True)


def _extract_output_text(resp: Any) -> str:
    """Extract response text across OpenAI SDK response shapes."""
    raw = getattr(resp, "output_text", None)
    if isinstance(raw, str) and raw.strip():
        return raw

    dump = resp.model_dump() if hasattr(resp, "model_dump") else None
    items = dump.get("output") if isinstance(dump, dict) else getattr(resp, "output", None)
    if not isinstance(items, list):
        raise ExecutionError(code="E_REMOTE_AGENT_ERROR", message="response carried no output")

    texts: list[str] = []
    for item in items:
        content = item.get("content") if isinstance(item, dict) else getattr(item, "content", None)
        if not isinstance(content, list):
            continue
        for c in content:
            t = c.get("text") if isinstance(c, dict) else getattr(c, "text", None)
            if isinstance(t, str) and t.strip():
                texts.append(t)
    if not texts:
        raise ExecutionError(code="E_REMOTE_AGENT_ERROR", message="response carried no text output")
    return "\n".join(texts)
