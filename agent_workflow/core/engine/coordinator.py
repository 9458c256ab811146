from __future__ import annotations

import copy
import logging
import threading
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import replace
from typing import Optional

from agent_workflow.core.engine.aggregate import OutcomeAggregator
from agent_workflow.core.engine.capabilities import (
    AgentInteraction,
    EvaluationService,
    TaskExecutor,
    ToolExecutor,
)
from agent_workflow.core.engine.resolver import DependencyResolver
from agent_workflow.core.errors import ExecutionError, PlanRunError
from agent_workflow.core.model import (
    ACTIVE_STATES,
    TERMINAL_STATES,
    Activity,
    CompiledPlan,
    EvaluationLogData,
    ExecutionResult,
    JudgeEvaluation,
    PlanContext,
    PlanState,
)

logger = logging.getLogger(__name__)


_TRANSITIONS: dict[str, set[str]] = {
    "idle": {"initializing"},
    "initializing": {"executing_step", "paused", "failed"},
    "executing_step": {"awaiting_agent_response", "processing_agent_response", "paused", "failed"},
    "awaiting_agent_response": {"processing_agent_response", "paused", "failed"},
    "processing_agent_response": {"deciding_next_step", "paused", "failed"},
    "deciding_next_step": {"executing_step", "completed", "paused", "failed"},
    "paused": set(ACTIVE_STATES - {"paused"}) | {"failed"},
    "completed": set(),
    "failed": set(),
}

_FAILURE_CODES: dict[str, str] = {
    "delegation_agent": "E_REMOTE_AGENT_ERROR",
    "direct_tool_use": "E_TOOL_EXECUTION",
    "direct_task_execution": "E_TASK_EXECUTION",
}

CANCELLED_REASON = "cancelled"


class ExecutionCoordinator:
    """Drives one run of a compiled plan through the plan state machine.

    Ready activities are dispatched to a bounded worker pool, at most
    `workers` at a time, in topological order. Completions are merged back on
    the thread that called `start`; that thread is the only writer of the
    run's PlanContext. `pause`, `resume` and `cancel` may be called from any
    thread: they raise flags that the coordinator applies at its next
    checkpoint. `snapshot` returns a copy of the context taken under the
    merge lock.
    """

    def __init__(
        self,
        compiled: CompiledPlan,
        *,
        agents: AgentInteraction,
        tools: ToolExecutor,
        tasks: TaskExecutor,
        workers: int = 4,
        poll_interval_s: float = 0.05,
        evaluation: Optional[EvaluationService] = None,
        request_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> None:
        self._compiled = compiled
        self._agents = agents
        self._tools = tools
        self._tasks = tasks
        self._workers = max(1, workers)
        self._poll_interval_s = poll_interval_s
        self._evaluation = evaluation
        self.request_id = request_id or str(uuid.uuid4())
        self.conversation_id = conversation_id or str(uuid.uuid4())

        self._resolver = DependencyResolver(compiled)
        self._aggregator = OutcomeAggregator(compiled)
        self._rank = compiled.rank()

        self.history: list[PlanState] = ["idle"]
        self._context: Optional[PlanContext] = None
        self._lock = threading.Lock()
        self._pause_requested = threading.Event()
        self._resumed = threading.Event()
        self._cancel_requested = threading.Event()
        # Set once the run stops admitting work; late workers bail out.
        self._stop = threading.Event()

    @property
    def context(self) -> Optional[PlanContext]:
        return self._context

    def snapshot(self) -> Optional[PlanContext]:
        with self._lock:
            ctx = self._context
            if ctx is None:
                return None
            return replace(
                ctx,
                graph=copy.deepcopy(ctx.graph),
                activities_outcome=dict(ctx.activities_outcome),
            )

    def start(self, user_query: str) -> ExecutionResult:
        with self._lock:
            if self._context is not None:
                raise PlanRunError(
                    code="E_ALREADY_STARTED",
                    message="a coordinator runs its plan once; create a new one",
                )
            self._context = PlanContext(
                graph=copy.deepcopy(self._compiled.graph),
                user_query=user_query,
            )
        ctx = self._context

        self._transition("initializing")
        with self._lock:
            ctx.current_step_id = None
        logger.info(
            "plan %s started with %d activities",
            ctx.graph.plan_name,
            len(ctx.graph.nodes),
            extra=self._fields(),
        )

        if set(self._compiled.order) != set(ctx.graph.nodes):
            self._fail(
                PlanRunError(
                    code="E_NOT_COMPILED",
                    message="graph has no complete topological order; compile the plan first",
                )
            )
        else:
            self._run_graph()
        return self._finish()

    def pause(self) -> None:
        if not self._is_active():
            raise PlanRunError(code="E_NOT_RUNNING", message="pause requires an active run")
        self._resumed.clear()
        self._pause_requested.set()

    def resume(self) -> None:
        if not self._pause_requested.is_set():
            raise PlanRunError(code="E_NOT_PAUSED", message="resume requires a paused run")
        self._pause_requested.clear()
        self._resumed.set()

    def cancel(self) -> None:
        with self._lock:
            state = self._context.plan_state if self._context is not None else None
        if state is None:
            raise PlanRunError(code="E_NOT_RUNNING", message="cancel requires a started run")
        if state in TERMINAL_STATES:
            return
        self._cancel_requested.set()
        self._resumed.set()

    def _run_graph(self) -> None:
        ctx = self._require_context()
        frontier = self._resolver.frontier(ctx.activities_outcome)
        if not frontier:
            self._fail(
                PlanRunError(
                    code="E_EMPTY_FRONTIER",
                    message="no activity is ready to run; the plan has no entry point",
                )
            )
            return
        self._transition("executing_step")

        pool = ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="workflow")
        in_flight: dict[Future[str], str] = {}
        try:
            while True:
                if not self._checkpoint():
                    return

                for node_id in frontier:
                    if len(in_flight) >= self._workers:
                        break
                    activity = ctx.graph.nodes[node_id].activity
                    with self._lock:
                        ctx.current_step_id = node_id
                    logger.info(
                        "dispatching activity %s (%s)",
                        node_id,
                        activity.activity_type,
                        extra=self._fields(node_id),
                    )
                    in_flight[pool.submit(self._execute, activity)] = node_id

                if any(
                    ctx.graph.nodes[nid].activity.activity_type == "delegation_agent"
                    for nid in in_flight.values()
                ):
                    self._transition("awaiting_agent_response")

                done = self._wait(in_flight)
                if done is None:
                    return

                # Every success in the batch is recorded before the
                # lowest-ranked failure, if any, fails the run.
                failed: Optional[tuple[str, ExecutionError]] = None
                for fut in sorted(done, key=lambda f: self._rank[in_flight[f]]):
                    node_id = in_flight.pop(fut)
                    self._transition("processing_agent_response")
                    with self._lock:
                        ctx.current_step_id = node_id
                    try:
                        output = fut.result()
                    except ExecutionError as e:
                        logger.warning(
                            "activity %s failed: %s",
                            node_id,
                            e,
                            extra=self._fields(node_id),
                        )
                        if failed is None:
                            failed = (node_id, e)
                        continue
                    with self._lock:
                        self._aggregator.record(ctx, node_id, output)
                    logger.info("activity %s completed", node_id, extra=self._fields(node_id))

                if failed is not None:
                    node_id, e = failed
                    with self._lock:
                        ctx.current_step_id = node_id
                    self._fail(
                        PlanRunError(
                            code="E_NODE_EXECUTION_FAILED",
                            message=f"activity {node_id} failed: {e.code}: {e.message}",
                            path=node_id,
                            cause=e,
                        )
                    )
                    return

                self._transition("deciding_next_step")
                frontier = self._resolver.frontier(
                    ctx.activities_outcome, exclude=in_flight.values()
                )
                if frontier or in_flight:
                    self._transition("executing_step")
                    continue

                self._complete()
                return
        finally:
            self._stop.set()
            # In-flight calls are abandoned; whatever they return is discarded.
            pool.shutdown(wait=False, cancel_futures=True)

    def _execute(self, activity: Activity) -> str:
        """Worker body: run one activity end-to-end through its capability."""
        if self._stop.is_set():
            raise PlanRunError(
                code="E_CANCELLED",
                message="run stopped before the activity was dispatched",
                path=activity.id,
            )
        try:
            if activity.activity_type == "delegation_agent":
                output = self._agents.execute_task(activity.description, activity.skill_to_use or "")
            elif activity.activity_type == "direct_tool_use":
                output = self._tools.execute_tool(activity.tool_to_use or "", activity.tool_parameters)
            else:
                output = self._tasks.execute_tasks(list(activity.tasks))
        except ExecutionError:
            raise
        except Exception as e:
            raise ExecutionError(
                code=_FAILURE_CODES[activity.activity_type],
                message=str(e) or type(e).__name__,
                path=activity.id,
            ) from e

        if not isinstance(output, str):
            raise ExecutionError(
                code=_FAILURE_CODES[activity.activity_type],
                message=f"capability returned {type(output).__name__}, expected str",
                path=activity.id,
            )
        return output

    def _wait(self, in_flight: dict[Future[str], str]) -> Optional[set[Future[str]]]:
        while True:
            done, _ = wait(
                list(in_flight), timeout=self._poll_interval_s, return_when=FIRST_COMPLETED
            )
            if not self._checkpoint():
                return None
            if done:
                return done

    def _checkpoint(self) -> bool:
        """Apply pending pause/cancel requests. False means the run was cancelled."""
        if self._pause_requested.is_set() and not self._cancel_requested.is_set():
            self._hold()
        if self._cancel_requested.is_set():
            self._fail(PlanRunError(code="E_CANCELLED", message=CANCELLED_REASON))
            return False
        return True

    def _hold(self) -> None:
        ctx = self._require_context()
        resume_to = ctx.plan_state
        self._transition("paused")
        logger.info("plan paused in %s", resume_to, extra=self._fields())
        while self._pause_requested.is_set() and not self._cancel_requested.is_set():
            self._resumed.wait(self._poll_interval_s)
        if not self._cancel_requested.is_set():
            self._transition(resume_to)
            logger.info("plan resumed", extra=self._fields())

    def _complete(self) -> None:
        ctx = self._require_context()
        final = self._aggregator.final_outcome(ctx.activities_outcome)
        with self._lock:
            ctx.final_outcome = final
        self._transition("completed")
        logger.info(
            "plan %s completed (%d/%d activities ran)",
            ctx.graph.plan_name,
            len(ctx.activities_outcome),
            len(ctx.graph.nodes),
            extra=self._fields(),
        )

    def _fail(self, error: PlanRunError) -> None:
        ctx = self._require_context()
        self._stop.set()
        with self._lock:
            ctx.error = error
            ctx.failure_reason = error.message
        self._transition("failed")
        logger.error("plan %s failed: %s", ctx.graph.plan_name, error, extra=self._fields(error.path))

    def _finish(self) -> ExecutionResult:
        ctx = self._require_context()
        success = ctx.plan_state == "completed"
        result = ExecutionResult(
            request_id=self.request_id,
            conversation_id=self.conversation_id,
            success=success,
            output=ctx.final_outcome if success else (ctx.failure_reason or ""),
            plan_name=ctx.graph.plan_name,
            state=ctx.plan_state,
            activities_outcome=dict(ctx.activities_outcome),
            skipped=self._resolver.excluded(ctx.activities_outcome) if success else [],
        )
        if success and self._evaluation is not None:
            result = replace(result, evaluation=self._evaluate(ctx))
        return result

    def _evaluate(self, ctx: PlanContext) -> Optional[JudgeEvaluation]:
        assert self._evaluation is not None
        data = EvaluationLogData(
            request_id=self.request_id,
            conversation_id=self.conversation_id,
            plan_name=ctx.graph.plan_name,
            original_user_query=ctx.user_query,
            activities_outcome=dict(ctx.activities_outcome),
            final_outcome=ctx.final_outcome,
        )
        try:
            return self._evaluation.log_evaluation(data)
        except Exception:
            # The run already completed; a judge failure does not change that.
            logger.exception("evaluation of plan %s failed", ctx.graph.plan_name, extra=self._fields())
            return None

    def _transition(self, state: PlanState) -> None:
        ctx = self._require_context()
        current = ctx.plan_state
        if state == current:
            return
        if state not in _TRANSITIONS[current]:
            raise RuntimeError(f"invalid plan state transition: {current} -> {state}")
        with self._lock:
            ctx.plan_state = state
            self.history.append(state)
        logger.debug("plan state %s -> %s", current, state, extra=self._fields())

    def _is_active(self) -> bool:
        with self._lock:
            return self._context is not None and self._context.plan_state not in (
                TERMINAL_STATES | {"idle"}
            )

    def _require_context(self) -> PlanContext:
        if self._context is None:
            raise PlanRunError(code="E_NOT_RUNNING", message="the run has not started")
        return self._context

    def _fields(self, node_id: Optional[str] = None) -> dict[str, dict[str, Optional[str]]]:
        ctx = self._context
        return {
            "structured": {
                "plan": ctx.graph.plan_name if ctx is not None else None,
                "state": ctx.plan_state if ctx is not None else None,
                "node": node_id,
                "request_id": self.request_id,
            }
        }
