from __future__ import annotations

from typing import Mapping

from agent_workflow.core.model import CompiledPlan, PlanContext


OUTPUT_SEPARATOR = "\n\n"


class OutcomeAggregator:
    """Records activity outputs and derives a plan's final outcome.

    Final outcome policy:
    - executed terminal activities (no outgoing edge) contribute their
      outputs, in topological order, joined by a blank line;
    - when no terminal activity ran (every one was pruned by a condition),
      the executed sinks contribute instead: executed activities none of
      whose successors ran.
    """

    def __init__(self, compiled: CompiledPlan, separator: str = OUTPUT_SEPARATOR) -> None:
        self._order = list(compiled.order)
        self._separator = separator
        self._successors: dict[str, list[str]] = {
            nid: [e.target for e in compiled.graph.outbound(nid)] for nid in self._order
        }

    def record(self, context: PlanContext, node_id: str, output: str) -> None:
        if node_id in context.activities_outcome:
            raise RuntimeError(f"outcome for activity {node_id} already recorded")
        context.graph.nodes[node_id].activity.record_output(output)
        context.activities_outcome[node_id] = output

    def terminal_nodes(self) -> list[str]:
        return [nid for nid in self._order if not self._successors[nid]]

    def contributors(self, activities_outcome: Mapping[str, str]) -> list[str]:
        terminals = [nid for nid in self.terminal_nodes() if nid in activities_outcome]
        if terminals:
            return terminals
        return [
            nid
            for nid in self._order
            if nid in activities_outcome
            and not any(s in activities_outcome for s in self._successors[nid])
        ]

    def final_outcome(self, activities_outcome: Mapping[str, str]) -> str:
        return self._separator.join(
            activities_outcome[nid] for nid in self.contributors(activities_outcome)
        )
