from __future__ import annotations

from typing import Iterable, Mapping

from agent_workflow.core.engine.conditions import evaluate
from agent_workflow.core.model import CompiledPlan, Edge


class DependencyResolver:
    """Computes which activities may run given the outcomes recorded so far."""

    def __init__(self, compiled: CompiledPlan) -> None:
        self._order = list(compiled.order)
        self._inbound: dict[str, list[Edge]] = {
            nid: compiled.graph.inbound(nid) for nid in self._order
        }

    def frontier(
        self,
        activities_outcome: Mapping[str, str],
        exclude: Iterable[str] = (),
    ) -> list[str]:
        """Not-yet-executed activities whose every inbound edge is satisfied.

        Returned in topological order. `exclude` holds ids already dispatched
        but not yet recorded.
        """
        skip = set(exclude)
        out: list[str] = []
        for nid in self._order:
            if nid in activities_outcome or nid in skip:
                continue
            if all(self._satisfied(e, activities_outcome) for e in self._inbound[nid]):
                out.append(nid)
        return out

    def excluded(self, activities_outcome: Mapping[str, str]) -> list[str]:
        """Activities that can no longer become runnable.

        An activity is excluded when an upstream activity ran and its edge
        condition failed, or when an upstream activity is itself excluded.
        """
        excluded: set[str] = set()
        out: list[str] = []
        for nid in self._order:
            if nid in activities_outcome:
                continue
            for e in self._inbound[nid]:
                blocked = e.source in excluded or (
                    e.source in activities_outcome
                    and not evaluate(activities_outcome[e.source], e.condition)
                )
                if blocked:
                    excluded.add(nid)
                    out.append(nid)
                    break
        return out

    @staticmethod
    def _satisfied(edge: Edge, activities_outcome: Mapping[str, str]) -> bool:
        if edge.source not in activities_outcome:
            return False
        return evaluate(activities_outcome[edge.source], edge.condition)
