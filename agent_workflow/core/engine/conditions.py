from __future__ import annotations

from typing import Optional


def evaluate(outcome: str, condition: Optional[str]) -> bool:
    """Return True when an edge guarded by `condition` may be followed.

    An absent condition always holds. Otherwise the condition must appear,
    case-sensitively, somewhere in the upstream activity's outcome.
    """
    if condition is None:
        return True
    return condition in outcome
