"""
portal/routing/resolver.py
--------------------------
Pure-Python routing resolution.

Given a requisition, the level it has just cleared and the routing policy
of its department, decide who must act next, or that the chain is done.

    resolve_next(req, 0, policy)  → NextStep(level=1, approver_id=…)
    resolve_next(req, 1, policy)  → NextStep(level=2, …) or COMPLETE
    resolve_next(req, max, policy) → COMPLETE

No DB reads or writes happen here; the policy is loaded beforehand by
portal/routing/policy.py. Identical input always gives identical output,
so a retried transition resolves the same way.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional, Tuple

from portal.errors import RoutingGapError


@dataclass(frozen=True)
class RoutingPolicy:
    """Snapshot of one department's routing configuration."""
    department: str
    tiers:      Tuple[Tuple[Decimal, int], ...] = ()    # (min_total, max_level), ascending
    approvers:  Dict[int, int] = field(default_factory=dict)   # level → approver id

    def max_level_for(self, total) -> int:
        """Highest tier whose threshold the total reaches."""
        total = Decimal(str(total or 0))
        max_level = None
        for min_total, tier_level in sorted(self.tiers):
            if total >= min_total:
                max_level = tier_level
        if max_level is None:
            raise RoutingGapError(
                f'No routing tier covers {self.department!r} for a total of {total:.2f}.',
                department=self.department,
            )
        return max_level


@dataclass(frozen=True)
class NextStep:
    level:       int
    approver_id: Optional[int]     # None only for a gap in an allow_gaps chain


class _Complete:
    """Marker: every required level has been cleared."""
    def __repr__(self):
        return 'COMPLETE'


COMPLETE = _Complete()


def resolve_next(requisition, current_level: int, policy: RoutingPolicy):
    """
    Return NextStep for current_level + 1, or COMPLETE when current_level
    already reaches the maximum level this requisition needs.

    Raises RoutingGapError when the policy requires a level nobody is
    configured for. A level is never skipped.
    """
    max_level  = policy.max_level_for(requisition.total_estimated_cost)
    next_level = current_level + 1
    if next_level > max_level:
        return COMPLETE

    approver_id = policy.approvers.get(next_level)
    if approver_id is None:
        raise RoutingGapError(
            f'No approver configured for {policy.department!r} level {next_level}.',
            department=policy.department,
            level=next_level,
        )
    return NextStep(level=next_level, approver_id=approver_id)


def chain_for(requisition, policy: RoutingPolicy, allow_gaps: bool = False) -> list:
    """
    The full ordered approver chain for a requisition (for progress display).

    With allow_gaps a level nobody is configured for appears as a NextStep
    with approver_id None, and a total no tier covers gives an empty chain.
    """
    steps = []
    level = 0
    while True:
        try:
            step = resolve_next(requisition, level, policy)
        except RoutingGapError as exc:
            if not allow_gaps:
                raise
            if exc.level is None:
                return steps
            step = NextStep(level=exc.level, approver_id=None)
        if step is COMPLETE:
            return steps
        steps.append(step)
        level = step.level
