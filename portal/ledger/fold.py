"""
portal/ledger/fold.py
---------------------
Replay of the audit ledger into a requisition's workflow projection.

    fold([])                                  → DRAFT,    level 0, nobody
    fold([SUBMITTED→A])                       → PENDING,  level 1, A
    fold([SUBMITTED→A, APPROVED@1→B])         → PENDING,  level 2, B
    fold([SUBMITTED→A, APPROVED@1])           → APPROVED, level 1, nobody

apply_entry() is the one transition table of the workflow. The state
machine runs every new entry through it before writing (so an illegal
entry never reaches the ledger), and reads run the whole history through
it to check or rebuild the cached projection.

No DB access happens here.
"""
from __future__ import annotations
from dataclasses import dataclass

from portal.errors import InvalidTransitionError
from portal.ledger.models import AuditAction
from portal.requisitions.models import RequisitionStatus


@dataclass(frozen=True)
class Projection:
    status:      RequisitionStatus
    level:       int
    approver_id: int | None

    def __str__(self):
        return f'{self.status.value}/L{self.level}/approver={self.approver_id}'


INITIAL = Projection(RequisitionStatus.DRAFT, 0, None)

# action → statuses it may be applied from
ALLOWED_FROM = {
    AuditAction.SUBMITTED:      (RequisitionStatus.DRAFT, RequisitionStatus.RETURNED),
    AuditAction.APPROVED:       (RequisitionStatus.PENDING,),
    AuditAction.REJECTED:       (RequisitionStatus.PENDING,),
    AuditAction.RETURNED:       (RequisitionStatus.PENDING,),
    AuditAction.ADMIN_APPROVED: (RequisitionStatus.PENDING,),
}


def apply_entry(projection: Projection, entry) -> Projection:
    """
    Return the projection after `entry` (anything with action / level /
    assigned_to). Raises InvalidTransitionError if the entry is not legal
    from `projection`.
    """
    action = entry.action
    if projection.status not in ALLOWED_FROM[action]:
        raise InvalidTransitionError(
            f'Cannot apply {action.value} to a {projection.status.value} requisition.'
        )

    if action is AuditAction.SUBMITTED:
        if entry.assigned_to is None:
            raise InvalidTransitionError('A submission must assign the first approver.')
        return Projection(RequisitionStatus.PENDING, 1, entry.assigned_to)

    if entry.level != projection.level:
        raise InvalidTransitionError(
            f'{action.value} recorded at level {entry.level} but the requisition '
            f'is at level {projection.level}.'
        )

    if action is AuditAction.APPROVED:
        if entry.assigned_to is not None:
            return Projection(RequisitionStatus.PENDING, projection.level + 1, entry.assigned_to)
        return Projection(RequisitionStatus.APPROVED, projection.level, None)

    if action is AuditAction.ADMIN_APPROVED:
        return Projection(RequisitionStatus.APPROVED, projection.level, None)

    if action is AuditAction.REJECTED:
        return Projection(RequisitionStatus.REJECTED, projection.level, None)

    # RETURNED
    return Projection(RequisitionStatus.RETURNED, projection.level, None)


def fold(entries) -> Projection:
    """Replay entries (oldest first) from the initial DRAFT state."""
    projection = INITIAL
    for entry in entries:
        projection = apply_entry(projection, entry)
    return projection


def projection_of(requisition) -> Projection:
    """The cached projection currently stored on a Requisition row."""
    return Projection(
        requisition.status,
        requisition.current_approval_level,
        requisition.current_approver_id,
    )
