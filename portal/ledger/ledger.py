"""
portal/ledger/ledger.py
-----------------------
Append-only access to the audit ledger.

    append(entry)                 → the entry, flushed in the caller's transaction
    history_for(requisition_id)   → entries, oldest first
    verify(requisition)           → (cached projection, ledger projection)
    heal(requisition)             → rewrite the cached projection from the ledger

Nothing here commits. The state machine appends inside the same transaction
that updates the requisition row, so both land together or not at all.
"""
from datetime import datetime, timedelta

from portal import db
from portal.ledger.models import AuditEntry
from portal.ledger.fold import fold, projection_of


def append(entry: AuditEntry, session=None) -> AuditEntry:
    """
    Add `entry` as the next entry of its requisition.

    Assigns the per-requisition sequence number and keeps timestamps
    strictly increasing per requisition. Two concurrent appends that pick
    the same sequence collide on the unique constraint at flush time.
    """
    session = session or db.session

    last = (
        session.query(AuditEntry)
        .filter(AuditEntry.requisition_id == entry.requisition_id)
        .order_by(AuditEntry.sequence.desc())
        .first()
    )
    entry.sequence = (last.sequence + 1) if last else 1

    now = entry.created_at or datetime.utcnow()
    if last is not None and now <= last.created_at:
        now = last.created_at + timedelta(microseconds=1)
    entry.created_at = now

    session.add(entry)
    session.flush()
    return entry


def history_for(requisition_id: int, session=None) -> list:
    """All entries for a requisition, oldest first."""
    session = session or db.session
    return (
        session.query(AuditEntry)
        .filter(AuditEntry.requisition_id == requisition_id)
        .order_by(AuditEntry.sequence.asc())
        .all()
    )


def verify(requisition, session=None):
    """Return (cached, folded) projections; equal when the row is consistent."""
    folded = fold(history_for(requisition.id, session))
    return projection_of(requisition), folded


def heal(requisition, session=None):
    """Overwrite the cached projection with the ledger's. Caller commits."""
    folded = fold(history_for(requisition.id, session))
    requisition.status                 = folded.status
    requisition.current_approval_level = folded.level
    requisition.current_approver_id    = folded.approver_id
    return folded
