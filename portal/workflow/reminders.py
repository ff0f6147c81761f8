"""
portal/workflow/reminders.py
----------------------------
Nudges approvers who have been sitting on a requisition.

Run periodically with `flask remind-overdue` (cron or a scheduler). A
requisition is overdue when it is PENDING and its latest ledger entry is
older than the cut-off; the reminder goes to the current approver.
"""
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from portal import db
from portal.ledger.models import AuditEntry
from portal.requisitions.models import Requisition, RequisitionStatus
from portal.workflow import notifications as notify


def overdue_requisitions(hours: int, now=None, session=None) -> list:
    session = session or db.session
    cutoff  = (now or datetime.utcnow()) - timedelta(hours=hours)

    last_activity = (
        session.query(AuditEntry.requisition_id, func.max(AuditEntry.created_at).label('last_at'))
        .group_by(AuditEntry.requisition_id)
        .subquery()
    )
    return (
        session.query(Requisition)
        .join(last_activity, last_activity.c.requisition_id == Requisition.id)
        .filter(Requisition.status == RequisitionStatus.PENDING)
        .filter(last_activity.c.last_at < cutoff)
        .order_by(Requisition.id)
        .all()
    )


def send_overdue_reminders(hours: int, now=None) -> int:
    """Deliver a reminder for every overdue requisition; returns how many were sent."""
    overdue = overdue_requisitions(hours, now)
    for req in overdue:
        notify.deliver(req.id, notify.REMINDER, [req.current_approver_id])
    current_app.logger.info(f"Overdue reminders sent: {len(overdue)} (older than {hours}h)")
    return len(overdue)
