"""
portal/ledger/models.py
-----------------------
The audit ledger: one immutable row per workflow action.

The ledger is the source of truth for a requisition's workflow state;
Requisition.status / current_approval_level / current_approver_id are a
cached projection of it (see portal/ledger/fold.py).
"""
import enum
from datetime import datetime

from sqlalchemy import event

from portal import db
from portal.errors import LedgerImmutableError


class AuditAction(enum.Enum):
    SUBMITTED      = 'SUBMITTED'
    APPROVED       = 'APPROVED'
    REJECTED       = 'REJECTED'
    RETURNED       = 'RETURNED'
    ADMIN_APPROVED = 'ADMIN_APPROVED'


class AuditEntry(db.Model):
    """
    One committed workflow action.

    level        — approval level at the time of the action
    assigned_to  — approver this action handed the requisition to
                   (null when the action leaves nobody assigned)
    sequence     — 1, 2, 3 … per requisition; the unique constraint makes a
                   second concurrent append for the same slot fail
    """
    __tablename__ = 'audit_entries'

    id             = db.Column(db.Integer, primary_key=True)
    requisition_id = db.Column(db.Integer, db.ForeignKey('requisitions.id'), nullable=False, index=True)
    sequence       = db.Column(db.Integer, nullable=False)
    actor_id       = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    action         = db.Column(db.Enum(AuditAction), nullable=False)
    level          = db.Column(db.Integer, nullable=False)
    assigned_to    = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    comment        = db.Column(db.Text, nullable=True)
    created_at     = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    actor       = db.relationship('User', lazy='select', foreign_keys=[actor_id])
    requisition = db.relationship('Requisition', lazy='select')

    __table_args__ = (
        db.UniqueConstraint('requisition_id', 'sequence', name='uq_audit_requisition_sequence'),
    )

    def to_dict(self) -> dict:
        return {
            'id':             self.id,
            'requisition_id': self.requisition_id,
            'sequence':       self.sequence,
            'actor_id':       self.actor_id,
            'actor_name':     self.actor.name if self.actor else None,
            'action':         self.action.value,
            'level':          self.level,
            'assigned_to':    self.assigned_to,
            'comment':        self.comment,
            'created_at':     self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<AuditEntry R:{self.requisition_id} #{self.sequence} {self.action.value} L{self.level}>'


# ── Append-only enforcement ───────────────────────────────────────

@event.listens_for(AuditEntry, 'before_update')
def _refuse_update(mapper, connection, target):
    raise LedgerImmutableError(f'Audit entry {target.id} is immutable')


@event.listens_for(AuditEntry, 'before_delete')
def _refuse_delete(mapper, connection, target):
    raise LedgerImmutableError(f'Audit entry {target.id} cannot be deleted')
