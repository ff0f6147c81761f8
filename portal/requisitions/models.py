"""
portal/requisitions/models.py
-----------------------------
Models for purchase requisitions.

Tables:
  requisitions
  requisition_line_items
  requisition_attachments
  requisition_sequences

status / current_approval_level / current_approver_id on a Requisition are
a cached projection of its audit ledger (portal/ledger). Only the workflow
state machine writes them.
"""
import enum
from datetime import datetime, date
from decimal import Decimal

from portal import db


JUSTIFICATION_CODES = [
    ('CAPEX',       'Capital Expenditure'),
    ('OPEX',        'Operational Expenditure'),
    ('MAINT',       'Maintenance'),
    ('UPGRADE',     'Equipment Upgrade'),
    ('REPLACEMENT', 'Asset Replacement'),
    ('EXPANSION',   'Business Expansion'),
    ('COMPLIANCE',  'Regulatory Compliance'),
    ('SAFETY',      'Safety Enhancement'),
]
JUSTIFICATION_CODE_CHOICES = [c[0] for c in JUSTIFICATION_CODES]


# ── Status Enum ───────────────────────────────────────────────────

class RequisitionStatus(enum.Enum):
    DRAFT    = 'DRAFT'
    PENDING  = 'PENDING'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    RETURNED = 'RETURNED'


TERMINAL_STATUSES = (RequisitionStatus.APPROVED, RequisitionStatus.REJECTED)
EDITABLE_STATUSES = (RequisitionStatus.DRAFT, RequisitionStatus.RETURNED)


# ── Requisition ───────────────────────────────────────────────────

class Requisition(db.Model):
    """A purchase request moving through the approval workflow."""
    __tablename__ = 'requisitions'

    id                 = db.Column(db.Integer, primary_key=True)
    requisition_number = db.Column(db.String(40), unique=True, nullable=True, index=True)
    title              = db.Column(db.String(200), nullable=True)
    requester_id       = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    department         = db.Column(db.String(100), nullable=True, index=True)
    location           = db.Column(db.String(100), nullable=True)
    entity             = db.Column(db.String(100), nullable=True)
    justification_code    = db.Column(db.String(20), nullable=True)
    justification_details = db.Column(db.Text, nullable=True)
    request_date       = db.Column(db.Date, nullable=False, default=date.today)

    total_estimated_cost = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal('0'))

    # ── Projection of the ledger ──────────────────────────────────
    status                 = db.Column(db.Enum(RequisitionStatus), nullable=False,
                                       default=RequisitionStatus.DRAFT, index=True)
    current_approval_level = db.Column(db.Integer, nullable=False, default=0)
    current_approver_id    = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)

    # Optimistic concurrency: bumped on every UPDATE, checked on flush
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at   = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at   = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                             onupdate=datetime.utcnow)
    submitted_at = db.Column(db.DateTime, nullable=True)   # latest submission
    decided_at   = db.Column(db.DateTime, nullable=True)   # approved / rejected

    # Relationships
    line_items  = db.relationship('LineItem', backref='requisition',
                                  cascade='all, delete-orphan', lazy='select',
                                  order_by='LineItem.position')
    attachments = db.relationship('Attachment', backref='requisition',
                                  lazy='select', order_by='Attachment.id')
    requester   = db.relationship('User', lazy='select', foreign_keys=[requester_id])
    approver    = db.relationship('User', lazy='select', foreign_keys=[current_approver_id])

    __mapper_args__ = {'version_id_col': version}

    # ── Helpers ───────────────────────────────────────────────────
    @property
    def line_items_total(self) -> Decimal:
        """Sum of estimated_cost over the line items."""
        return sum((item.estimated_cost for item in self.line_items), Decimal('0'))

    def replace_line_items(self, items: list) -> None:
        """
        Swap the full set of line items and recompute the total in the
        same step, so total_estimated_cost always equals the item sum.
        Callers must check the status allows editing.
        """
        self.line_items = [
            LineItem(position=i, **fields) for i, fields in enumerate(items, start=1)
        ]
        self.total_estimated_cost = self.line_items_total

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            'id':                     self.id,
            'requisition_number':     self.requisition_number,
            'title':                  self.title,
            'requester_id':           self.requester_id,
            'requester_name':         self.requester.name if self.requester else None,
            'department':             self.department,
            'location':               self.location,
            'entity':                 self.entity,
            'justification_code':     self.justification_code,
            'justification_details':  self.justification_details,
            'request_date':           self.request_date.isoformat() if self.request_date else None,
            'total_estimated_cost':   f'{Decimal(self.total_estimated_cost or 0):.2f}',
            'status':                 self.status.value,
            'current_approval_level': self.current_approval_level,
            'current_approver_id':    self.current_approver_id,
            'current_approver_name':  self.approver.name if self.approver else None,
            'version':                self.version,
            'created_at':             self.created_at.isoformat() if self.created_at else None,
            'submitted_at':           self.submitted_at.isoformat() if self.submitted_at else None,
            'decided_at':             self.decided_at.isoformat() if self.decided_at else None,
        }
        if include_items:
            data['line_items']  = [item.to_dict() for item in self.line_items]
            data['attachments'] = [a.to_dict() for a in self.attachments]
        return data

    def __repr__(self):
        return f'<Requisition #{self.id} {self.requisition_number or "unnumbered"} {self.status.value}>'


# ── Line Item ─────────────────────────────────────────────────────

class LineItem(db.Model):
    """One item requested on a requisition. Frozen once the requisition is submitted."""
    __tablename__ = 'requisition_line_items'

    id                 = db.Column(db.Integer, primary_key=True)
    requisition_id     = db.Column(db.Integer, db.ForeignKey('requisitions.id', ondelete='CASCADE'),
                                   nullable=False, index=True)
    position           = db.Column(db.Integer, nullable=False, default=1)
    item_name          = db.Column(db.String(200), nullable=False)
    quantity           = db.Column(db.Numeric(12, 3), nullable=False)
    unit_of_measure    = db.Column(db.String(30), nullable=True)
    required_by        = db.Column(db.Date, nullable=True)
    delivery_location  = db.Column(db.String(100), nullable=True)
    vendor             = db.Column(db.String(200), nullable=True)
    estimated_cost     = db.Column(db.Numeric(14, 2), nullable=False)
    item_justification = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            'id':                 self.id,
            'position':           self.position,
            'item_name':          self.item_name,
            'quantity':           str(self.quantity),
            'unit_of_measure':    self.unit_of_measure,
            'required_by':        self.required_by.isoformat() if self.required_by else None,
            'delivery_location':  self.delivery_location,
            'vendor':             self.vendor,
            'estimated_cost':     f'{Decimal(self.estimated_cost):.2f}',
            'item_justification': self.item_justification,
        }

    def __repr__(self):
        return f'<LineItem R:{self.requisition_id} {self.item_name!r} {self.estimated_cost}>'


# ── Attachment ────────────────────────────────────────────────────

class Attachment(db.Model):
    """A reference to a file held by the attachment store. Append-only."""
    __tablename__ = 'requisition_attachments'

    id             = db.Column(db.Integer, primary_key=True)
    requisition_id = db.Column(db.Integer, db.ForeignKey('requisitions.id'), nullable=False, index=True)
    filename       = db.Column(db.String(255), nullable=False)
    reference      = db.Column(db.String(500), nullable=False)
    content_type   = db.Column(db.String(100), nullable=True)
    size_bytes     = db.Column(db.Integer, nullable=True)
    uploaded_by    = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    uploaded_at    = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            'id':           self.id,
            'filename':     self.filename,
            'reference':    self.reference,
            'content_type': self.content_type,
            'size_bytes':   self.size_bytes,
            'uploaded_by':  self.uploaded_by,
            'uploaded_at':  self.uploaded_at.isoformat() if self.uploaded_at else None,
        }

    def __repr__(self):
        return f'<Attachment R:{self.requisition_id} {self.filename!r}>'


# ── Requisition number sequence ───────────────────────────────────

class RequisitionSequence(db.Model):
    """
    One row per (department code, YYYYMM): the last-used sequence number.
    Locked with SELECT … FOR UPDATE while a number is allocated, so two
    concurrent submissions in the same department and month never collide
    and a rolled-back submission consumes no number.
    """
    __tablename__ = 'requisition_sequences'

    dept_code = db.Column(db.String(10), primary_key=True)   # e.g. PROD
    period    = db.Column(db.String(6),  primary_key=True)   # e.g. 202610
    last_seq  = db.Column(db.Integer, nullable=False, default=0)

    def format_number(self, seq: int) -> str:
        return f'PR-{self.dept_code}-{self.period}-{seq:03d}'

    def __repr__(self):
        return f"<RequisitionSequence {self.dept_code} {self.period} last_seq={self.last_seq}>"
