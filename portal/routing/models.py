"""
portal/routing/models.py
------------------------
Routing policy configuration.

Tables:
  routing_tiers      department × cost threshold → maximum approval level
  routing_approvers  department × level (× optional location) → approver

Example (Finance):
  tier  min_total=0       max_level=2
  tier  min_total=100000  max_level=3
  approver level=1 → supervisor, level=2 → department head, level=3 → CFO
"""
from datetime import datetime
from decimal import Decimal

from portal import db


class RoutingTier(db.Model):
    """Cost tier for a department: totals ≥ min_total need max_level approvals."""
    __tablename__ = 'routing_tiers'

    id         = db.Column(db.Integer, primary_key=True)
    department = db.Column(db.String(100), nullable=False, index=True)
    min_total  = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal('0'))
    max_level  = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('department', 'min_total', name='uq_routing_tier'),
        db.CheckConstraint('max_level >= 1', name='check_tier_max_level'),
    )

    def to_dict(self) -> dict:
        return {
            'id':         self.id,
            'department': self.department,
            'min_total':  f'{Decimal(self.min_total):.2f}',
            'max_level':  self.max_level,
        }

    def __repr__(self):
        return f'<RoutingTier {self.department} ≥{self.min_total} → L{self.max_level}>'


class RoutingApprover(db.Model):
    """
    The approver for one level of a department's chain.
    A row with a location overrides the department-wide row (location NULL)
    for requisitions raised at that location.
    """
    __tablename__ = 'routing_approvers'

    id          = db.Column(db.Integer, primary_key=True)
    department  = db.Column(db.String(100), nullable=False, index=True)
    location    = db.Column(db.String(100), nullable=True)
    level       = db.Column(db.Integer, nullable=False)
    approver_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at  = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    approver = db.relationship('User', lazy='select')

    __table_args__ = (
        db.UniqueConstraint('department', 'location', 'level', name='uq_routing_approver'),
        db.CheckConstraint('level >= 1', name='check_approver_level'),
    )

    def to_dict(self) -> dict:
        return {
            'id':            self.id,
            'department':    self.department,
            'location':      self.location,
            'level':         self.level,
            'approver_id':   self.approver_id,
            'approver_name': self.approver.name if self.approver else None,
        }

    def __repr__(self):
        return f'<RoutingApprover {self.department}/{self.location or "*"} L{self.level} → {self.approver_id}>'
