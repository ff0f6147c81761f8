"""
portal/routing/policy.py
------------------------
Loads a department's routing configuration into a RoutingPolicy snapshot.
This is the only I/O the resolver path performs.
"""
from decimal import Decimal

from portal import db
from portal.routing.models import RoutingTier, RoutingApprover
from portal.routing.resolver import RoutingPolicy


def load_policy(department: str, location: str = None, session=None) -> RoutingPolicy:
    """
    Build the policy for `department`. Location-specific approver rows
    override the department-wide row for the same level.
    """
    session = session or db.session

    tiers = (
        session.query(RoutingTier)
        .filter(RoutingTier.department == department)
        .order_by(RoutingTier.min_total.asc())
        .all()
    )

    rows = (
        session.query(RoutingApprover)
        .filter(RoutingApprover.department == department)
        .filter((RoutingApprover.location.is_(None)) | (RoutingApprover.location == location))
        .all()
    )
    approvers = {}
    # Department-wide rows first, so location rows win
    for row in sorted(rows, key=lambda r: r.location is not None):
        approvers[row.level] = row.approver_id

    return RoutingPolicy(
        department=department,
        tiers=tuple((Decimal(t.min_total), t.max_level) for t in tiers),
        approvers=approvers,
    )
