"""
portal/workflow/machine.py
--------------------------
The requisition workflow state machine.

    DRAFT ──submit──▶ PENDING ──approve (last level)──▶ APPROVED
                       │  ▲ └─approve (more levels)──┘ (stays PENDING, level+1)
                       │  └──────────submit──────────┐
                       ├──return──▶ RETURNED ────────┘
                       ├──reject──▶ REJECTED
                       └──admin_approve──▶ APPROVED

Every transition runs the same way:
  1. take the per-requisition lock and SELECT … FOR UPDATE the row
  2. check status, actor authority and (optionally) the caller's level/version
  3. resolve routing (a config read, then pure resolution)
  4. build the AuditEntry and run it through ledger.fold.apply_entry;
     the same transition table used to replay the ledger
  5. write the new projection onto the row, append the entry, commit

Steps 4–5 share one transaction: the row update and the ledger append are
committed together or rolled back together. The version column on the row
is checked on flush, so a writer that slipped past the lock (another
process on SQLite, a stale session) fails with ConcurrencyConflictError.
"""
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from portal import db
from portal.errors import (
    WorkflowError, ValidationError, NotAuthorizedError, RequisitionNotFound,
    InvalidTransitionError, ConcurrencyConflictError, RoutingGapError,
)
from portal.ledger import ledger
from portal.ledger.fold import Projection, apply_entry, projection_of
from portal.ledger.models import AuditEntry, AuditAction
from portal.requisitions.models import Requisition, RequisitionStatus
from portal.requisitions.numbering import generate_requisition_number
from portal.requisitions.validators import validate_for_submission
from portal.routing.policy import load_policy
from portal.routing.resolver import resolve_next, COMPLETE
from portal.workflow import roles


@dataclass
class Transition:
    """A committed transition: the updated row, its ledger entry and the state before it."""
    requisition: Requisition
    entry:       AuditEntry
    previous:    Projection


class WorkflowStateMachine:

    def __init__(self, session=None, locks=None, policy_loader=load_policy):
        self.session       = session or db.session
        self.locks         = locks if locks is not None else current_app.extensions['requisition_locks']
        self.policy_loader = policy_loader

    # ── Transitions ───────────────────────────────────────────────

    def submit(self, requisition_id, actor, comment=None) -> Transition:
        """DRAFT/RETURNED → PENDING at level 1 with the first approver assigned."""
        with self._transition(requisition_id) as req:
            if req.status not in (RequisitionStatus.DRAFT, RequisitionStatus.RETURNED):
                raise InvalidTransitionError(
                    f'Only DRAFT or RETURNED requisitions can be submitted (this one is {req.status.value}).'
                )
            if actor.id != req.requester_id:
                raise NotAuthorizedError('Only the original requester can submit this requisition.')
            self._require_role(actor, roles.SUBMIT)

            errors = validate_for_submission(req)
            if errors:
                raise ValidationError(errors)

            step = resolve_next(req, 0, self._policy(req))
            if step is COMPLETE:
                raise RoutingGapError(
                    f'Routing for {req.department!r} requires no approval level.',
                    department=req.department, level=1,
                )

            now = datetime.utcnow()
            if req.requisition_number is None:
                req.requisition_number = generate_requisition_number(self.session, req.department)
            req.submitted_at = now
            req.decided_at   = None

            return self._apply(req, actor, AuditAction.SUBMITTED,
                               assigned_to=step.approver_id, comment=comment)

    def approve(self, requisition_id, actor, comment=None,
                expected_level=None, expected_version=None) -> Transition:
        """Clear the current level: hand over to the next approver, or finish as APPROVED."""
        with self._transition(requisition_id) as req:
            self._guard_pending(req, actor, roles.APPROVE, expected_level, expected_version)

            step = resolve_next(req, req.current_approval_level, self._policy(req))
            if step is COMPLETE:
                req.decided_at = datetime.utcnow()
                assigned_to = None
            else:
                assigned_to = step.approver_id

            return self._apply(req, actor, AuditAction.APPROVED,
                               assigned_to=assigned_to, comment=comment)

    def reject(self, requisition_id, actor, comment=None,
               expected_level=None, expected_version=None) -> Transition:
        """PENDING → REJECTED (terminal)."""
        with self._transition(requisition_id) as req:
            self._guard_pending(req, actor, roles.REJECT, expected_level, expected_version)
            req.decided_at = datetime.utcnow()
            return self._apply(req, actor, AuditAction.REJECTED, comment=comment)

    def return_(self, requisition_id, actor, comment=None,
                expected_level=None, expected_version=None) -> Transition:
        """PENDING → RETURNED; the requester may edit and resubmit."""
        with self._transition(requisition_id) as req:
            self._guard_pending(req, actor, roles.RETURN, expected_level, expected_version)
            return self._apply(req, actor, AuditAction.RETURNED, comment=comment)

    def admin_approve(self, requisition_id, actor, comment=None,
                      expected_level=None, expected_version=None) -> Transition:
        """Admin override: PENDING at any level → APPROVED, recorded at the current level."""
        with self._transition(requisition_id) as req:
            self._guard_pending(req, actor, roles.ADMIN_APPROVE, expected_level, expected_version)
            req.decided_at = datetime.utcnow()
            return self._apply(req, actor, AuditAction.ADMIN_APPROVED, comment=comment)

    # ── Internals ─────────────────────────────────────────────────

    @contextmanager
    def _transition(self, requisition_id):
        """Serialise on the requisition and run the body as one transaction."""
        with self.locks.hold(requisition_id):
            try:
                yield self._load_for_update(requisition_id)
                self.session.commit()
            except RoutingGapError as exc:
                self.session.rollback()
                current_app.logger.error(f"Routing gap on requisition #{requisition_id}: {exc.message}")
                raise exc.with_requisition(self._current(requisition_id))
            except WorkflowError as exc:
                self.session.rollback()
                current_app.logger.warning(
                    f"Transition refused on requisition #{requisition_id} ({exc.kind}): {exc.message}"
                )
                raise exc.with_requisition(self._current(requisition_id))
            except (StaleDataError, IntegrityError) as exc:
                self.session.rollback()
                current_app.logger.warning(
                    f"Concurrent update on requisition #{requisition_id}: {exc.__class__.__name__}"
                )
                raise ConcurrencyConflictError(
                    'The requisition changed while this action was being applied. Re-fetch and retry.',
                    self._current(requisition_id),
                ) from exc
            except Exception:
                self.session.rollback()
                raise

    def _load_for_update(self, requisition_id) -> Requisition:
        req = (
            self.session.query(Requisition)
            .filter(Requisition.id == requisition_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if req is None:
            raise RequisitionNotFound(f'Requisition {requisition_id} does not exist.')
        return req

    def _current(self, requisition_id):
        return self.session.get(Requisition, requisition_id)

    def _policy(self, req):
        return self.policy_loader(req.department, req.location, self.session)

    def _require_role(self, actor, action):
        if not roles.permissions_for(actor).can(action):
            raise NotAuthorizedError(f'Role {actor.role!r} may not {action.replace("_", " ")}.')

    def _guard_pending(self, req, actor, action, expected_level, expected_version):
        """Shared guard for every transition out of PENDING."""
        if req.status != RequisitionStatus.PENDING:
            raise InvalidTransitionError(
                f'Requisition is {req.status.value}; only PENDING requisitions can be acted on.'
            )
        if expected_version is not None and expected_version != req.version:
            raise ConcurrencyConflictError(
                f'Requisition is at version {req.version}, not {expected_version}. Re-fetch and retry.'
            )
        if expected_level is not None and expected_level != req.current_approval_level:
            raise InvalidTransitionError(
                f'Requisition is at level {req.current_approval_level}, not {expected_level}.'
            )
        if action == roles.ADMIN_APPROVE:
            if not actor.is_admin:
                raise NotAuthorizedError('Only an admin can override the approval chain.')
        elif actor.id != req.current_approver_id:
            raise NotAuthorizedError('Only the current approver can act on this requisition.')
        self._require_role(actor, action)

    def _apply(self, req, actor, action, assigned_to=None, comment=None) -> Transition:
        """Validate the entry against the projection, write both, return the transition."""
        previous = projection_of(req)
        entry = AuditEntry(
            requisition_id=req.id,
            actor_id=actor.id,
            action=action,
            level=req.current_approval_level,
            assigned_to=assigned_to,
            comment=(comment or '').strip() or None,
        )
        new = apply_entry(previous, entry)

        req.status                 = new.status
        req.current_approval_level = new.level
        req.current_approver_id    = new.approver_id
        ledger.append(entry, self.session)

        current_app.logger.info(
            f"Requisition #{req.id} {action.value} by user {actor.id}: {previous} → {new}"
        )
        return Transition(requisition=req, entry=entry, previous=previous)
