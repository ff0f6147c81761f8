"""
portal/workflow/service.py
--------------------------
The operations the HTTP layer (or any other caller) uses.

    create_draft(actor, data)            → Requisition
    update_draft(id, actor, data)        → Requisition   (DRAFT / RETURNED only)
    submit(id, actor)                    → Requisition
    act(id, actor, action, comment, …)   → Requisition
    get(ref, actor)                      → Requisition   (self-heals from the ledger)
    history(ref, actor)                  → [AuditEntry]
    approval_chain(req)                  → [dict]          (progress per level)
    list_for(actor, scope, filters)      → [Requisition]
    add_attachment(id, actor, file)      → Attachment
    attachments(ref, actor)              → [Attachment]

Idempotency
───────────
A repeated submit/act (double click, network retry) must not append a
second ledger entry. The service looks for an entry the same actor already
committed for the same action:

  • caller sent `level`  → any entry in the current submission cycle with
                           (actor, action, level)
  • caller sent no level → the latest entry, if it is (actor, action) and
                           younger than IDEMPOTENCY_WINDOW_SECONDS

If one exists the request is a replay: nothing is written and the current
projection is returned. With a `level` the lookup runs once the state machine
refuses the request. Without one it runs first, and the machine is then held
to the level the caller could see, so a repeat never lands on the next level
of an approver who owns several.
"""
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import select

from portal import db
from portal.auth.models import User, RoleEnum
from portal.errors import (
    ValidationError, NotAuthorizedError, RequisitionNotFound,
    InvalidTransitionError, ConcurrencyConflictError, RoutingGapError,
)
from portal.ledger import ledger
from portal.ledger.models import AuditEntry, AuditAction
from portal.requisitions.models import Requisition, RequisitionStatus, Attachment
from portal.requisitions.numbering import parse_requisition_number
from portal.requisitions.validators import validate_requisition_form, parse_requisition_form
from portal.routing.resolver import chain_for
from portal.workflow import roles
from portal.workflow import notifications as notify
from portal.workflow.attachments import get_store, allowed_file
from portal.workflow.machine import WorkflowStateMachine


ACTION_MAP = {
    roles.APPROVE:       ('approve',       AuditAction.APPROVED),
    roles.REJECT:        ('reject',        AuditAction.REJECTED),
    roles.RETURN:        ('return_',       AuditAction.RETURNED),
    roles.ADMIN_APPROVE: ('admin_approve', AuditAction.ADMIN_APPROVED),
}


class WorkflowService:

    def __init__(self, machine=None, session=None):
        self.session = session or db.session
        self.machine = machine or WorkflowStateMachine(self.session)

    # ── Drafts ────────────────────────────────────────────────────

    def create_draft(self, actor, data: dict) -> Requisition:
        if not roles.permissions_for(actor).can(roles.CREATE):
            raise NotAuthorizedError(f'Role {actor.role!r} may not create requisitions.')

        errors = validate_requisition_form(data)
        if errors:
            raise ValidationError(errors)
        fields = parse_requisition_form(data)
        items  = fields.pop('line_items', [])

        req = Requisition(requester_id=actor.id, status=RequisitionStatus.DRAFT,
                          current_approval_level=0)
        for name, value in fields.items():
            setattr(req, name, value)
        if not req.department:
            req.department = actor.department
        req.replace_line_items(items)

        self.session.add(req)
        self.session.commit()
        current_app.logger.info(f"Draft requisition #{req.id} created by user {actor.id}")
        return req

    def update_draft(self, requisition_id, actor, data: dict) -> Requisition:
        """Edit header fields and/or replace line items while DRAFT or RETURNED."""
        req = self._find(requisition_id)
        errors = validate_requisition_form(data)
        if errors:
            raise ValidationError(errors, req)
        fields = parse_requisition_form(data)
        expected_version = _optional_int(data.get('version'), 'version')

        with self.machine.locks.hold(req.id):
            req = self._find(req.id, for_update=True)
            try:
                if actor.id != req.requester_id:
                    raise NotAuthorizedError('Only the requester can edit this requisition.', req)
                if not req.is_editable:
                    raise InvalidTransitionError(
                        f'A {req.status.value} requisition cannot be edited.', req
                    )
                if expected_version is not None and expected_version != req.version:
                    raise ConcurrencyConflictError(
                        f'Requisition is at version {req.version}, not {expected_version}.', req
                    )

                items = fields.pop('line_items', None)
                for name, value in fields.items():
                    setattr(req, name, value)
                if items is not None:
                    req.replace_line_items(items)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

        current_app.logger.info(f"Requisition #{req.id} edited by user {actor.id}")
        return req

    # ── Transitions ───────────────────────────────────────────────

    def submit(self, requisition_id, actor, comment=None) -> Requisition:
        req = self._find(requisition_id)
        try:
            transition = self.machine.submit(req.id, actor, comment=comment)
        except (InvalidTransitionError, ConcurrencyConflictError) as exc:
            if self._find_replay(req.id, actor, AuditAction.SUBMITTED, None) is None:
                raise
            current_app.logger.info(f"Duplicate submit of requisition #{req.id} ignored")
            return exc.requisition or self._find(req.id)
        except RoutingGapError:
            self._flag_routing_gap(req.id)
            raise

        self._announce(transition)
        return transition.requisition

    def act(self, requisition_id, actor, action, comment=None, level=None, version=None) -> Requisition:
        """Apply approve / reject / return / admin_approve for `actor`."""
        if action not in ACTION_MAP:
            raise ValidationError({'action': f'Unknown action {action!r}.'}, self._find(requisition_id))
        method_name, audit_action = ACTION_MAP[action]
        level   = _optional_int(level, 'level')
        version = _optional_int(version, 'version')

        req = self._find(requisition_id)
        expected_level = level
        if level is None and version is None:
            # A bare repeat must not fall through to the next level when the
            # same person approves several levels in a row.
            if self._find_replay(req.id, actor, audit_action, None) is not None:
                current_app.logger.info(
                    f"Duplicate {action} of requisition #{req.id} by user {actor.id} ignored"
                )
                return req
            expected_level = req.current_approval_level

        try:
            transition = getattr(self.machine, method_name)(
                req.id, actor, comment=comment,
                expected_level=expected_level, expected_version=version,
            )
        except (InvalidTransitionError, NotAuthorizedError, ConcurrencyConflictError) as exc:
            if self._find_replay(req.id, actor, audit_action, level) is None:
                raise
            current_app.logger.info(
                f"Duplicate {action} of requisition #{req.id} by user {actor.id} ignored"
            )
            return exc.requisition or self._find(req.id)
        except RoutingGapError:
            self._flag_routing_gap(req.id)
            raise

        self._announce(transition)
        return transition.requisition

    # ── Queries ───────────────────────────────────────────────────

    def get(self, ref, actor) -> Requisition:
        """
        Return the requisition after checking its cached projection against
        the ledger. A mismatch is logged and repaired from the ledger.
        """
        req = self._find(ref)
        self._require_view(req, actor)

        cached, folded = ledger.verify(req, self.session)
        if cached != folded:
            current_app.logger.warning(
                f"Requisition #{req.id} projection {cached} disagrees with ledger {folded}; repairing"
            )
            with self.machine.locks.hold(req.id):
                req = self._find(req.id, for_update=True)
                ledger.heal(req, self.session)
                self.session.commit()
        return req

    def history(self, ref, actor) -> list:
        req = self._find(ref)
        self._require_view(req, actor)
        return ledger.history_for(req.id, self.session)

    def approval_chain(self, req) -> list:
        """
        One row per level this requisition needs, for progress display.

        Levels cleared in the current submission cycle name the person who
        actually approved them; the rest come from today's routing policy.
        state is one of approved / pending / waiting / skipped / unassigned.
        """
        policy = self.machine.policy_loader(req.department, req.location, self.session)
        steps  = chain_for(req, policy, allow_gaps=True)

        approved_by = {}
        if req.status not in (RequisitionStatus.DRAFT, RequisitionStatus.RETURNED):
            for entry in _current_cycle(ledger.history_for(req.id, self.session)):
                if entry.action == AuditAction.APPROVED:
                    approved_by[entry.level] = entry.actor_id

        chain = []
        for step in steps:
            approver_id = approved_by.get(step.level, step.approver_id)
            if step.level in approved_by:
                state = 'approved'
            elif step.approver_id is None:
                state = 'unassigned'
            elif req.status == RequisitionStatus.PENDING and step.level == req.current_approval_level:
                state = 'pending'
            elif req.status == RequisitionStatus.APPROVED:
                state = 'skipped'       # cleared by an admin override
            else:
                state = 'waiting'
            approver = self.session.get(User, approver_id) if approver_id else None
            chain.append({
                'level':         step.level,
                'approver_id':   approver_id,
                'approver_name': approver.name if approver else None,
                'state':         state,
            })
        return chain

    def list_for(self, actor, scope=None, status=None, department=None, location=None) -> list:
        perms = roles.permissions_for(actor)
        scope = scope or roles.default_scope(actor)
        if not perms.can_view(scope):
            raise NotAuthorizedError(f'Role {actor.role!r} may not list {scope!r} requisitions.')

        q = self.session.query(Requisition)
        if scope == roles.OWN:
            q = q.filter(Requisition.requester_id == actor.id)
        elif scope == roles.ASSIGNED:
            q = q.filter(Requisition.current_approver_id == actor.id,
                         Requisition.status == RequisitionStatus.PENDING)
        elif scope == roles.ACTED:
            acted = select(AuditEntry.requisition_id).where(AuditEntry.actor_id == actor.id)
            q = q.filter(Requisition.id.in_(acted))

        if status:
            if status.upper() not in RequisitionStatus.__members__:
                raise ValidationError({'status': f'Unknown status {status!r}.'})
            q = q.filter(Requisition.status == RequisitionStatus[status.upper()])
        if department:
            q = q.filter(Requisition.department == department)
        if location:
            q = q.filter(Requisition.location == location)

        return q.order_by(Requisition.created_at.desc(), Requisition.id.desc()).all()

    # ── Attachments ───────────────────────────────────────────────

    def add_attachment(self, requisition_id, actor, file) -> Attachment:
        req = self._find(requisition_id)
        if actor.id != req.requester_id and not actor.is_admin:
            raise NotAuthorizedError('Only the requester can attach files.', req)
        if req.is_terminal:
            raise InvalidTransitionError(f'A {req.status.value} requisition is closed.', req)
        if file is None or not file.filename:
            raise ValidationError({'file': 'Choose a file to upload.'}, req)
        if not allowed_file(file.filename):
            raise ValidationError({'file': 'This file type is not allowed.'}, req)

        reference = get_store().save(req.id, file)
        size = file.stream.tell() if hasattr(file.stream, 'tell') else None
        attachment = Attachment(
            requisition_id=req.id,
            filename=file.filename,
            reference=reference,
            content_type=file.mimetype,
            size_bytes=size,
            uploaded_by=actor.id,
        )
        self.session.add(attachment)
        self.session.commit()
        current_app.logger.info(f"Attachment {reference} added to requisition #{req.id}")
        return attachment

    def attachments(self, ref, actor) -> list:
        req = self._find(ref)
        self._require_view(req, actor)
        return list(req.attachments)

    # ── Internal helpers ──────────────────────────────────────────

    def _find(self, ref, for_update=False) -> Requisition:
        """Look up by integer id or by requisition number."""
        q = self.session.query(Requisition)
        if isinstance(ref, int) or str(ref).isdigit():
            q = q.filter(Requisition.id == int(ref))
        else:
            try:
                parse_requisition_number(str(ref))
            except ValueError:
                raise RequisitionNotFound(f'{ref!r} is not a requisition number.')
            q = q.filter(Requisition.requisition_number == str(ref))
        if for_update:
            q = q.with_for_update().populate_existing()
        req = q.first()
        if req is None:
            raise RequisitionNotFound(f'Requisition {ref} does not exist.')
        return req

    def _require_view(self, req, actor):
        if actor.is_admin or actor.id in (req.requester_id, req.current_approver_id):
            return
        involved = (
            self.session.query(AuditEntry.id)
            .filter(AuditEntry.requisition_id == req.id)
            .filter((AuditEntry.actor_id == actor.id) | (AuditEntry.assigned_to == actor.id))
            .first()
        )
        if involved is None:
            raise NotAuthorizedError('You are not involved in this requisition.')

    def _find_replay(self, requisition_id, actor, action, level):
        entries = ledger.history_for(requisition_id, self.session)
        if not entries:
            return None

        if level is None:
            latest = entries[-1]
            window = timedelta(seconds=current_app.config['IDEMPOTENCY_WINDOW_SECONDS'])
            if (latest.actor_id == actor.id and latest.action == action
                    and datetime.utcnow() - latest.created_at <= window):
                return latest
            return None

        for entry in reversed(_current_cycle(entries)):
            if entry.actor_id == actor.id and entry.action == action and entry.level == level:
                return entry
        return None

    def _announce(self, transition):
        """Tell the people affected by a committed transition."""
        req, entry = transition.requisition, transition.entry
        requester  = req.requester_id

        if entry.action == AuditAction.SUBMITTED:
            notify.deliver(req.id, notify.APPROVAL_REQUESTED, [entry.assigned_to])
            notify.deliver(req.id, notify.SUBMITTED, [requester])
        elif entry.action == AuditAction.APPROVED and entry.assigned_to is not None:
            notify.deliver(req.id, notify.APPROVAL_REQUESTED, [entry.assigned_to])
            notify.deliver(req.id, notify.LEVEL_APPROVED, [requester])
        elif entry.action in (AuditAction.APPROVED, AuditAction.ADMIN_APPROVED):
            notify.deliver(req.id, notify.APPROVED, [requester])
        elif entry.action == AuditAction.REJECTED:
            notify.deliver(req.id, notify.REJECTED, [requester])
        elif entry.action == AuditAction.RETURNED:
            notify.deliver(req.id, notify.RETURNED, [requester])

    def _flag_routing_gap(self, requisition_id):
        """Raise the misconfiguration with every admin; the requisition is left untouched."""
        admin_ids = [
            uid for (uid,) in self.session.query(User.id)
            .filter(User.role == RoleEnum.admin, User.is_active.is_(True))
        ]
        notify.deliver(requisition_id, notify.ROUTING_GAP, admin_ids)


def get_workflow_service() -> WorkflowService:
    """Service bound to the current app's session and per-requisition locks."""
    return WorkflowService()


def _optional_int(value, field):
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError({field: f'{field.capitalize()} must be a whole number.'})


def _current_cycle(entries: list) -> list:
    """Ledger entries from the latest SUBMITTED onwards."""
    start = max((i for i, e in enumerate(entries) if e.action == AuditAction.SUBMITTED), default=0)
    return entries[start:]
