"""
portal/admin/routes.py
──────────────────────
Admin-only routing policy configuration.

Routes:
  GET  /admin/routing/tiers        → all tiers (optionally ?department=)
  POST /admin/routing/tiers        → add a tier {department, min_total, max_level}
  GET  /admin/routing/approvers    → all approver rows (optionally ?department=)
  POST /admin/routing/approvers    → add an approver {department, level, approver_id, location?}

Changes apply to the next routing decision; requisitions already PENDING
keep the approver they were assigned.
"""
from decimal import Decimal, InvalidOperation

from flask import request, jsonify, current_app
from sqlalchemy.exc import IntegrityError

from portal import db
from portal.admin import admin
from portal.auth.decorators import admin_required, current_user
from portal.auth.models import User, RoleEnum
from portal.errors import ValidationError
from portal.routing.models import RoutingTier, RoutingApprover


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _text(value) -> str:
    return str(value).strip() if value is not None else ''


def _positive_int(data, field, errors):
    try:
        value = int(_text(data.get(field)))
        if value < 1:
            raise ValueError
        return value
    except ValueError:
        errors[field] = f'{field.replace("_", " ").capitalize()} must be a whole number of at least 1.'
        return None


# ── Tiers ─────────────────────────────────────────────────────────

@admin.route('/routing/tiers', methods=['GET'])
@admin_required
def tiers():
    q = RoutingTier.query
    if request.args.get('department'):
        q = q.filter(RoutingTier.department == request.args['department'])
    rows = q.order_by(RoutingTier.department, RoutingTier.min_total).all()
    return jsonify({'tiers': [t.to_dict() for t in rows]})


@admin.route('/routing/tiers', methods=['POST'])
@admin_required
def add_tier():
    data   = _payload()
    errors = {}

    department = _text(data.get('department'))
    if not department:
        errors['department'] = 'Department is required.'

    try:
        min_total = Decimal(_text(data.get('min_total')) or '0').quantize(Decimal('0.01'))
        if min_total < 0:
            errors['min_total'] = 'Threshold cannot be negative.'
    except InvalidOperation:
        errors['min_total'] = 'Threshold must be a valid number.'
        min_total = None

    max_level = _positive_int(data, 'max_level', errors)
    if errors:
        raise ValidationError(errors)

    tier = RoutingTier(department=department, min_total=min_total, max_level=max_level)
    db.session.add(tier)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError({'min_total': f'{department} already has a tier starting at {min_total:.2f}.'})

    current_app.logger.info(
        f"Routing tier added by {current_user().username}: {department} ≥{min_total} → L{max_level}"
    )
    return jsonify(tier.to_dict()), 201


# ── Approvers ─────────────────────────────────────────────────────

@admin.route('/routing/approvers', methods=['GET'])
@admin_required
def approvers():
    q = RoutingApprover.query
    if request.args.get('department'):
        q = q.filter(RoutingApprover.department == request.args['department'])
    rows = q.order_by(RoutingApprover.department, RoutingApprover.level, RoutingApprover.location).all()
    return jsonify({'approvers': [a.to_dict() for a in rows]})


@admin.route('/routing/approvers', methods=['POST'])
@admin_required
def add_approver():
    data   = _payload()
    errors = {}

    department = _text(data.get('department'))
    if not department:
        errors['department'] = 'Department is required.'
    location = _text(data.get('location')) or None

    level       = _positive_int(data, 'level', errors)
    approver_id = _positive_int(data, 'approver_id', errors)
    if approver_id is not None:
        user = db.session.get(User, approver_id)
        if user is None or not user.is_active:
            errors['approver_id'] = 'Approver must be an active user.'
        elif user.role not in (RoleEnum.approver, RoleEnum.admin):
            errors['approver_id'] = 'Approver must have the approver or admin role.'
    if errors:
        raise ValidationError(errors)

    # NULL locations never collide in a unique index, so check department-wide rows here
    duplicate = RoutingApprover.query.filter_by(
        department=department, location=location, level=level
    ).first()
    if duplicate is not None:
        raise ValidationError({'level': f'{department} level {level} already has an approver.'})

    row = RoutingApprover(department=department, location=location,
                          level=level, approver_id=approver_id)
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError({'level': f'{department} level {level} already has an approver.'})

    current_app.logger.info(
        f"Routing approver added by {current_user().username}: "
        f"{department}/{location or '*'} L{level} → user {approver_id}"
    )
    return jsonify(row.to_dict()), 201
