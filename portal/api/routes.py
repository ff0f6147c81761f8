"""
portal/api/routes.py
--------------------
JSON API for the requisition workflow.

Routes:
  POST /api/requisitions                         → create draft
  GET  /api/requisitions                         → list for the current user
  GET  /api/requisitions/<ref>                   → one requisition (id or PR number)
  PUT  /api/requisitions/<ref>                   → edit a DRAFT / RETURNED requisition
  POST /api/requisitions/<ref>/submit            → submit / resubmit
  POST /api/requisitions/<ref>/act               → approve | reject | return | admin_approve
  GET  /api/requisitions/<ref>/history           → audit ledger, oldest first
  GET  /api/requisitions/<ref>/attachments       → attachment references
  POST /api/requisitions/<ref>/attachments       → upload (multipart, field "file")
  GET  /api/requisitions/<ref>/attachments/<id>  → download

Every workflow failure is raised as a WorkflowError and rendered by the
app-level handler; routes only translate HTTP ↔ service calls.
"""
import os

from flask import request, jsonify, send_file, abort

from portal import db
from portal.auth.decorators import login_required, current_identity
from portal.errors import ValidationError
from portal.api import requisitions
from portal.requisitions.models import Attachment
from portal.workflow.attachments import get_store
from portal.workflow.service import get_workflow_service


def _payload() -> dict:
    """JSON object body, or form fields for simple clients."""
    data = request.get_json(silent=True)
    if data is None:
        return request.form.to_dict()
    if not isinstance(data, dict):
        raise ValidationError({'body': 'Request body must be a JSON object.'})
    return data


# ── Drafts ────────────────────────────────────────────────────────

@requisitions.route('', methods=['POST'])
@login_required
def create():
    req = get_workflow_service().create_draft(current_identity(), _payload())
    return jsonify(req.to_dict()), 201


@requisitions.route('/<ref>', methods=['PUT'])
@login_required
def update(ref):
    req = get_workflow_service().update_draft(ref, current_identity(), _payload())
    return jsonify(req.to_dict())


# ── Transitions ───────────────────────────────────────────────────

@requisitions.route('/<ref>/submit', methods=['POST'])
@login_required
def submit(ref):
    data = _payload()
    req = get_workflow_service().submit(ref, current_identity(), comment=data.get('comment'))
    return jsonify(req.to_dict())


@requisitions.route('/<ref>/act', methods=['POST'])
@login_required
def act(ref):
    """Body: {"action": "approve", "comment": "...", "level": 1, "version": 3}"""
    data = _payload()
    req = get_workflow_service().act(
        ref, current_identity(),
        action=(data.get('action') or '').strip().lower(),
        comment=data.get('comment'),
        level=data.get('level'),
        version=data.get('version'),
    )
    return jsonify(req.to_dict())


# ── Queries ───────────────────────────────────────────────────────

@requisitions.route('', methods=['GET'])
@login_required
def index():
    rows = get_workflow_service().list_for(
        current_identity(),
        scope=request.args.get('scope') or None,
        status=request.args.get('status') or None,
        department=request.args.get('department') or None,
        location=request.args.get('location') or None,
    )
    return jsonify({
        'count':        len(rows),
        'requisitions': [r.to_dict(include_items=False) for r in rows],
    })


@requisitions.route('/<ref>', methods=['GET'])
@login_required
def detail(ref):
    service = get_workflow_service()
    req  = service.get(ref, current_identity())
    data = req.to_dict()
    data['approval_chain'] = service.approval_chain(req)
    return jsonify(data)


@requisitions.route('/<ref>/history', methods=['GET'])
@login_required
def history(ref):
    entries = get_workflow_service().history(ref, current_identity())
    return jsonify({'history': [e.to_dict() for e in entries]})


# ── Attachments ───────────────────────────────────────────────────

@requisitions.route('/<ref>/attachments', methods=['GET'])
@login_required
def attachments(ref):
    rows = get_workflow_service().attachments(ref, current_identity())
    return jsonify({'attachments': [a.to_dict() for a in rows]})


@requisitions.route('/<ref>/attachments', methods=['POST'])
@login_required
def upload_attachment(ref):
    attachment = get_workflow_service().add_attachment(
        ref, current_identity(), request.files.get('file')
    )
    return jsonify(attachment.to_dict()), 201


@requisitions.route('/<ref>/attachments/<int:attachment_id>', methods=['GET'])
@login_required
def download_attachment(ref, attachment_id):
    # Visibility is checked through the requisition
    req = get_workflow_service().get(ref, current_identity())
    attachment = db.session.get(Attachment, attachment_id)
    if attachment is None or attachment.requisition_id != req.id:
        abort(404)
    try:
        stream = get_store().open(attachment.reference)
    except (OSError, ValueError):
        abort(404)
    return send_file(
        stream,
        mimetype=attachment.content_type or 'application/octet-stream',
        as_attachment=True,
        download_name=os.path.basename(attachment.filename),
    )
