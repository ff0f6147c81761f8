"""
portal/reports/routes.py
──────────────────────────
Reporting on requisitions.

Routes:
  GET  /reports/summary      → counts and total value per status
                               (admins: every requisition, others: their own)
  GET  /reports/export.csv   → filtered CSV download (admin)

Filters (both routes): ?start=YYYY-MM-DD&end=YYYY-MM-DD&department=…&status=…
Dates filter on the request date.
"""
import csv
import io
from datetime import date, datetime
from decimal import Decimal

from flask import request, jsonify, Response
from sqlalchemy import func

from portal import db
from portal.reports import reports
from portal.auth.decorators import login_required, admin_required, current_identity
from portal.errors import ValidationError
from portal.requisitions.models import Requisition, RequisitionStatus


# ── Shared filter helper ──────────────────────────────────────────

def _apply_filters(query, args):
    """
    Apply date-range, department and status filters to a Requisition query.

    Malformed dates are ignored (same as an absent filter); an unknown
    status is a client error.
    """
    start_str = args.get('start', '')
    end_str   = args.get('end', '')

    if start_str:
        try:
            start_date = datetime.strptime(start_str, '%Y-%m-%d').date()
            query = query.filter(Requisition.request_date >= start_date)
        except ValueError:
            pass

    if end_str:
        try:
            end_date = datetime.strptime(end_str, '%Y-%m-%d').date()
            query = query.filter(Requisition.request_date <= end_date)
        except ValueError:
            pass

    if args.get('department'):
        query = query.filter(Requisition.department == args['department'])

    status = (args.get('status') or '').upper()
    if status:
        if status not in RequisitionStatus.__members__:
            raise ValidationError({'status': f'Unknown status {status!r}.'})
        query = query.filter(Requisition.status == RequisitionStatus[status])

    return query


# ═══════════════════════════════════════════════════════════════════
# 1. SUMMARY  —  GET /reports/summary
# ═══════════════════════════════════════════════════════════════════

@reports.route('/summary')
@login_required
def summary():
    actor = current_identity()

    q = db.session.query(
        Requisition.status,
        func.count(Requisition.id),
        func.coalesce(func.sum(Requisition.total_estimated_cost), 0),
    )
    if not actor.is_admin:
        q = q.filter(Requisition.requester_id == actor.id)
    q = _apply_filters(q, request.args)
    rows = q.group_by(Requisition.status).all()

    by_status = {s.value: {'count': 0, 'total_value': '0.00'} for s in RequisitionStatus}
    total_count, total_value = 0, Decimal('0')
    for status, count, value in rows:
        value = Decimal(str(value))
        by_status[status.value] = {'count': count, 'total_value': f'{value:.2f}'}
        total_count += count
        total_value += value

    return jsonify({
        'scope':       'all' if actor.is_admin else 'own',
        'by_status':   by_status,
        'count':       total_count,
        'total_value': f'{total_value:.2f}',
    })


# ═══════════════════════════════════════════════════════════════════
# 2. CSV EXPORT  —  GET /reports/export.csv
# ═══════════════════════════════════════════════════════════════════

@reports.route('/export.csv')
@admin_required
def export_csv():
    """Build the CSV in memory with csv + io.StringIO and send it as a download."""
    q = Requisition.query.order_by(Requisition.request_date.desc(), Requisition.id.desc())
    rows = _apply_filters(q, request.args).all()

    buf = io.StringIO()
    writer = csv.writer(buf)

    writer.writerow([
        'Requisition Number',
        'Request Date',
        'Title',
        'Requester',
        'Department',
        'Location',
        'Justification',
        'Total Estimated Cost',
        'Status',
        'Approval Level',
        'Current Approver',
    ])

    for req in rows:
        writer.writerow([
            req.requisition_number or '',
            req.request_date.strftime('%Y-%m-%d') if req.request_date else '',
            req.title or '',
            req.requester.name if req.requester else '',
            req.department or '',
            req.location or '',
            req.justification_code or '',
            f'{Decimal(req.total_estimated_cost or 0):.2f}',
            req.status.value,
            req.current_approval_level,
            req.approver.name if req.approver else '',
        ])

    today    = date.today().strftime('%Y%m%d')
    filename = f'requisitions_export_{today}.csv'
    if request.args.get('start'):
        filename = f"requisitions_{request.args['start']}_to_{request.args.get('end') or today}.csv"

    return Response(
        buf.getvalue(),
        mimetype='text/csv',
        headers={
            'Content-Disposition': f'attachment; filename="{filename}"',
            'Content-Type': 'text/csv; charset=utf-8',
        }
    )
