"""
test_reports.py — Tests for the requisition summary and CSV export.
Run: pytest test_reports.py -v
"""
import os
os.environ['FLASK_RUN_FROM_CLI'] = '1'

import csv
import io

import pytest
from decimal import Decimal

from portal import create_app, db
from portal.auth.models import User, RoleEnum
from portal.routing.models import RoutingTier, RoutingApprover
from portal.workflow.service import WorkflowService


@pytest.fixture(scope='function')
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()

        users = {}
        for username, role, department in [
            ('admin', RoleEnum.admin, None),
            ('priya', RoleEnum.requester, 'Production'),
            ('ravi', RoleEnum.requester, 'Production'),
            ('sup', RoleEnum.approver, 'Production'),
        ]:
            u = User(name=username.title(), username=username, role=role, department=department)
            u.set_password('pw123')
            db.session.add(u)
            users[username] = u
        db.session.flush()
        db.session.add_all([
            RoutingTier(department='Production', min_total=Decimal('0'), max_level=1),
            RoutingApprover(department='Production', level=1, approver_id=users['sup'].id),
        ])
        db.session.commit()

        # priya: one approved (1000), one pending (2500), one draft (400); ravi: one pending (700)
        service = WorkflowService()
        approved = _raise(service, users['priya'], '1000', submit=True)
        service.act(approved.id, users['sup'].identity, 'approve')
        _raise(service, users['priya'], '2500', submit=True)
        _raise(service, users['priya'], '400')
        _raise(service, users['ravi'], '700', submit=True)

        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _raise(service, user, cost, submit=False):
    req = service.create_draft(user.identity, {
        'title': f'Purchase {cost}', 'location': 'Pune', 'justification_code': 'OPEX',
        'justification_details': 'Consumables', 'request_date': '2026-10-05',
        'line_items': [{'item_name': 'Consumables', 'quantity': '1', 'estimated_cost': cost}],
    })
    if submit:
        req = service.submit(req.id, user.identity)
    return req


def login(client, username):
    client.post('/auth/login', data={'username': username, 'password': 'pw123'})


def test_summary_for_requester_is_own_only(client):
    login(client, 'priya')
    body = client.get('/reports/summary').get_json()
    assert body['scope'] == 'own'
    assert body['count'] == 3
    assert body['total_value'] == '3900.00'
    assert body['by_status']['APPROVED'] == {'count': 1, 'total_value': '1000.00'}
    assert body['by_status']['PENDING'] == {'count': 1, 'total_value': '2500.00'}
    assert body['by_status']['REJECTED']['count'] == 0


def test_summary_for_admin_covers_everything(client):
    login(client, 'admin')
    body = client.get('/reports/summary').get_json()
    assert body['scope'] == 'all'
    assert body['count'] == 4
    assert body['by_status']['PENDING'] == {'count': 2, 'total_value': '3200.00'}


def test_summary_filters(client):
    login(client, 'admin')
    assert client.get('/reports/summary?status=draft').get_json()['count'] == 1
    assert client.get('/reports/summary?start=2026-11-01').get_json()['count'] == 0
    assert client.get('/reports/summary?start=not-a-date').get_json()['count'] == 4
    assert client.get('/reports/summary?status=lost').status_code == 400


def test_summary_requires_login(client):
    assert client.get('/reports/summary').status_code == 401


def test_csv_export_is_admin_only(client):
    login(client, 'priya')
    assert client.get('/reports/export.csv').status_code == 403


def test_csv_export(client):
    login(client, 'admin')
    resp = client.get('/reports/export.csv?status=pending')
    assert resp.status_code == 200
    assert resp.mimetype == 'text/csv'
    assert 'attachment;' in resp.headers['Content-Disposition']

    rows = list(csv.reader(io.StringIO(resp.get_data(as_text=True))))
    assert rows[0][0] == 'Requisition Number'
    assert len(rows) == 3
    assert {r[3] for r in rows[1:]} == {'Priya', 'Ravi'}
    assert all(r[8] == 'PENDING' and r[10] == 'Sup' for r in rows[1:])
    assert all(r[0].startswith('PR-PROD-') for r in rows[1:])


def test_csv_export_filename_uses_date_range(client):
    login(client, 'admin')
    resp = client.get('/reports/export.csv?start=2026-10-01&end=2026-10-31')
    assert 'requisitions_2026-10-01_to_2026-10-31.csv' in resp.headers['Content-Disposition']
    rows = list(csv.reader(io.StringIO(resp.get_data(as_text=True))))
    assert len(rows) == 5
