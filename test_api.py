"""
test_api.py — HTTP tests for the requisition API, auth and admin routing screens.
Run: pytest test_api.py -v
"""
import os
os.environ['FLASK_RUN_FROM_CLI'] = '1'

import io

import pytest
from decimal import Decimal

from portal import create_app, db
from portal.auth.models import User, RoleEnum
from portal.routing.models import RoutingTier, RoutingApprover


# ── Fixtures ──────────────────────────────────────────────────────

@pytest.fixture(scope='function')
def app(tmp_path):
    app = create_app('testing', overrides={'UPLOAD_FOLDER': str(tmp_path / 'uploads')})
    with app.app_context():
        db.create_all()

        people = {}
        for username, role, department in [
            ('admin', RoleEnum.admin, None),
            ('priya', RoleEnum.requester, 'Production'),
            ('arjun', RoleEnum.requester, 'Finance'),
            ('sup.prod', RoleEnum.approver, 'Production'),
        ]:
            u = User(name=username.title(), username=username, role=role, department=department)
            u.set_password('pw123')
            db.session.add(u)
            people[username] = u
        db.session.flush()
        db.session.add_all([
            RoutingTier(department='Production', min_total=Decimal('0'), max_level=1),
            RoutingApprover(department='Production', level=1, approver_id=people['sup.prod'].id),
        ])
        db.session.commit()

        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, username):
    resp = client.post('/auth/login', json={'username': username, 'password': 'pw123'})
    assert resp.status_code == 200
    return resp


def user_id(username):
    return User.query.filter_by(username=username).first().id


DRAFT = {
    'title': 'Safety gloves',
    'location': 'Pune',
    'entity': 'ACME',
    'justification_code': 'SAFETY',
    'justification_details': 'Quarterly replenishment',
    'line_items': [
        {'item_name': 'Nitrile gloves (box)', 'quantity': '40', 'unit_of_measure': 'box',
         'estimated_cost': '3200.00', 'required_by': '2026-11-15'},
    ],
}


def create_and_submit(client):
    login(client, 'priya')
    rid = client.post('/api/requisitions', json=DRAFT).get_json()['id']
    resp = client.post(f'/api/requisitions/{rid}/submit', json={})
    assert resp.status_code == 200
    return resp.get_json()


# ── Auth ──────────────────────────────────────────────────────────

def test_login_and_me(client):
    resp = login(client, 'priya')
    assert resp.get_json()['role'] == 'requester'
    assert client.get('/auth/me').get_json()['username'] == 'priya'

    client.post('/auth/logout')
    assert client.get('/auth/me').status_code == 401


def test_login_rejects_bad_password(client):
    resp = client.post('/auth/login', data={'username': 'priya', 'password': 'nope'})
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'not_authenticated'


def test_api_requires_login(client):
    resp = client.get('/api/requisitions')
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'not_authenticated'


# ── Requisition lifecycle ─────────────────────────────────────────

def test_create_draft(client):
    login(client, 'priya')
    resp = client.post('/api/requisitions', json=DRAFT)
    assert resp.status_code == 201
    data = resp.get_json()
    assert data['status'] == 'DRAFT'
    assert data['department'] == 'Production'
    assert data['total_estimated_cost'] == '3200.00'
    assert data['line_items'][0]['required_by'] == '2026-11-15'
    assert data['requisition_number'] is None


def test_create_draft_validation_payload(client):
    login(client, 'priya')
    bad = dict(DRAFT, justification_code='WHIM')
    resp = client.post('/api/requisitions', json=bad)
    assert resp.status_code == 400
    body = resp.get_json()
    assert body['error'] == 'validation_error'
    assert 'justification_code' in body['fields']
    assert body['requisition'] is None


def test_full_approval_over_http(client, app):
    data = create_and_submit(client)
    assert data['status'] == 'PENDING'
    assert data['current_approval_level'] == 1
    assert data['requisition_number'].startswith('PR-PROD-')

    login(client, 'sup.prod')
    resp = client.post(f"/api/requisitions/{data['id']}/act",
                       json={'action': 'approve', 'comment': 'Go ahead', 'level': 1})
    assert resp.status_code == 200
    assert resp.get_json()['status'] == 'APPROVED'

    history = client.get(f"/api/requisitions/{data['id']}/history").get_json()['history']
    assert [h['action'] for h in history] == ['SUBMITTED', 'APPROVED']
    assert history[1]['comment'] == 'Go ahead'
    assert history[1]['actor_id'] == user_id('sup.prod')


def test_get_by_requisition_number(client):
    data = create_and_submit(client)
    resp = client.get(f"/api/requisitions/{data['requisition_number']}")
    assert resp.status_code == 200
    assert resp.get_json()['id'] == data['id']


def test_malformed_requisition_number_gets_404(client):
    login(client, 'priya')
    resp = client.get('/api/requisitions/PO-PROD-2026-1')
    assert resp.status_code == 404
    assert resp.get_json()['error'] == 'not_found'


def test_detail_shows_approval_chain(client):
    data = create_and_submit(client)
    chain = client.get(f"/api/requisitions/{data['id']}").get_json()['approval_chain']
    assert chain == [{'level': 1, 'approver_id': user_id('sup.prod'),
                      'approver_name': 'Sup.Prod', 'state': 'pending'}]

    login(client, 'sup.prod')
    client.post(f"/api/requisitions/{data['id']}/act", json={'action': 'approve', 'level': 1})
    chain = client.get(f"/api/requisitions/{data['id']}").get_json()['approval_chain']
    assert [step['state'] for step in chain] == ['approved']


def test_approval_chain_marks_unassigned_level(client):
    db.session.add_all([
        RoutingTier(department='Stores', min_total=Decimal('0'), max_level=2),
        RoutingApprover(department='Stores', level=1, approver_id=user_id('sup.prod')),
    ])
    db.session.commit()

    login(client, 'priya')
    rid = client.post('/api/requisitions', json=dict(DRAFT, department='Stores')).get_json()['id']
    assert client.post(f'/api/requisitions/{rid}/submit', json={}).status_code == 200

    chain = client.get(f'/api/requisitions/{rid}').get_json()['approval_chain']
    assert [(s['level'], s['state']) for s in chain] == [(1, 'pending'), (2, 'unassigned')]
    assert chain[1]['approver_id'] is None


def test_non_object_json_body_gets_400(client):
    login(client, 'priya')
    for body in ([DRAFT], 'gloves', 42):
        resp = client.post('/api/requisitions', json=body)
        assert resp.status_code == 400
        assert 'body' in resp.get_json()['fields']


def test_edit_returned_requisition(client):
    data = create_and_submit(client)
    login(client, 'sup.prod')
    client.post(f"/api/requisitions/{data['id']}/act", json={'action': 'return', 'comment': 'Quote?'})

    login(client, 'priya')
    resp = client.put(f"/api/requisitions/{data['id']}", json={'justification_details': 'Quote attached'})
    assert resp.status_code == 200
    assert resp.get_json()['status'] == 'RETURNED'

    resp = client.post(f"/api/requisitions/{data['id']}/submit", json={})
    assert resp.get_json()['status'] == 'PENDING'
    assert resp.get_json()['requisition_number'] == data['requisition_number']


def test_duplicate_approve_returns_same_result(client):
    data = create_and_submit(client)
    login(client, 'sup.prod')
    url = f"/api/requisitions/{data['id']}/act"
    first  = client.post(url, json={'action': 'approve', 'level': 1})
    second = client.post(url, json={'action': 'approve', 'level': 1})

    assert first.status_code == second.status_code == 200
    assert second.get_json()['status'] == 'APPROVED'
    history = client.get(f"/api/requisitions/{data['id']}/history").get_json()['history']
    assert len(history) == 2


# ── Error payloads ────────────────────────────────────────────────

def test_wrong_actor_gets_403_with_current_state(client):
    data = create_and_submit(client)
    resp = client.post(f"/api/requisitions/{data['id']}/act", json={'action': 'approve'})
    assert resp.status_code == 403
    body = resp.get_json()
    assert body['error'] == 'not_authorized'
    assert body['requisition']['status'] == 'PENDING'


def test_stale_level_gets_409(client):
    data = create_and_submit(client)
    login(client, 'sup.prod')
    resp = client.post(f"/api/requisitions/{data['id']}/act", json={'action': 'approve', 'level': 3})
    assert resp.status_code == 409
    body = resp.get_json()
    assert body['error'] == 'invalid_transition'
    assert body['requisition']['current_approval_level'] == 1


def test_stale_version_gets_409(client):
    data = create_and_submit(client)
    login(client, 'sup.prod')
    resp = client.post(f"/api/requisitions/{data['id']}/act",
                       json={'action': 'approve', 'version': data['version'] - 1})
    assert resp.status_code == 409
    assert resp.get_json()['error'] == 'concurrency_conflict'


def test_unknown_action_gets_400(client):
    data = create_and_submit(client)
    login(client, 'sup.prod')
    resp = client.post(f"/api/requisitions/{data['id']}/act", json={'action': 'escalate'})
    assert resp.status_code == 400
    assert 'action' in resp.get_json()['fields']


def test_unknown_requisition_gets_404(client):
    login(client, 'priya')
    resp = client.get('/api/requisitions/4040')
    assert resp.status_code == 404
    assert resp.get_json()['error'] == 'not_found'


def test_routing_gap_gets_422(client, app):
    login(client, 'arjun')
    rid = client.post('/api/requisitions', json=DRAFT).get_json()['id']   # Finance: no routing
    resp = client.post(f'/api/requisitions/{rid}/submit', json={})
    assert resp.status_code == 422
    body = resp.get_json()
    assert body['error'] == 'routing_gap'
    assert body['requisition']['status'] == 'DRAFT'

    sink = app.extensions['notification_sink']
    assert 'routing_gap' in sink.events_for(user_id('admin'))


# ── Listing ───────────────────────────────────────────────────────

def test_list_scopes(client):
    data = create_and_submit(client)
    mine = client.get('/api/requisitions').get_json()
    assert mine['count'] == 1
    assert 'line_items' not in mine['requisitions'][0]
    assert client.get('/api/requisitions?scope=all').status_code == 403

    login(client, 'sup.prod')
    assigned = client.get('/api/requisitions').get_json()
    assert [r['id'] for r in assigned['requisitions']] == [data['id']]

    login(client, 'arjun')
    assert client.get('/api/requisitions').get_json()['count'] == 0
    assert client.get(f"/api/requisitions/{data['id']}").status_code == 403

    login(client, 'admin')
    assert client.get('/api/requisitions?status=pending').get_json()['count'] == 1
    assert client.get('/api/requisitions?status=approved').get_json()['count'] == 0
    assert client.get('/api/requisitions?status=bogus').status_code == 400


# ── Attachments ───────────────────────────────────────────────────

def test_upload_list_and_download_attachment(client, app, tmp_path):
    login(client, 'priya')
    rid = client.post('/api/requisitions', json=DRAFT).get_json()['id']

    resp = client.post(f'/api/requisitions/{rid}/attachments',
                       data={'file': (io.BytesIO(b'%PDF-1.4 quote'), 'vendor quote.pdf')},
                       content_type='multipart/form-data')
    assert resp.status_code == 201
    attachment = resp.get_json()
    assert attachment['filename'] == 'vendor quote.pdf'
    assert attachment['reference'].startswith(f'{rid}/')
    assert attachment['reference'].endswith('_vendor_quote.pdf')
    assert (tmp_path / 'uploads' / attachment['reference']).exists()

    listed = client.get(f'/api/requisitions/{rid}/attachments').get_json()['attachments']
    assert [a['id'] for a in listed] == [attachment['id']]

    download = client.get(f"/api/requisitions/{rid}/attachments/{attachment['id']}")
    assert download.status_code == 200
    assert download.data == b'%PDF-1.4 quote'


def test_disallowed_attachment_type(client):
    login(client, 'priya')
    rid = client.post('/api/requisitions', json=DRAFT).get_json()['id']
    resp = client.post(f'/api/requisitions/{rid}/attachments',
                       data={'file': (io.BytesIO(b'MZ'), 'setup.exe')},
                       content_type='multipart/form-data')
    assert resp.status_code == 400
    assert 'file' in resp.get_json()['fields']


def test_only_requester_can_attach(client):
    data = create_and_submit(client)
    login(client, 'sup.prod')
    resp = client.post(f"/api/requisitions/{data['id']}/attachments",
                       data={'file': (io.BytesIO(b'x'), 'note.txt')},
                       content_type='multipart/form-data')
    assert resp.status_code == 403


# ── Admin routing configuration ───────────────────────────────────

def test_routing_admin_requires_admin(client):
    login(client, 'priya')
    assert client.get('/admin/routing/tiers').status_code == 403
    assert client.post('/admin/routing/tiers', json={}).status_code == 403


def test_admin_configures_new_department(client):
    login(client, 'admin')
    resp = client.post('/admin/routing/tiers',
                       json={'department': 'Finance', 'min_total': '0', 'max_level': 1})
    assert resp.status_code == 201
    assert resp.get_json()['min_total'] == '0.00'

    resp = client.post('/admin/routing/approvers',
                       json={'department': 'Finance', 'level': 1, 'approver_id': user_id('sup.prod')})
    assert resp.status_code == 201
    assert resp.get_json()['approver_name'] == 'Sup.Prod'

    tiers = client.get('/admin/routing/tiers?department=Finance').get_json()['tiers']
    assert [(t['min_total'], t['max_level']) for t in tiers] == [('0.00', 1)]

    # Finance requisitions can now be submitted
    login(client, 'arjun')
    rid = client.post('/api/requisitions', json=DRAFT).get_json()['id']
    resp = client.post(f'/api/requisitions/{rid}/submit', json={})
    assert resp.status_code == 200
    assert resp.get_json()['current_approver_id'] == user_id('sup.prod')


def test_admin_routing_validation(client):
    login(client, 'admin')
    resp = client.post('/admin/routing/tiers', json={'department': '', 'max_level': 0})
    assert resp.status_code == 400
    assert set(resp.get_json()['fields']) == {'department', 'max_level'}

    resp = client.post('/admin/routing/approvers',
                       json={'department': 'Production', 'level': 2, 'approver_id': user_id('priya')})
    assert resp.status_code == 400
    assert 'approver_id' in resp.get_json()['fields']

    resp = client.post('/admin/routing/approvers',
                       json={'department': 'Production', 'level': 1, 'approver_id': user_id('sup.prod')})
    assert resp.status_code == 400
    assert 'level' in resp.get_json()['fields']

    resp = client.post('/admin/routing/tiers',
                       json={'department': 'Production', 'min_total': '0', 'max_level': 2})
    assert resp.status_code == 400
    assert 'min_total' in resp.get_json()['fields']


# ── Health ────────────────────────────────────────────────────────

def test_health_needs_no_login(client):
    resp = client.get('/health')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['details']['db'] == 'ok'
    assert body['status'] in ('ok', 'warning')
