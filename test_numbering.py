"""
test_numbering.py — Tests for requisition number generation.
Run: pytest test_numbering.py -v
"""
import os
os.environ['FLASK_RUN_FROM_CLI'] = '1'

import pytest
from datetime import datetime

from portal import create_app, db
from portal.requisitions.models import RequisitionSequence
from portal.requisitions.numbering import (
    department_code, generate_requisition_number, parse_requisition_number,
)


@pytest.fixture(scope='function')
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


OCT = datetime(2026, 10, 19, 9, 30)
NOV = datetime(2026, 11, 2, 9, 30)


def test_department_code():
    assert department_code('Production') == 'PROD'
    assert department_code('Quality Control') == 'QUAL'
    assert department_code('R&D') == 'RD'
    assert department_code('it') == 'IT'
    assert department_code('') == 'GEN'
    assert department_code(None) == 'GEN'


def test_numbers_are_sequential_per_department(app):
    first  = generate_requisition_number(db.session, 'Production', now=OCT)
    second = generate_requisition_number(db.session, 'Production', now=OCT)
    other  = generate_requisition_number(db.session, 'Finance', now=OCT)
    db.session.commit()

    assert first == 'PR-PROD-202610-001'
    assert second == 'PR-PROD-202610-002'
    assert other == 'PR-FINA-202610-001'


def test_sequence_restarts_each_month(app):
    generate_requisition_number(db.session, 'Production', now=OCT)
    number = generate_requisition_number(db.session, 'Production', now=NOV)
    db.session.commit()
    assert number == 'PR-PROD-202611-001'
    assert RequisitionSequence.query.count() == 2


def test_rolled_back_allocation_consumes_nothing(app):
    generate_requisition_number(db.session, 'Production', now=OCT)
    db.session.commit()
    generate_requisition_number(db.session, 'Production', now=OCT)
    db.session.rollback()

    assert generate_requisition_number(db.session, 'Production', now=OCT) == 'PR-PROD-202610-002'


def test_sequence_grows_past_three_digits():
    row = RequisitionSequence(dept_code='PROD', period='202610', last_seq=999)
    assert row.format_number(1000) == 'PR-PROD-202610-1000'


def test_parse_requisition_number():
    assert parse_requisition_number('PR-QUAL-202610-042') == {
        'department_code': 'QUAL', 'year': 2026, 'month': 10, 'sequence': 42,
    }
    with pytest.raises(ValueError):
        parse_requisition_number('PO-QUAL-202610-042')
    with pytest.raises(ValueError):
        parse_requisition_number('PR-QUAL-2026-042')
