"""
test_routing.py — Tests for routing resolution and policy loading.
Run: pytest test_routing.py -v
"""
import os
os.environ['FLASK_RUN_FROM_CLI'] = '1'

import pytest
from decimal import Decimal
from types import SimpleNamespace

from portal import create_app, db
from portal.auth.models import User, RoleEnum
from portal.errors import RoutingGapError
from portal.routing.models import RoutingTier, RoutingApprover
from portal.routing.policy import load_policy
from portal.routing.resolver import RoutingPolicy, NextStep, COMPLETE, resolve_next, chain_for


FINANCE = RoutingPolicy(
    department='Finance',
    tiers=((Decimal('0'), 2), (Decimal('100000'), 3)),
    approvers={1: 11, 2: 12, 3: 13},
)


def req(total):
    return SimpleNamespace(total_estimated_cost=Decimal(total))


# ── Resolver (pure) ───────────────────────────────────────────────

def test_first_step_goes_to_level_one():
    assert resolve_next(req('5000'), 0, FINANCE) == NextStep(level=1, approver_id=11)


def test_low_value_completes_after_level_two():
    assert resolve_next(req('5000'), 1, FINANCE) == NextStep(level=2, approver_id=12)
    assert resolve_next(req('5000'), 2, FINANCE) is COMPLETE


def test_high_value_needs_level_three():
    assert resolve_next(req('150000'), 2, FINANCE) == NextStep(level=3, approver_id=13)
    assert resolve_next(req('150000'), 3, FINANCE) is COMPLETE


def test_threshold_is_inclusive():
    assert FINANCE.max_level_for(Decimal('99999.99')) == 2
    assert FINANCE.max_level_for(Decimal('100000.00')) == 3


def test_chain_for_lists_every_level():
    assert [s.approver_id for s in chain_for(req('150000'), FINANCE)] == [11, 12, 13]
    assert [s.level for s in chain_for(req('10'), FINANCE)] == [1, 2]


def test_missing_approver_is_a_gap_not_a_skip():
    policy = RoutingPolicy('Stores', tiers=((Decimal('0'), 3),), approvers={1: 5, 3: 7})
    assert resolve_next(req('10'), 0, policy) == NextStep(1, 5)
    with pytest.raises(RoutingGapError) as exc:
        resolve_next(req('10'), 1, policy)
    assert exc.value.level == 2
    assert exc.value.department == 'Stores'


def test_chain_for_with_gaps_shows_the_hole():
    policy = RoutingPolicy('Stores', tiers=((Decimal('0'), 3),), approvers={1: 5, 3: 7})
    with pytest.raises(RoutingGapError):
        chain_for(req('10'), policy)
    assert chain_for(req('10'), policy, allow_gaps=True) == [
        NextStep(1, 5), NextStep(2, None), NextStep(3, 7),
    ]
    assert chain_for(req('1'), RoutingPolicy('Nowhere'), allow_gaps=True) == []


def test_total_below_every_tier_is_a_gap():
    policy = RoutingPolicy('IT', tiers=((Decimal('1000'), 1),), approvers={1: 5})
    with pytest.raises(RoutingGapError):
        resolve_next(req('500'), 0, policy)


def test_department_without_tiers_is_a_gap():
    with pytest.raises(RoutingGapError):
        resolve_next(req('1'), 0, RoutingPolicy('Nowhere'))


def test_resolution_is_deterministic():
    results = {resolve_next(req('150000'), 1, FINANCE) for _ in range(5)}
    assert results == {NextStep(2, 12)}


# ── Policy loading ────────────────────────────────────────────────

@pytest.fixture(scope='function')
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def make_approver(username):
    u = User(name=username.title(), username=username, role=RoleEnum.approver)
    u.set_password('pw')
    db.session.add(u)
    db.session.flush()
    return u


def test_load_policy_reads_tiers_and_approvers(app):
    sup, head = make_approver('sup'), make_approver('head')
    db.session.add_all([
        RoutingTier(department='Finance', min_total=Decimal('100000'), max_level=3),
        RoutingTier(department='Finance', min_total=Decimal('0'), max_level=2),
        RoutingTier(department='Production', min_total=Decimal('0'), max_level=1),
        RoutingApprover(department='Finance', level=1, approver_id=sup.id),
        RoutingApprover(department='Finance', level=2, approver_id=head.id),
    ])
    db.session.commit()

    policy = load_policy('Finance')
    assert policy.tiers == ((Decimal('0'), 2), (Decimal('100000'), 3))
    assert policy.approvers == {1: sup.id, 2: head.id}


def test_location_rows_override_department_rows(app):
    sup, local = make_approver('sup'), make_approver('local')
    db.session.add_all([
        RoutingTier(department='Production', min_total=Decimal('0'), max_level=1),
        RoutingApprover(department='Production', level=1, approver_id=sup.id),
        RoutingApprover(department='Production', location='Chennai', level=1, approver_id=local.id),
    ])
    db.session.commit()

    assert load_policy('Production', 'Chennai').approvers == {1: local.id}
    assert load_policy('Production', 'Pune').approvers == {1: sup.id}
    assert load_policy('Production').approvers == {1: sup.id}
