"""
portal/requisitions/numbering.py
--------------------------------
Concurrency-safe requisition number generation.

Format:  PR-<DEPTCODE>-<YYYYMM>-<SEQ>
Example: PR-PROD-202610-001, PR-PROD-202610-002, … PR-FINA-202611-001

DEPTCODE is the first four letters/digits of the department, upper-cased.
SEQ restarts every month per department and is zero-padded to 3 digits
(it grows naturally beyond 999).

Algorithm
─────────
1. Lock the RequisitionSequence row for (DEPTCODE, YYYYMM) with
   SELECT … FOR UPDATE. Concurrent submissions for the same department
   and month block until the first one commits.
2. If no row exists yet (first submission of the month), INSERT one with
   last_seq = 0, then lock it.
3. Increment last_seq by 1 and return the formatted number.

The lock is released when the caller's transaction commits (or rolls back),
so the number is only consumed when the submission itself commits.
"""
import re
from datetime import datetime


def department_code(department: str) -> str:
    """'Quality Control' → 'QUAL', 'R&D' → 'RD'."""
    letters = re.sub(r'[^A-Za-z0-9]', '', department or '')
    return letters[:4].upper() or 'GEN'


def generate_requisition_number(db_session, department: str, now=None) -> str:
    """
    Allocate the next requisition number for a department.

    MUST be called inside an open SQLAlchemy transaction.
    The FOR UPDATE lock is held until the caller commits.

    Args:
        db_session: the active SQLAlchemy session (db.session)
        department: the requisition's department name
        now:        optional datetime for the period (defaults to now)

    Returns:
        str — e.g. "PR-PROD-202610-042"
    """
    from portal.requisitions.models import RequisitionSequence

    dept_code = department_code(department)
    period    = (now or datetime.now()).strftime('%Y%m')

    seq_row = _lock_sequence(db_session, dept_code, period)

    if seq_row is None:
        # First submission for this department this month
        db_session.add(RequisitionSequence(dept_code=dept_code, period=period, last_seq=0))
        db_session.flush()
        seq_row = _lock_sequence(db_session, dept_code, period)

    seq_row.last_seq += 1
    db_session.flush()              # write new value; lock held until outer commit

    return seq_row.format_number(seq_row.last_seq)


def parse_requisition_number(number: str) -> dict:
    """Split 'PR-PROD-202610-042' into its parts. Raises ValueError if malformed."""
    match = re.fullmatch(r'PR-([A-Z0-9]{1,4})-(\d{4})(\d{2})-(\d{3,})', number or '')
    if match is None:
        raise ValueError(f'Invalid requisition number: {number!r}')
    dept_code, year, month, seq = match.groups()
    return {
        'department_code': dept_code,
        'year':            int(year),
        'month':           int(month),
        'sequence':        int(seq),
    }


def _lock_sequence(db_session, dept_code, period):
    from portal.requisitions.models import RequisitionSequence
    return (
        db_session.query(RequisitionSequence)
        .filter(RequisitionSequence.dept_code == dept_code,
                RequisitionSequence.period == period)
        .with_for_update()
        .first()
    )
