"""
portal/main/routes.py
──────────────────────
Service-level endpoints.
"""
import shutil
from datetime import datetime

from flask import current_app
from sqlalchemy import text

from portal import db
from portal.main import main


@main.route('/health')
def health():
    """Health check for load balancers and monitoring."""
    status   = 'ok'
    failures = []

    # 1. DB Check
    try:
        db.session.execute(text('SELECT 1'))
    except Exception as e:
        status = 'error'
        failures.append(f'DB: {e}')
        current_app.logger.error(f"Health check failed (DB): {e}")

    # 2. Disk Check
    details = {'db': 'error' if status == 'error' else 'ok'}
    try:
        total, _, free = shutil.disk_usage('/')
        details['disk_free_gb']      = free // (2 ** 30)
        details['disk_free_percent'] = round(free / total * 100, 1)
        if details['disk_free_percent'] < 10:
            failures.append(f"Low Disk Space: {details['disk_free_gb']}GB free")
            current_app.logger.warning(failures[-1])
            if status == 'ok':
                status = 'warning'
    except OSError as e:
        failures.append(f'Disk Check Error: {e}')
        if status == 'ok':
            status = 'warning'

    response = {
        'status':    status,
        'timestamp': datetime.utcnow().isoformat(),
        'details':   details,
    }
    if failures:
        response['failures'] = failures

    return response, 200 if status != 'error' else 500
