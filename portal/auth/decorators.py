"""
portal/auth/decorators.py
-------------------------
Reusable route-protection decorators.
Usage:
    from portal.auth.decorators import login_required, admin_required, current_identity

    @requisitions.route('/', methods=['POST'])
    @login_required
    def create():
        actor = current_identity()
        ...

    @admin.route('/routing/tiers')
    @admin_required
    def tiers():
        ...
"""
from functools import wraps
from flask import session, abort

from portal import db


def login_required(f):
    """
    Respond 401 if the user is not authenticated (or was deactivated).
    Checks for 'user_id' key in the Flask session.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if current_user() is None:
            abort(401)
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    """
    Allow access only to users with role == 'admin'.
    Implies login_required; unauthenticated users receive 401.
    Authenticated non-admins receive a 403 Forbidden response.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        user = current_user()
        if user is None:
            abort(401)
        if not user.is_admin:
            abort(403)
        return f(*args, **kwargs)
    return decorated


def current_user():
    """The logged-in User row. None when logged out or deactivated."""
    from portal.auth.models import User
    user_id = session.get('user_id')
    user = db.session.get(User, user_id) if user_id else None
    return user if user is not None and user.is_active else None


def current_identity():
    """The acting Identity for the workflow core."""
    user = current_user()
    if user is None:
        abort(401)
    return user.identity
