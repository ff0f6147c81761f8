from flask import request, session, jsonify, current_app
from portal.auth import auth
from portal.auth.models import User
from portal.auth.decorators import login_required, current_user


@auth.route('/login', methods=['POST'])
def login():
    """
    Validate credentials (form or JSON body) and populate the session.
    Returns the user profile on success, 401 on bad credentials.
    """
    data     = request.get_json(silent=True) or request.form
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    # Basic presence validation
    if not username or not password:
        return jsonify({'error': 'validation_error',
                        'message': 'Username and password are required.'}), 400

    user = User.query.filter_by(username=username).first()

    if user is None or not user.is_active or not user.check_password(password):
        # Same message for either wrong field
        current_app.logger.warning(f"Failed login attempt for username: {username}")
        return jsonify({'error': 'not_authenticated',
                        'message': 'Invalid username or password.'}), 401

    # ── Populate session (minimal) ──
    session.clear()
    session['user_id'] = user.id
    session['role']    = user.role.value
    session.permanent  = True             # respect PERMANENT_SESSION_LIFETIME

    current_app.logger.info(f"User {user.username} logged in successfully.")
    return jsonify(user.to_dict())


@auth.route('/logout', methods=['POST'])
def logout():
    """Clear the session."""
    session.clear()
    return jsonify({'message': 'Logged out.'})


@auth.route('/me')
@login_required
def me():
    """Profile of the logged-in user."""
    return jsonify(current_user().to_dict())
