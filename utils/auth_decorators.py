"""
Authentication and Authorization Decorators
===========================================

Route guards for the JSON API. Roles are read from ``user_roles`` on every
request rather than trusted from the session cookie, so a role change takes
effect immediately.
"""

from functools import wraps
from flask import current_app, g, jsonify, session
from utils.validation import has_admin_privileges

def get_current_identity():
    """
    Authenticated identity of the current request

    Returns:
        int | None: User id, or None when nobody is logged in
    """
    return session.get('user_id')

def _deny(status, message):
    return jsonify({'success': False, 'message': message}), status

def _load_role():
    g.current_role = current_app.access_control.get_role(get_current_identity())
    return g.current_role

def login_required(f):
    """
    Decorator to ensure user is logged in

    Usage:
        @app.route('/api/capture')
        @login_required
        def capture_state():
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if get_current_identity() is None:
            return _deny(401, 'Please log in to access this resource.')
        return f(*args, **kwargs)
    return decorated_function

def admin_required(f):
    """
    Decorator to ensure user has admin privileges

    Usage:
        @app.route('/api/users')
        @admin_required
        def list_users():
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if get_current_identity() is None:
            return _deny(401, 'Please log in to access this resource.')

        if not has_admin_privileges(_load_role()):
            current_app.logger_handler.log_security_event(
                event_type='admin_access_denied',
                description=f"User {session.get('username')} attempted an admin-only action",
                severity='MEDIUM'
            )
            return _deny(403, 'Administrator privileges required for this action.')

        return f(*args, **kwargs)
    return decorated_function
