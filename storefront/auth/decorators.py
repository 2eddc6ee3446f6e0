"""
storefront/auth/decorators.py
-----------------------------
Reusable route-protection decorators.
Usage:
    from storefront.auth.decorators import login_required, permission_required

    @billing.route('/drafts', methods=['POST'])
    @permission_required('billing')
    def create():
        ...
"""
from functools import wraps
from flask import session, abort, g
from storefront import db


def _current_user():
    from storefront.auth.models import User
    user_id = session.get('user_id')
    if user_id is None:
        return None
    return db.session.get(User, user_id)


def login_required(f):
    """Reject unauthenticated requests with 401."""
    @wraps(f)
    def decorated(*args, **kwargs):
        user = _current_user()
        if user is None:
            abort(401)
        g.user = user
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    """
    Allow access only to users with role == 'admin'.
    Unauthenticated → 401, authenticated non-admins → 403.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        user = _current_user()
        if user is None:
            abort(401)
        if not user.is_admin:
            abort(403)
        g.user = user
        return f(*args, **kwargs)
    return decorated


def permission_required(permission_key):
    """Admins always pass; staff need an allowed StaffPermission row for the module."""
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            user = _current_user()
            if user is None:
                abort(401)
            if not user.can(permission_key):
                abort(403)
            g.user = user
            return f(*args, **kwargs)
        return decorated
    return decorator
