from flask import request, session, jsonify, current_app, g
from storefront.auth import auth
from storefront.auth.decorators import login_required
from storefront.auth.models import User, RoleEnum


@auth.route('/login', methods=['POST'])
def login():
    """Validate credentials and populate the session. Only admin/staff may log in."""
    data = request.get_json(silent=True) or request.form
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    if not username or not password:
        return jsonify({'error': 'Username and password are required.'}), 400

    user = User.query.filter_by(username=username).first()
    if user is None or not user.check_password(password):
        # Don't reveal which field was wrong
        current_app.logger.warning(f"Failed login attempt for username: {username}")
        return jsonify({'error': 'Invalid username or password.'}), 401

    if user.role == RoleEnum.user:
        current_app.logger.warning(f"Back-office login refused for customer account: {username}")
        return jsonify({'error': 'This account has no back-office access.'}), 403

    session.clear()
    session['user_id'] = user.id
    session['role']    = user.role.value
    session.permanent  = True

    current_app.logger.info(f"User {user.username} logged in successfully.")
    return jsonify({'user': user.to_dict(), 'modules': user.allowed_modules()})


@auth.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'message': 'Logged out.'})


@auth.route('/me')
@login_required
def me():
    """The current user and the back-office modules they may open."""
    return jsonify({'user': g.user.to_dict(), 'modules': g.user.allowed_modules()})
