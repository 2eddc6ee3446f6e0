"""
storefront/admin/routes.py
──────────────────────────
Admin-only user and staff-permission management.

  GET  /admin/users                       → all users
  PUT  /admin/users/<id>/role             → change role
  GET  /admin/users/<id>/permissions      → module flags for a staff member
  PUT  /admin/users/<id>/permissions      → set module flags ({key: bool})
"""
from flask import request, jsonify, abort, g, current_app

from storefront import db
from storefront.admin import admin
from storefront.auth.decorators import admin_required
from storefront.auth.models import User, RoleEnum, StaffPermission, PERMISSION_KEYS


def _get_user(user_id) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        abort(404)
    return user


def _permission_map(user: User) -> dict:
    flags = {key: False for key in PERMISSION_KEYS}
    for row in user.permissions:
        if row.permission_key in flags:
            flags[row.permission_key] = bool(row.allowed)
    return flags


@admin.route('/users')
@admin_required
def users():
    rows = User.query.order_by(User.created_at.desc()).all()
    return jsonify([u.to_dict() for u in rows])


@admin.route('/users/<int:user_id>/role', methods=['PUT'])
@admin_required
def change_role(user_id):
    user = _get_user(user_id)
    role = (request.get_json(silent=True) or {}).get('role', '')
    try:
        new_role = RoleEnum(role)
    except ValueError:
        return jsonify({'errors': {'role': f'Role must be one of: {", ".join(r.value for r in RoleEnum)}.'}}), 400

    if user.id == g.user.id and new_role != RoleEnum.admin:
        return jsonify({'errors': {'role': 'You cannot remove your own admin role.'}}), 409

    old_role = user.role.value
    user.role = new_role
    db.session.commit()
    current_app.logger.info(f"Role of user {user.username} changed {old_role} -> {new_role.value} by {g.user.username}")
    return jsonify(user.to_dict())


@admin.route('/users/<int:user_id>/permissions')
@admin_required
def permissions(user_id):
    user = _get_user(user_id)
    return jsonify({'user_id': user.id, 'permissions': _permission_map(user)})


@admin.route('/users/<int:user_id>/permissions', methods=['PUT'])
@admin_required
def set_permissions(user_id):
    user = _get_user(user_id)
    if user.role != RoleEnum.staff:
        return jsonify({'errors': {'user': 'Permissions apply to staff accounts only.'}}), 400

    data = request.get_json(silent=True) or {}
    unknown = sorted(set(data) - set(PERMISSION_KEYS))
    if unknown:
        return jsonify({'errors': {key: 'Unknown permission.' for key in unknown}}), 400

    existing = {row.permission_key: row for row in user.permissions}
    for key, allowed in data.items():
        row = existing.get(key)
        if row is None:
            db.session.add(StaffPermission(staff_id=user.id, permission_key=key, allowed=bool(allowed)))
        else:
            row.allowed = bool(allowed)
    db.session.commit()
    db.session.refresh(user)

    current_app.logger.info(f"Permissions of {user.username} set to {data} by {g.user.username}")
    return jsonify({'user_id': user.id, 'permissions': _permission_map(user)})
