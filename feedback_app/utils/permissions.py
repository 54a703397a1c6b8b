# feedback_app/utils/permissions.py

from functools import wraps

from flask import jsonify
from flask_login import current_user

from feedback_app.models.enums import UserRole

MANAGE_HRIS_SYNC = "manage_hris_sync"
VIEW_HRIS_SYNC = "view_hris_sync"

ROLE_PERMISSIONS = {
    UserRole.ADMIN: frozenset({MANAGE_HRIS_SYNC, VIEW_HRIS_SYNC}),
    UserRole.MODERATOR: frozenset({VIEW_HRIS_SYNC}),
}


def has_permission(user, permission_name):
    """Check if user has a specific permission through their role"""
    if not user or not user.is_authenticated:
        return False

    # Super admins have all permissions
    if user.is_super_admin:
        return True

    if not user.is_active:
        return False
    return permission_name in ROLE_PERMISSIONS.get(user.role, frozenset())


def permission_required(permission_name):
    """Decorator for JSON endpoints: 401 when anonymous, 403 without the permission."""

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({"success": False, "error": "Authentication required."}), 401
            if not has_permission(current_user, permission_name):
                return jsonify({"success": False, "error": "You do not have permission to perform this action."}), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator
