from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g, jsonify

from app.docflow.constants import ROLE_ADMIN, ROLE_STAFF, ROLE_VIEWER
from app.docflow.models import User

_VIEWER_PERMS = frozenset({"docs.view"})
_STAFF_PERMS = _VIEWER_PERMS | {"docs.create", "docs.edit", "docs.approve", "docs.share"}
_ADMIN_PERMS = _STAFF_PERMS | {"docs.delete", "audit.view", "users.manage"}

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    ROLE_VIEWER: _VIEWER_PERMS,
    ROLE_STAFF: frozenset(_STAFF_PERMS),
    ROLE_ADMIN: frozenset(_ADMIN_PERMS),
}


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    return permission_key in ROLE_PERMISSIONS.get(user.role, frozenset())


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → 401
            if not user or not user.is_active:
                return jsonify({"success": False, "error": "Authentication required", "category": "unauthenticated"}), 401
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                return jsonify({"success": False, "error": "Permission denied", "category": "forbidden"}), 403
            return fn(*args, **kwargs)

        return wrapped

    return decorator
