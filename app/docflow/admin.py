from __future__ import annotations

from flask import Blueprint, g, jsonify, request
from werkzeug.security import generate_password_hash

from app.docflow.audit import AuditTrail, record_event
from app.docflow.constants import ROLE_VIEWER, ROLES
from app.docflow.db import db_session
from app.docflow.errors import NotFoundError, ValidationError
from app.docflow.models import User
from app.docflow.rbac import require_permission
from app.docflow.utils import clean_text

bp = Blueprint("admin", __name__)

_MAX_AUDIT_LIMIT = 1000


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        # require_permission runs first.
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@bp.get("/audit")
@require_permission("audit.view")
def audit_list():
    s = db_session()
    try:
        limit = min(int(request.args.get("limit") or 200), _MAX_AUDIT_LIMIT)
    except ValueError:
        raise ValidationError("limit must be an integer.", fields=["limit"]) from None
    events = AuditTrail(s).query(
        action=(request.args.get("action") or "").strip() or None,
        actor=(request.args.get("actor") or "").strip() or None,
        action_type=(request.args.get("action_type") or "").strip() or None,
        document_id=(request.args.get("document_id") or "").strip() or None,
        limit=limit,
    )
    return jsonify({"success": True, "logs": [ev.to_dict() for ev in events]})


@bp.get("/audit/<int:event_id>")
@require_permission("audit.view")
def audit_detail(event_id: int):
    ev = AuditTrail(db_session()).get(event_id)
    if ev is None:
        raise NotFoundError("Audit log not found")
    return jsonify({"success": True, "log": ev.to_dict()})


@bp.get("/users")
@require_permission("users.manage")
def users_list():
    s = db_session()
    users = s.query(User).order_by(User.username.asc()).all()
    return jsonify({"success": True, "users": [u.to_dict() for u in users]})


@bp.post("/users")
@require_permission("users.manage")
def users_create():
    s = db_session()
    u = _current_user()
    payload = _payload()

    username = clean_text(payload.get("username"), "username")
    password = payload.get("password") or ""
    if not isinstance(password, str):
        raise ValidationError("password must be a string.", fields=["password"])
    role = clean_text(payload.get("role"), "role") or ROLE_VIEWER

    missing = [k for k, v in (("username", username), ("password", password)) if not v]
    if missing:
        raise ValidationError.missing(missing)
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters.", fields=["password"])
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}", fields=["role"])
    if s.query(User).filter(User.username == username).one_or_none():
        raise ValidationError("An account with this username already exists.", fields=["username"])

    new_user = User(username=username, password_hash=generate_password_hash(password), role=role, is_active=True)
    s.add(new_user)
    s.flush()

    record_event(
        s,
        actor=u.username,
        action="Create User",
        action_type="create",
        subject=username,
        details={"user_id": new_user.id, "role": role},
    )
    s.commit()
    return jsonify({"success": True, "user": new_user.to_dict()}), 201


@bp.post("/users/<int:user_id>")
@require_permission("users.manage")
def users_update(user_id: int):
    s = db_session()
    u = _current_user()
    payload = _payload()

    user = s.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")

    changes: dict[str, dict] = {}
    if "role" in payload:
        role = clean_text(payload.get("role"), "role")
        if role not in ROLES:
            raise ValidationError(f"role must be one of: {', '.join(ROLES)}", fields=["role"])
        if role != user.role:
            changes["role"] = {"old": user.role, "new": role}
            user.role = role
    if "is_active" in payload:
        is_active = bool(payload.get("is_active"))
        if user.id == u.id and not is_active:
            raise ValidationError("You cannot deactivate your own account.", fields=["is_active"])
        if is_active != user.is_active:
            changes["is_active"] = {"old": user.is_active, "new": is_active}
            user.is_active = is_active
    if not changes:
        raise ValidationError("Update does not change any field.")

    record_event(
        s,
        actor=u.username,
        action="Update User",
        action_type="update",
        subject=user.username,
        details={"user_id": user.id, "changes": changes},
    )
    s.commit()
    return jsonify({"success": True, "user": user.to_dict()})
