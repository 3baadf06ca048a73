from __future__ import annotations

from typing import Any

from flask import Blueprint, current_app, g, jsonify, request, send_file

from app.docflow.db import db_session
from app.docflow.errors import ValidationError
from app.docflow.models import User
from app.docflow.modules.documents.metadata import UploadedFile
from app.docflow.modules.documents.repository import Loaded
from app.docflow.modules.documents.service import DocumentService
from app.docflow.rbac import require_permission
from app.docflow.storage import storage_from_config
from app.docflow.utils import normalize_tags, parse_datetime

documents_bp = Blueprint("documents", __name__)
versions_bp = Blueprint("versions", __name__)
approvals_bp = Blueprint("approvals", __name__)
share_bp = Blueprint("share", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        # require_permission runs first.
        raise RuntimeError("No current user")
    return u


def _service() -> DocumentService:
    base_url = current_app.config.get("PUBLIC_BASE_URL") or (request.url_root.rstrip("/") + "/api/share")
    return DocumentService(db_session(), storage=storage_from_config(current_app.config), base_url=base_url)


def _payload() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _revision(payload: dict[str, Any]) -> int | None:
    raw = payload.get("revision")
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError("revision must be an integer.", fields=["revision"]) from None


def _document_response(loaded: Loaded, *, status: int = 200, include_history: bool = False, **extra: Any):
    body = {
        "success": True,
        "document": loaded.document.to_dict(include_history=include_history),
        "revision": loaded.revision,
        **extra,
    }
    return jsonify(body), status


def _client_info() -> dict[str, str | None]:
    return {"ip_address": request.remote_addr, "user_agent": request.headers.get("User-Agent")}


# ---------------- documents ----------------


@documents_bp.post("")
@require_permission("docs.create")
def create_document():
    u = _current_user()
    upload = None
    if request.files:
        form = request.form
        fields: dict[str, Any] = {k: form.get(k) for k in ("title", "category", "description", "status")}
        tags = form.getlist("tags")
        fields["tags"] = tags[0] if len(tags) == 1 else tags
        fields["logs"] = form.getlist("logs")
        fields["isPublic"] = (form.get("isPublic") or "").strip().lower() in ("1", "true", "yes", "on")
        f = request.files.get("file")
        if f and f.filename:
            upload = UploadedFile(filename=f.filename, data=f.read(), content_type=f.mimetype or "application/octet-stream")
    else:
        fields = _payload()

    loaded = _service().create(
        title=fields.get("title"),
        category=fields.get("category"),
        uploader=u.username,
        description=fields.get("description"),
        file=upload,
        status=fields.get("status"),
        tags=fields.get("tags"),
        logs=fields.get("logs"),
        is_public=bool(fields.get("isPublic")),
    )
    return _document_response(loaded, status=201, message="Document created successfully")


@documents_bp.get("")
@require_permission("docs.view")
def list_documents():
    tags = normalize_tags(",".join(request.args.getlist("tags")))
    items = _service().list_documents(
        tags=list(tags) or None,
        category=(request.args.get("category") or "").strip() or None,
        status=(request.args.get("status") or "").strip() or None,
        search=(request.args.get("search") or "").strip() or None,
    )
    return jsonify(
        {
            "success": True,
            "documents": [{**item.document.to_dict(), "revision": item.revision} for item in items],
        }
    )


@documents_bp.get("/<doc_id>")
@require_permission("docs.view")
def get_document(doc_id: str):
    return _document_response(_service().get(doc_id), include_history=True)


@documents_bp.put("/<doc_id>")
@require_permission("docs.edit")
def update_document(doc_id: str):
    u = _current_user()
    payload = _payload()
    expected = _revision(payload)
    fields = {k: v for k, v in payload.items() if k != "revision"}
    loaded = _service().update(doc_id, fields, actor=u.username, expected_revision=expected)
    return _document_response(loaded, message="Document updated successfully")


@documents_bp.delete("/<doc_id>")
@require_permission("docs.delete")
def delete_document(doc_id: str):
    u = _current_user()
    _service().delete(doc_id, actor_role=u.role, actor=u.username)
    return jsonify({"success": True, "message": "Document deleted successfully"})


@documents_bp.get("/<doc_id>/file")
@require_permission("docs.view")
def download_document_file(doc_id: str):
    u = _current_user()
    ref, fobj = _service().open_file(doc_id, actor=u.username)
    return send_file(fobj, mimetype=ref.content_type, as_attachment=True, download_name=ref.filename, max_age=0)


@documents_bp.patch("/<doc_id>/visibility")
@require_permission("docs.edit")
def set_visibility(doc_id: str):
    u = _current_user()
    payload = _payload()
    if "isPublic" not in payload:
        raise ValidationError.missing(["isPublic"])
    loaded = _service().set_visibility(
        doc_id,
        is_public=bool(payload["isPublic"]),
        actor=u.username,
        expected_revision=_revision(payload),
    )
    return _document_response(loaded)


# ---------------- versions ----------------


def _version_number(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValidationError("Version must be an integer.", fields=["version"]) from None


@versions_bp.get("/<doc_id>/versions")
@require_permission("docs.view")
def list_versions(doc_id: str):
    doc, revision = _service().get(doc_id)
    return jsonify(
        {
            "success": True,
            "currentVersion": doc.current_version,
            "revision": revision,
            "versions": [v.to_dict() for v in doc.versions.newest_first()],
        }
    )


@versions_bp.get("/<doc_id>/versions/<version>")
@require_permission("docs.view")
def get_version(doc_id: str, version: str):
    entry = _service().get_version(doc_id, _version_number(version))
    return jsonify({"success": True, "version": entry.to_dict()})


@versions_bp.get("/<doc_id>/compare/<v1>/<v2>")
@require_permission("docs.view")
def compare_versions(doc_id: str, v1: str, v2: str):
    result = _service().compare_versions(doc_id, _version_number(v1), _version_number(v2))
    return jsonify({"success": True, **result})


@versions_bp.post("/<doc_id>/revert/<version>")
@require_permission("docs.edit")
def revert_version(doc_id: str, version: str):
    u = _current_user()
    payload = _payload()
    n = _version_number(version)
    loaded = _service().revert(doc_id, n, actor=u.username, expected_revision=_revision(payload))
    return _document_response(loaded, message=f"Document reverted to version {n}")


# ---------------- approvals ----------------


@approvals_bp.get("/<doc_id>/approvals")
@require_permission("docs.view")
def approval_status(doc_id: str):
    doc, revision = _service().get(doc_id)
    return jsonify(
        {
            "success": True,
            "approvalFlow": doc.approval.to_dict(),
            "approvals": [a.to_dict() for a in doc.approval.approvals],
            "revision": revision,
        }
    )


@approvals_bp.post("/<doc_id>/setup-approval")
@require_permission("docs.edit")
def setup_approval(doc_id: str):
    u = _current_user()
    payload = _payload()
    loaded = _service().setup_approval(
        doc_id,
        flow_type=payload.get("type"),
        levels=payload.get("levels"),
        actor=u.username,
        expected_revision=_revision(payload),
    )
    return _document_response(loaded, message="Approval flow configured")


@approvals_bp.post("/<doc_id>/approve")
@require_permission("docs.approve")
def submit_approval(doc_id: str):
    u = _current_user()
    payload = _payload()
    loaded, record = _service().submit_approval(
        doc_id,
        approver=u.username,
        role=u.role,
        decision=payload.get("status"),
        comment=payload.get("comment"),
        expected_revision=_revision(payload),
    )
    return _document_response(loaded, approval=record.to_dict(), message=f"Document {record.decision} successfully")


@approvals_bp.get("/pending/<role>")
@require_permission("docs.view")
def pending_approvals(role: str):
    items = _service().pending_for(role)
    return jsonify(
        {
            "success": True,
            "documents": [{**item.document.to_dict(), "revision": item.revision} for item in items],
        }
    )


@approvals_bp.post("/verify-signature")
@require_permission("docs.view")
def verify_signature():
    payload = _payload()
    missing = [k for k in ("documentId", "user", "signature") if not payload.get(k)]
    if missing:
        raise ValidationError.missing(missing)
    record = _service().verify_signature(payload["documentId"], approver=payload["user"], signature=payload["signature"])
    if record is None:
        return jsonify({"success": False, "isValid": False, "error": "Invalid signature"}), 400
    return jsonify({"success": True, "isValid": True, "approval": record.to_dict()})


# ---------------- share links ----------------


@share_bp.post("/<doc_id>/share")
@require_permission("docs.share")
def create_share_link(doc_id: str):
    u = _current_user()
    payload = _payload()
    try:
        expires_at = parse_datetime(payload.get("expiresAt"))
    except (TypeError, ValueError):
        raise ValidationError("expiresAt must be an ISO-8601 timestamp.", fields=["expiresAt"]) from None
    loaded, link, url = _service().create_share_link(
        doc_id,
        access_level=payload.get("accessLevel"),
        expires_at=expires_at,
        creator=u.username,
        expected_revision=_revision(payload),
    )
    return jsonify(
        {
            "success": True,
            "shareableLink": url,
            "link": link.to_dict(),
            "revision": loaded.revision,
            "message": "Shareable link created successfully",
        }
    ), 201


@share_bp.get("/<doc_id>/links")
@require_permission("docs.share")
def list_share_links(doc_id: str):
    links = _service().list_share_links(doc_id)
    return jsonify({"success": True, "links": [link.to_dict() for link in links]})


@share_bp.delete("/<doc_id>/links/<token>")
@require_permission("docs.share")
def deactivate_share_link(doc_id: str, token: str):
    u = _current_user()
    loaded = _service().deactivate_share_link(doc_id, token, actor=u.username, expected_revision=_revision(_payload()))
    return jsonify({"success": True, "revision": loaded.revision, "message": "Shareable link deactivated"})


@share_bp.get("/shared/<token>")
def resolve_shared(token: str):
    view = _service().resolve_shared(token, **_client_info())
    return jsonify({"success": True, "document": view.to_dict()})


@share_bp.get("/shared/<token>/file")
def download_shared_file(token: str):
    ref, fobj = _service().open_shared_file(token, **_client_info())
    return send_file(fobj, mimetype=ref.content_type, as_attachment=True, download_name=ref.filename, max_age=0)
