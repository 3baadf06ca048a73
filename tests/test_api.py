import io

import pytest
from werkzeug.security import generate_password_hash

from app.docflow import auth, create_app
from app.docflow.db import session_scope
from app.docflow.models import AuditEvent, Base, User


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.delenv("PUBLIC_BASE_URL", raising=False)
    auth._login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        for username, role in (("ada", "Admin"), ("sam", "Staff"), ("tess", "Staff"), ("vic", "Viewer")):
            s.add(User(username=username, password_hash=generate_password_hash("pw"), role=role, is_active=True))

    return app


def _login(app, username: str):
    c = app.test_client()
    r = c.post("/auth/login", json={"username": username, "password": "pw"})
    assert r.status_code == 200
    assert r.json["user"]["username"] == username
    return c


def _create(client, **overrides):
    body = {"title": "Spec v1", "category": "Normal File", "description": "first", "tags": ["hw"]}
    body.update(overrides)
    r = client.post("/api/documents", json=body)
    assert r.status_code == 201, r.json
    return r.json["document"]


def test_anonymous_and_underprivileged_access_is_refused(app):
    anon = app.test_client()
    r = anon.get("/api/documents")
    assert r.status_code == 401
    assert r.json["success"] is False

    viewer = _login(app, "vic")
    assert viewer.get("/api/documents").status_code == 200
    r = viewer.post("/api/documents", json={"title": "x", "category": "Normal File"})
    assert r.status_code == 403


def test_document_lifecycle_over_http(app):
    staff = _login(app, "sam")
    doc = _create(staff)
    doc_id = doc["id"]
    assert doc["currentVersion"] == 1
    assert doc["uploadedBy"] == "sam"

    r = staff.put(f"/api/documents/{doc_id}", json={"description": "second", "revision": 1})
    assert r.status_code == 200
    assert r.json["revision"] == 2
    assert r.json["document"]["currentVersion"] == 2

    # stale revision token
    r = staff.put(f"/api/documents/{doc_id}", json={"description": "third", "revision": 1})
    assert r.status_code == 409
    assert r.json["category"] == "conflict"

    r = staff.put(f"/api/documents/{doc_id}", json={"category": "Embedded System Design"})
    assert r.status_code == 400
    assert r.json["category"] == "validation"

    r = staff.get(f"/api/documents/{doc_id}")
    assert r.status_code == 200
    assert [v["version"] for v in r.json["document"]["versions"]] == [2, 1]

    r = staff.get(f"/api/versions/{doc_id}/compare/1/2")
    assert r.json["diff"]["description"] == {"old": "first", "new": "second"}

    r = staff.post(f"/api/versions/{doc_id}/revert/1")
    assert r.status_code == 200
    assert r.json["document"]["currentVersion"] == 3
    assert r.json["document"]["description"] == "first"

    r = staff.get(f"/api/versions/{doc_id}/versions/3")
    assert r.json["version"]["changeSummary"] == "Reverted to version 1"

    assert staff.get(f"/api/versions/{doc_id}/versions/8").status_code == 404
    assert staff.get("/api/documents/nope").status_code == 404

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).filter(AuditEvent.document_id == doc_id).order_by(AuditEvent.id)]
    assert actions == ["Upload", "Edit", "Revert"]


def test_multipart_upload_and_download(app):
    staff = _login(app, "sam")
    r = staff.post(
        "/api/documents",
        data={"title": "Manual", "category": "Normal File", "tags": "a,b", "file": (io.BytesIO(b"hello world"), "manual.pdf")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    doc = r.json["document"]
    assert doc["file"]["filename"] == "manual.pdf"
    assert doc["tags"] == ["a", "b"]

    r = staff.get(f"/api/documents/{doc['id']}/file")
    assert r.status_code == 200
    assert r.data == b"hello world"


def test_approval_flow_over_http(app):
    staff = _login(app, "sam")
    admin = _login(app, "ada")
    doc_id = _create(staff)["id"]

    r = staff.post(
        f"/api/approvals/{doc_id}/setup-approval",
        json={"type": "multi", "levels": [{"role": "Staff", "order": 0}, {"role": "Admin", "order": 1}]},
    )
    assert r.status_code == 200

    r = admin.get("/api/approvals/pending/Staff")
    assert [d["id"] for d in r.json["documents"]] == [doc_id]

    r = staff.post(f"/api/approvals/{doc_id}/approve", json={"status": "approved", "comment": "ok"})
    assert r.status_code == 200
    assert r.json["document"]["approvalFlow"]["currentLevel"] == 1
    signature = r.json["approval"]["signature"]

    r = staff.post(f"/api/approvals/{doc_id}/approve", json={"status": "approved"})
    assert r.status_code == 409
    assert r.json["category"] == "duplicate_approval"

    r = admin.post(f"/api/approvals/{doc_id}/approve", json={"status": "approved"})
    assert r.json["document"]["approvalFlow"]["complete"] is True

    r = staff.get(f"/api/approvals/{doc_id}/approvals")
    assert [a["approver"] for a in r.json["approvals"]] == ["sam", "ada"]

    r = staff.post("/api/approvals/verify-signature", json={"documentId": doc_id, "user": "sam", "signature": signature})
    assert r.status_code == 200
    assert r.json["isValid"] is True
    r = staff.post("/api/approvals/verify-signature", json={"documentId": doc_id, "user": "sam", "signature": "0" * 64})
    assert r.status_code == 400
    assert r.json["isValid"] is False

    r = staff.post(f"/api/approvals/{doc_id}/approve", json={"status": "maybe"})
    assert r.status_code == 400


def test_share_links_over_http(app):
    staff = _login(app, "sam")
    r = staff.post(
        "/api/documents",
        data={"title": "Manual", "category": "Normal File", "file": (io.BytesIO(b"payload"), "manual.pdf")},
        content_type="multipart/form-data",
    )
    doc_id = r.json["document"]["id"]

    r = staff.post(f"/api/share/{doc_id}/share", json={"accessLevel": "view"})
    assert r.status_code == 201
    view_token = r.json["link"]["token"]
    assert r.json["shareableLink"].endswith(f"/api/share/shared/{view_token}")

    r = staff.post(f"/api/share/{doc_id}/share", json={"accessLevel": "download"})
    dl_token = r.json["link"]["token"]

    r = staff.post(f"/api/share/{doc_id}/share", json={"accessLevel": "view", "expiresAt": "2020-01-01T00:00:00Z"})
    expired_token = r.json["link"]["token"]

    anon = app.test_client()
    r = anon.get(f"/api/share/shared/{view_token}")
    assert r.status_code == 200
    assert r.json["document"]["title"] == "Manual"
    assert r.json["document"]["file"] is None
    assert anon.get(f"/api/share/shared/{view_token}/file").status_code == 403

    r = anon.get(f"/api/share/shared/{dl_token}/file")
    assert r.status_code == 200
    assert r.data == b"payload"

    assert anon.get(f"/api/share/shared/{expired_token}").status_code == 410
    assert anon.get(f"/api/share/shared/{'0' * 64}").status_code == 404

    r = staff.get(f"/api/share/{doc_id}/links")
    assert {lk["token"] for lk in r.json["links"]} == {view_token, dl_token}

    r = staff.delete(f"/api/share/{doc_id}/links/{view_token}")
    assert r.status_code == 200
    assert anon.get(f"/api/share/shared/{view_token}").status_code == 404

    r = staff.post(f"/api/share/{doc_id}/share", json={"accessLevel": "view", "expiresAt": "soon"})
    assert r.status_code == 400


def test_visibility_and_delete(app):
    staff = _login(app, "sam")
    admin = _login(app, "ada")
    doc_id = _create(staff)["id"]

    r = staff.patch(f"/api/documents/{doc_id}/visibility", json={"isPublic": True})
    assert r.status_code == 200
    assert r.json["document"]["isPublic"] is True
    assert r.json["document"]["currentVersion"] == 1

    r = staff.delete(f"/api/documents/{doc_id}")
    assert r.status_code == 403
    assert r.json["category"] == "forbidden"

    r = admin.delete(f"/api/documents/{doc_id}")
    assert r.status_code == 200
    assert admin.get(f"/api/documents/{doc_id}").status_code == 404


def test_list_filters(app):
    staff = _login(app, "sam")
    _create(staff, title="Board", tags=["hw"])
    _create(staff, title="Firmware", tags=["fw"], description="bootloader")
    _create(staff, title="Plan", category="Embedded System Design", status="Testing & Validation", tags=[])

    r = staff.get("/api/documents?tags=hw,fw")
    assert {d["title"] for d in r.json["documents"]} == {"Board", "Firmware"}
    r = staff.get("/api/documents?search=boot")
    assert [d["title"] for d in r.json["documents"]] == ["Firmware"]
    r = staff.get("/api/documents", query_string={"category": "Embedded System Design"})
    assert [d["status"] for d in r.json["documents"]] == ["Testing & Validation"]


def test_admin_audit_and_users(app):
    admin = _login(app, "ada")
    staff = _login(app, "sam")
    doc_id = _create(staff)["id"]

    assert staff.get("/admin/audit").status_code == 403

    r = admin.get("/admin/audit", query_string={"document_id": doc_id})
    assert r.status_code == 200
    logs = r.json["logs"]
    assert [e["action"] for e in logs] == ["Upload"]
    assert logs[0]["user"] == "sam"
    assert logs[0]["doc"] == "Spec v1"

    r = admin.get(f"/admin/audit/{logs[0]['id']}")
    assert r.json["log"]["action_type"] == "create"
    assert admin.get("/admin/audit/99999").status_code == 404

    r = admin.get("/admin/audit", query_string={"action_type": "auth"})
    assert {e["user"] for e in r.json["logs"]} >= {"ada", "sam"}

    r = admin.post("/admin/users", json={"username": "newbie", "password": "longenough", "role": "Staff"})
    assert r.status_code == 201
    user_id = r.json["user"]["id"]

    r = admin.post("/admin/users", json={"username": "newbie", "password": "longenough"})
    assert r.status_code == 400

    r = admin.post(f"/admin/users/{user_id}", json={"role": "Viewer"})
    assert r.status_code == 200
    assert r.json["user"]["role"] == "Viewer"

    r = admin.get("/admin/users")
    assert "newbie" in [u["username"] for u in r.json["users"]]


def test_wrongly_typed_json_is_a_validation_error(app):
    staff = _login(app, "sam")
    r = staff.post("/api/documents", json={"title": 123, "category": "Normal File"})
    assert r.status_code == 400
    assert r.json["category"] == "validation"
    assert r.json["fields"] == ["title"]

    doc_id = _create(staff)["id"]
    r = staff.put(f"/api/documents/{doc_id}", json={"description": 5})
    assert r.status_code == 400
    assert r.json["fields"] == ["description"]

    r = staff.post(
        f"/api/approvals/{doc_id}/setup-approval",
        json={"type": "multi", "levels": [{"role": 1, "order": 0}]},
    )
    assert r.status_code == 400
    assert r.json["fields"] == ["levels"]

    r = staff.post(f"/api/share/{doc_id}/share", json={"accessLevel": "view", "expiresAt": 1700000000})
    assert r.status_code == 400
    assert r.json["fields"] == ["expiresAt"]

    r = app.test_client().post("/auth/login", json={"username": ["sam"], "password": "pw"})
    assert r.status_code == 400

    r = staff.get(f"/api/documents/{doc_id}")
    assert r.json["revision"] == 1
    assert r.json["document"]["currentVersion"] == 1


def test_delete_requires_delete_permission(app):
    staff = _login(app, "sam")
    viewer = _login(app, "vic")
    doc_id = _create(staff)["id"]

    for client in (staff, viewer):
        r = client.delete(f"/api/documents/{doc_id}")
        assert r.status_code == 403
        assert r.json["error"] == "Permission denied"
    assert staff.get(f"/api/documents/{doc_id}").status_code == 200
