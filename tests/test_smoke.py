import pytest
from werkzeug.security import generate_password_hash

from app.docflow import auth, create_app
from app.docflow.db import session_scope
from app.docflow.models import AuditEvent, Base, User


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    auth._login_attempts.clear()

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(User(username="admin", password_hash=generate_password_hash("pw"), role="Admin", is_active=True))
        s.add(User(username="gone", password_hash=generate_password_hash("pw"), role="Staff", is_active=False))

    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert client.get("/healthz").status_code == 200


def test_login_me_and_logout(client):
    assert client.get("/auth/me").status_code == 401

    r = client.post("/auth/login", json={"username": "admin", "password": "pw"})
    assert r.status_code == 200
    assert r.json["user"]["role"] == "Admin"

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["username"] == "admin"

    assert client.post("/auth/logout").status_code == 200
    assert client.get("/auth/me").status_code == 401

    with session_scope(client.application) as s:
        actions = [e.action for e in s.query(AuditEvent).order_by(AuditEvent.id.asc()).all()]
    assert actions == ["Login", "Logout"]


def test_bad_credentials_and_inactive_users_are_refused(client):
    r = client.post("/auth/login", json={"username": "admin", "password": "wrong"})
    assert r.status_code == 401
    r = client.post("/auth/login", json={"username": "gone", "password": "pw"})
    assert r.status_code == 401

    with session_scope(client.application) as s:
        failed = s.query(AuditEvent).filter(AuditEvent.action == "Login Failed").count()
    assert failed == 2


def test_login_rate_limit(client):
    for _ in range(5):
        client.post("/auth/login", json={"username": "admin", "password": "wrong"})
    r = client.post("/auth/login", json={"username": "admin", "password": "pw"})
    assert r.status_code == 429


def test_unknown_route_is_json_404(client):
    r = client.get("/nope")
    assert r.status_code == 404
    assert r.json["success"] is False


def test_production_guardrails(tmp_path, monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "change-me")
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@localhost/docflow")
    with pytest.raises(RuntimeError):
        create_app()

    monkeypatch.setenv("SECRET_KEY", "strong")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    with pytest.raises(RuntimeError):
        create_app()


def test_release_refuses_sqlite_in_production(tmp_path, monkeypatch):
    from scripts.release import run_release

    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    with pytest.raises(RuntimeError):
        run_release()
    assert not (tmp_path / "prod.db").exists()


def test_start_execs_gunicorn_on_wsgi_app(monkeypatch):
    from scripts.start import gunicorn_argv

    monkeypatch.setenv("GUNICORN_TIMEOUT", "90")
    argv = gunicorn_argv("8000", "3")
    assert argv[:2] == ["gunicorn", "app.wsgi:app"]
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:8000"
    assert argv[argv.index("--workers") + 1] == "3"
    assert argv[argv.index("--timeout") + 1] == "90"
