import pytest
from werkzeug.security import generate_password_hash

from app.aneti import create_app
from app.aneti.auth import _login_attempts
from app.aneti.db import session_scope
from app.aneti.models import AuditEvent, Base, User


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "STRIPE_WEBHOOK_SECRET"):
        monkeypatch.delenv(k, raising=False)
    _login_attempts.clear()

    app = create_app()
    app.config["TESTING"] = True

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add_all(
            [
                User(
                    email="admin@example.com",
                    username="admin",
                    password_hash=generate_password_hash("pw"),
                    full_name="Admin",
                    role="admin",
                    is_approved=True,
                ),
                User(
                    email="ana@example.com",
                    username="ana",
                    password_hash=generate_password_hash("pw"),
                    full_name="Ana Souza",
                    role="member",
                ),
            ]
        )

    c = app.test_client()
    c.environ_base["HTTP_X_CSRF_TOKEN"] = c.get("/auth/csrf-token").json["csrfToken"]
    return c


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_index(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json["service"] == "aneti"


def test_state_changing_request_requires_csrf(client):
    bare = client.application.test_client()
    r = bare.post("/check-email", json={"email": "x@example.com"})
    assert r.status_code == 400
    assert r.json["success"] is False
    assert "CSRF" in r.json["message"]

    r = client.post("/check-email", json={"email": "x@example.com"})
    assert r.status_code == 200


def test_member_login_and_me(client):
    r = client.get("/auth/me")
    assert r.status_code == 401
    assert r.json["success"] is False

    r = client.post("/auth/login", json={"email": "ANA@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["user"]["username"] == "ana"

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "ana@example.com"

    client.post("/auth/logout")
    assert client.get("/auth/me").status_code == 401


def test_login_by_username(client):
    r = client.post("/auth/login", json={"username": "ana", "password": "pw"})
    assert r.status_code == 200


def test_invalid_login_is_audited(client):
    r = client.post("/auth/login", json={"email": "ana@example.com", "password": "wrong"})
    assert r.status_code == 401

    with session_scope(client.application) as s:
        events = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").all()
        assert len(events) == 1
        assert events[0].entity_id == "ana@example.com"


def test_login_rate_limit(client):
    for _ in range(5):
        assert client.post("/auth/login", json={"email": "ana@example.com", "password": "wrong"}).status_code == 401
    r = client.post("/auth/login", json={"email": "ana@example.com", "password": "pw"})
    assert r.status_code == 429


def test_admin_session_is_separate_from_member_session(client):
    # An admin logged in through the member endpoint only holds a member session.
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    assert client.get("/admin/stats").status_code == 403
    assert client.get("/admin/auth/check").json["isAuthenticated"] is False

    r = client.post("/admin/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    assert client.get("/admin/stats").status_code == 200
    assert client.get("/admin/auth/check").json["user"]["role"] == "admin"

    client.post("/admin/auth/logout")
    assert client.get("/admin/auth/check").json["isAuthenticated"] is False


def test_member_cannot_log_in_as_admin(client):
    r = client.post("/admin/auth/login", json={"email": "ana@example.com", "password": "pw"})
    assert r.status_code == 401


def test_admin_endpoint_anonymous_is_401(client):
    assert client.get("/admin/stats").status_code == 401
    assert client.get("/admin/applications").status_code == 401


def test_not_found_is_json(client):
    client.post("/admin/auth/login", json={"email": "admin@example.com", "password": "pw"})
    r = client.get("/admin/applications/999")
    assert r.status_code == 404
    assert r.json["success"] is False
