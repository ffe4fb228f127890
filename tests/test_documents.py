"""Tests for document collection and uploads."""
import io

import pytest
from sqlalchemy import select
from werkzeug.security import generate_password_hash

from app.aneti import create_app
from app.aneti.auth import _login_attempts
from app.aneti.db import session_scope
from app.aneti.errors import ValidationFailed
from app.aneti.models import Base, User
from app.aneti.modules.documents.service import (
    FileRef,
    ProvisionalDocuments,
    key_owned_by,
    missing_documents,
    validate_upload,
)
from app.aneti.modules.membership_plans.models import MembershipPlan
from app.aneti.modules.membership_plans.service import seed_default_plans


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    _login_attempts.clear()

    app = create_app()
    app.config["TESTING"] = True
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        seed_default_plans(s)
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


def _plan_id(app, name):
    with session_scope(app) as s:
        return s.scalar(select(MembershipPlan.id).where(MembershipPlan.name == name))


def _ref(name):
    return FileRef(url=f"documents/anon/20260101/abc-{name}", name=name)


def _upload(client, name="rg.pdf", data=b"%PDF-1.4 test", mime="application/pdf"):
    return client.post(
        "/documents/upload",
        data={"file": (io.BytesIO(data), name, mime)},
        content_type="multipart/form-data",
    )


def _draft(client, plan="Público", years=1):
    r = client.post(
        "/member-applications",
        json={"planId": _plan_id(client.application, plan), "experienceYears": years, "isStudent": False},
    )
    assert r.status_code == 201
    return r.json


# ---------- provisional list ----------
def test_singletons_are_replaced():
    docs = ProvisionalDocuments()
    docs.attach("identity", _ref("rg-old.pdf"))
    docs.attach("identity", _ref("rg-new.pdf"))
    docs.attach("student", _ref("matricula.pdf"))
    assert docs.identity.name == "rg-new.pdf"
    assert docs.types() == ["identity", "student"]


def test_experience_capped_at_five():
    docs = ProvisionalDocuments()
    for i in range(5):
        docs.attach("experience", _ref(f"exp{i}.pdf"))
    with pytest.raises(ValidationFailed):
        docs.attach("experience", _ref("exp5.pdf"))
    assert len(docs.experience) == 5


def test_detach_only_experience():
    docs = ProvisionalDocuments()
    docs.attach("identity", _ref("rg.pdf"))
    docs.attach("experience", _ref("a.pdf"))
    docs.attach("experience", _ref("b.pdf"))
    with pytest.raises(ValidationFailed):
        docs.detach("identity", 0)
    removed = docs.detach("experience", 0)
    assert removed.name == "a.pdf"
    assert [ref.name for ref in docs.experience] == ["b.pdf"]
    with pytest.raises(ValidationFailed):
        docs.detach("experience", 3)


def test_unknown_type_rejected():
    with pytest.raises(ValidationFailed):
        ProvisionalDocuments().attach("passport", _ref("x.pdf"))


def test_from_payload():
    docs = ProvisionalDocuments.from_payload(
        [
            {"type": "identity", "documentURL": "documents/anon/1/a-rg.pdf", "size": 12},
            {"type": "experience", "fileUrl": "documents/anon/1/b-ctps.pdf", "name": "ctps.pdf"},
        ]
    )
    assert docs.identity.name == "a-rg.pdf"
    assert docs.identity.size == 12
    assert docs.experience[0].name == "ctps.pdf"
    with pytest.raises(ValidationFailed):
        ProvisionalDocuments.from_payload([{"type": "identity"}])


# ---------- required set ----------
def test_missing_documents_rules():
    plan = MembershipPlan(name="Júnior")
    assert missing_documents(plan, False, ["identity", "experience"]) == []
    assert len(missing_documents(plan, False, ["experience"])) == 1
    assert len(missing_documents(plan, False, ["identity"])) == 1
    assert len(missing_documents(plan, False, ["identity", "identity", "experience"])) == 1
    assert len(missing_documents(plan, False, ["identity"] + ["experience"] * 6)) == 1
    assert len(missing_documents(plan, True, ["identity", "experience"])) == 1
    assert missing_documents(plan, True, ["identity", "experience", "student"]) == []
    assert len(missing_documents(plan, False, ["identity", "experience", "student"])) == 1


def test_publico_also_needs_experience_proof():
    problems = missing_documents(MembershipPlan(name="Público"), False, ["identity"])
    assert problems == ["O plano Público exige ao menos um comprovante de experiência."]


def test_resubmission_counts_are_lower_bounds():
    plan = MembershipPlan(name="Pleno")
    docs = ["identity", "identity"] + ["experience"] * 7
    assert missing_documents(plan, False, docs)
    assert missing_documents(plan, False, docs, resubmission=True) == []


def test_validate_upload():
    assert validate_upload("rg.pdf", "application/pdf", 100, 1000) == []
    assert validate_upload("foto.png", "image/png", 100, 1000) == []
    assert validate_upload("notes.txt", "text/plain", 100, 1000)
    assert validate_upload("rg.pdf", "application/pdf", 0, 1000)
    assert validate_upload("rg.pdf", "application/pdf", 2000, 1000)


def test_key_owned_by():
    assert key_owned_by("documents/7/20260101/abc-rg.pdf", 7)
    assert key_owned_by("documents/anon/20260101/abc-rg.pdf", 7)
    assert not key_owned_by("documents/70/20260101/abc-rg.pdf", 7)
    assert not key_owned_by("other/7/rg.pdf", 7)


# ---------- HTTP ----------
def test_anonymous_upload_stores_under_anon(client, tmp_path):
    r = _upload(client)
    assert r.status_code == 201
    key = r.json["fileUrl"]
    assert key.startswith("documents/anon/")
    assert key.endswith("-rg.pdf")
    assert r.json["size"] == len(b"%PDF-1.4 test")
    assert (tmp_path / "storage" / key).read_bytes() == b"%PDF-1.4 test"


def test_member_upload_stores_under_user_id(client):
    client.post("/auth/login", json={"email": "ana@example.com", "password": "pw"})
    r = _upload(client)
    assert r.status_code == 201
    with session_scope(client.application) as s:
        uid = s.scalar(select(User.id).where(User.username == "ana"))
    assert r.json["fileUrl"].startswith(f"documents/{uid}/")


def test_upload_rejects_other_types(client):
    r = _upload(client, name="notes.txt", data=b"hello", mime="text/plain")
    assert r.status_code == 400
    assert "PDF" in r.json["errors"][0]


def test_upload_rejects_large_files(client):
    client.application.config["MAX_UPLOAD_BYTES"] = 10
    r = _upload(client, data=b"x" * 20)
    assert r.status_code == 400
    assert "muito grande" in r.json["message"]


def test_upload_without_file(client):
    r = client.post("/documents/upload", data={}, content_type="multipart/form-data")
    assert r.status_code == 400


def test_attach_and_detach_in_draft(client):
    client.post("/auth/login", json={"email": "ana@example.com", "password": "pw"})
    app_id = _draft(client)["id"]

    key = _upload(client).json["fileUrl"]
    r = client.post("/documents", json={"applicationId": app_id, "documentURL": key, "name": "rg.pdf", "type": "identity"})
    assert r.status_code == 201
    first_id = r.json["id"]

    # identity is a singleton in draft: re-attaching replaces
    key2 = _upload(client, name="rg2.pdf").json["fileUrl"]
    r = client.post("/documents", json={"applicationId": app_id, "documentURL": key2, "name": "rg2.pdf", "type": "identity"})
    assert r.status_code == 201
    docs = client.get(f"/member-applications/{app_id}/documents").json
    assert [d["name"] for d in docs] == ["rg2.pdf"]
    assert first_id not in [d["id"] for d in docs]

    r = client.delete(f"/documents/{docs[0]['id']}")
    assert r.status_code == 200
    assert client.get(f"/member-applications/{app_id}/documents").json == []


def test_attach_rejects_foreign_keys(client):
    client.post("/auth/login", json={"email": "ana@example.com", "password": "pw"})
    app_id = _draft(client)["id"]
    r = client.post(
        "/documents",
        json={"applicationId": app_id, "documentURL": "documents/999/20260101/abc-rg.pdf", "type": "identity"},
    )
    assert r.status_code == 400


def test_attach_rejects_bad_type(client):
    client.post("/auth/login", json={"email": "ana@example.com", "password": "pw"})
    app_id = _draft(client)["id"]
    r = client.post(
        "/documents",
        json={"applicationId": app_id, "documentURL": "documents/anon/20260101/abc-x.pdf", "type": "passport"},
    )
    assert r.status_code == 400


def test_detach_after_submit_is_conflict(client):
    client.post("/auth/login", json={"email": "ana@example.com", "password": "pw"})
    app_id = _draft(client)["id"]
    ids = []
    for doc_type in ("identity", "experience"):
        r = client.post(
            "/documents",
            json={"applicationId": app_id, "documentURL": f"documents/anon/20260101/abc-{doc_type}.pdf", "type": doc_type},
        )
        ids.append(r.json["id"])
    assert client.post(f"/member-applications/{app_id}/submit").status_code == 200

    r = client.delete(f"/documents/{ids[0]}")
    assert r.status_code == 409
    r = client.post(
        "/documents",
        json={"applicationId": app_id, "documentURL": "documents/anon/20260101/abc-more.pdf", "type": "experience"},
    )
    assert r.status_code == 409


def test_admin_download(client):
    client.post("/auth/login", json={"email": "ana@example.com", "password": "pw"})
    app_id = _draft(client)["id"]
    key = _upload(client, data=b"%PDF-1.4 identity").json["fileUrl"]
    doc_id = client.post(
        "/documents",
        json={"applicationId": app_id, "documentURL": key, "name": "rg.pdf", "type": "identity", "mimeType": "application/pdf"},
    ).json["id"]

    assert client.get(f"/admin/documents/{doc_id}/download").status_code == 403

    client.post("/admin/auth/login", json={"email": "admin@example.com", "password": "pw"})
    r = client.get(f"/admin/documents/{doc_id}/download")
    assert r.status_code == 200
    assert r.data == b"%PDF-1.4 identity"
    assert r.mimetype == "application/pdf"
