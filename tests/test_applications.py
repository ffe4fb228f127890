"""Tests for the membership application lifecycle."""
from datetime import datetime

import pytest
from sqlalchemy import select
from werkzeug.security import generate_password_hash

from app.aneti import create_app
from app.aneti.auth import _login_attempts
from app.aneti.db import session_scope
from app.aneti.errors import InvalidTransition
from app.aneti.models import AuditEvent, Base, User
from app.aneti.modules.applications.models import Application
from app.aneti.modules.applications.service import (
    _transition,
    append_admin_note,
    approve_application,
    can_transition_to,
)
from app.aneti.modules.billing.stripe_client import BillingNotFound
from app.aneti.modules.membership_plans.models import MembershipPlan
from app.aneti.modules.membership_plans.service import seed_default_plans


class KnownSubscriptions:
    """Billing client that only answers subscription lookups."""

    def __init__(self):
        self.subscriptions = {}

    def retrieve_subscription(self, subscription_id):
        if subscription_id not in self.subscriptions:
            raise BillingNotFound(f"HTTP 404 from Stripe (/v1/subscriptions/{subscription_id})")
        return self.subscriptions[subscription_id]


def _user(username, role="member"):
    return User(
        email=f"{username}@example.com",
        username=username,
        password_hash=generate_password_hash("pw"),
        full_name=username.title(),
        role=role,
        is_approved=role == "admin",
        state="SP",
        city="São Paulo",
        area="Desenvolvimento de Software",
    )


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
    app.extensions["billing_client"] = KnownSubscriptions()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        seed_default_plans(s)
        s.add_all([_user("admin", role="admin"), _user("ana"), _user("bruno")])

    c = app.test_client()
    c.environ_base["HTTP_X_CSRF_TOKEN"] = c.get("/auth/csrf-token").json["csrfToken"]
    return c


def _new_client(app, login_path, email):
    c = app.test_client()
    c.environ_base["HTTP_X_CSRF_TOKEN"] = c.get("/auth/csrf-token").json["csrfToken"]
    r = c.post(login_path, json={"email": email, "password": "pw"})
    assert r.status_code == 200
    return c


def _member(client, username="ana"):
    return _new_client(client.application, "/auth/login", f"{username}@example.com")


def _admin(client):
    return _new_client(client.application, "/admin/auth/login", "admin@example.com")


def _plan_id(app, name):
    with session_scope(app) as s:
        return s.scalar(select(MembershipPlan.id).where(MembershipPlan.name == name))


def _docs(*types):
    return [
        {
            "type": t,
            "documentURL": f"documents/anon/20260101/{i:012d}-{t}.pdf",
            "name": f"{t}.pdf",
            "mimeType": "application/pdf",
            "size": 1024,
        }
        for i, t in enumerate(types)
    ]


def _submit(member, plan="Júnior", years=2, docs=("identity", "experience"), **extra):
    payload = {
        "planId": _plan_id(member.application, plan),
        "experienceYears": years,
        "isStudent": False,
        "documents": _docs(*docs),
        "submit": True,
    }
    if plan != "Público":
        payload["billingSubscriptionId"] = "sub_test_1"
        payload["billingCustomerId"] = "cus_test_1"
        member.application.extensions["billing_client"].subscriptions["sub_test_1"] = {
            "id": "sub_test_1",
            "status": "incomplete",
            "customer": "cus_test_1",
            "metadata": {"plan_id": str(payload["planId"])},
        }
    payload.update(extra)
    return member.post("/member-applications", json=payload)


def _db_user(app, username):
    with session_scope(app) as s:
        return s.scalar(select(User).where(User.username == username))


def _db_application(app, application_id):
    with session_scope(app) as s:
        return s.get(Application, application_id)


# ---------- status machine ----------
def test_transition_table():
    a = Application(status="pending")
    assert can_transition_to(a, "approved") == (True, [])
    assert can_transition_to(a, "documents_requested")[0]
    a.status = "documents_requested"
    ok, errors = can_transition_to(a, "approved")
    assert not ok
    assert errors
    a.status = "approved"
    for target in ("pending", "rejected", "documents_requested"):
        assert not can_transition_to(a, target)[0]


def test_admin_notes_are_appended():
    a = Application()
    append_admin_note(a, "admin:root", "primeira", now=datetime(2026, 1, 2, 3, 4))
    append_admin_note(a, "admin:root", "   ")
    append_admin_note(a, "member:ana", "segunda", now=datetime(2026, 1, 3, 10, 0))
    assert a.admin_notes == "[2026-01-02 03:04] admin:root: primeira\n[2026-01-03 10:00] member:ana: segunda"


# ---------- scenario A ----------
def test_junior_submission_is_pending_with_payment_pending(client):
    member = _member(client)
    r = _submit(member, plan="Júnior", years=2)
    assert r.status_code == 201
    assert r.json["status"] == "pending"
    assert r.json["paymentStatus"] == "pending"
    assert r.json["submittedAt"] is not None
    assert sorted(d["type"] for d in r.json["documents"]) == ["experience", "identity"]


def test_free_plan_payment_status_is_free(client):
    r = _submit(_member(client), plan="Público", years=0)
    assert r.status_code == 201
    assert r.json["paymentStatus"] == "free"


def test_paid_plan_needs_subscription_before_submit(client):
    member = _member(client)
    r = member.post(
        "/member-applications",
        json={"planId": _plan_id(client.application, "Júnior"), "experienceYears": 2, "documents": _docs("identity", "experience"), "submit": True},
    )
    assert r.status_code == 400
    assert any("pagamento" in e for e in r.json["errors"])
    # nothing was persisted
    assert member.get("/member-applications").json == []


def test_ineligible_plan_is_rejected(client):
    r = _submit(_member(client), plan="Sênior", years=3)
    assert r.status_code == 400
    assert "mínimo 8" in r.json["message"]


def test_closed_plan_cannot_be_requested(client):
    r = _submit(_member(client), plan="Honra", years=10)
    assert r.status_code == 400


def test_missing_identity_blocks_submission(client):
    r = _submit(_member(client), docs=("experience",))
    assert r.status_code == 400
    assert "Documento de identidade é obrigatório." in r.json["errors"]


def test_draft_then_submit(client):
    member = _member(client)
    r = member.post(
        "/member-applications",
        json={"planId": _plan_id(client.application, "Público"), "experienceYears": 0, "documents": _docs("identity")},
    )
    assert r.status_code == 201
    assert r.json["status"] == "draft"
    app_id = r.json["id"]

    r = member.post(f"/member-applications/{app_id}/submit")
    assert r.status_code == 400

    member.post(
        "/documents",
        json={"applicationId": app_id, "documentURL": "documents/anon/20260101/abc-ctps.pdf", "type": "experience"},
    )
    r = member.post(f"/member-applications/{app_id}/submit")
    assert r.status_code == 200
    assert r.json["status"] == "pending"

    r = member.post(f"/member-applications/{app_id}/submit")
    assert r.status_code == 409


def test_one_open_application_per_user(client):
    member = _member(client)
    assert _submit(member).status_code == 201
    r = _submit(member)
    assert r.status_code == 409
    assert len(member.get("/member-applications").json) == 1


# ---------- scenario D + idempotence ----------
def test_approve_flips_user_approval(client):
    member = _member(client)
    app_id = _submit(member).json["id"]
    assert _db_user(client.application, "ana").is_approved is False

    admin = _admin(client)
    r = admin.post(f"/admin/applications/{app_id}/approve", json={"note": "Documentação ok"})
    assert r.status_code == 200
    assert r.json["changed"] is True
    assert r.json["application"]["status"] == "approved"
    assert r.json["application"]["reviewedAt"] is not None
    assert r.json["application"]["reviewedBy"] == "admin"
    assert "Documentação ok" in r.json["application"]["adminNotes"]

    user = _db_user(client.application, "ana")
    assert user.is_approved is True
    assert user.plan_name == "Júnior"
    assert user.current_plan_id == _plan_id(client.application, "Júnior")


def test_approve_twice_is_idempotent(client):
    app_id = _submit(_member(client)).json["id"]
    admin = _admin(client)
    assert admin.post(f"/admin/applications/{app_id}/approve").json["changed"] is True
    first_reviewed = _db_application(client.application, app_id).reviewed_at

    r = admin.post(f"/admin/applications/{app_id}/approve")
    assert r.status_code == 200
    assert r.json["changed"] is False
    assert _db_user(client.application, "ana").is_approved is True
    assert _db_application(client.application, app_id).reviewed_at == first_reviewed

    with session_scope(client.application) as s:
        approvals = s.query(AuditEvent).filter(AuditEvent.action == "application.approve").count()
    assert approvals == 1


def test_approve_service_never_unapproves(client):
    app_id = _submit(_member(client)).json["id"]
    with session_scope(client.application) as s:
        admin = s.scalar(select(User).where(User.username == "admin"))
        application = s.get(Application, app_id)
        assert approve_application(s, application, admin) is True
        assert approve_application(s, application, admin) is False
        assert application.user.is_approved is True


# ---------- scenario C ----------
def test_request_documents(client):
    app_id = _submit(_member(client)).json["id"]
    admin = _admin(client)
    r = admin.post(
        f"/admin/applications/{app_id}/reject",
        json={"reason": "Envie a carteira de trabalho", "requestDocuments": True},
    )
    assert r.status_code == 200
    application = r.json["application"]
    assert application["status"] == "documents_requested"
    assert application["reviewedAt"] is not None
    assert "Documentos solicitados: Envie a carteira de trabalho" in application["adminNotes"]
    assert _db_user(client.application, "ana").is_approved is False


def test_reject_requires_reason(client):
    app_id = _submit(_member(client)).json["id"]
    r = _admin(client).post(f"/admin/applications/{app_id}/reject", json={"reason": "  "})
    assert r.status_code == 400


def test_reject_and_terminal_states(client):
    app_id = _submit(_member(client)).json["id"]
    admin = _admin(client)
    r = admin.post(f"/admin/applications/{app_id}/reject", json={"reason": "Experiência não comprovada"})
    assert r.json["application"]["status"] == "rejected"
    assert _db_user(client.application, "ana").is_approved is False

    assert admin.post(f"/admin/applications/{app_id}/approve").status_code == 409
    assert admin.post(f"/admin/applications/{app_id}/reject", json={"reason": "de novo"}).status_code == 409


def test_documents_requested_cannot_be_approved_directly(client):
    app_id = _submit(_member(client)).json["id"]
    admin = _admin(client)
    admin.post(f"/admin/applications/{app_id}/reject", json={"reason": "Falta documento", "requestDocuments": True})
    r = admin.post(f"/admin/applications/{app_id}/approve")
    assert r.status_code == 409
    assert r.json["success"] is False


def test_resubmission_preserves_documents(client):
    member = _member(client)
    app_id = _submit(member).json["id"]
    admin = _admin(client)
    admin.post(f"/admin/applications/{app_id}/reject", json={"reason": "Falta documento", "requestDocuments": True})

    r = member.post(
        "/documents",
        json={"applicationId": app_id, "documentURL": "documents/anon/20260101/abc-extra.pdf", "name": "extra.pdf", "type": "experience"},
    )
    assert r.status_code == 201

    r = member.post(f"/member-applications/{app_id}/resubmit", json={"message": "Segue a carteira"})
    assert r.status_code == 200
    assert r.json["status"] == "pending"
    names = sorted(d["name"] for d in r.json["documents"])
    assert names == ["experience.pdf", "extra.pdf", "identity.pdf"]
    assert "member:ana: Segue a carteira" in r.json["adminNotes"]

    r = admin.post(f"/admin/applications/{app_id}/approve")
    assert r.json["application"]["status"] == "approved"


def test_resubmit_only_from_documents_requested(client):
    member = _member(client)
    app_id = _submit(member).json["id"]
    assert member.post(f"/member-applications/{app_id}/resubmit").status_code == 409


# ---------- appeals ----------
def test_appeal_against_rejection_requeues(client):
    member = _member(client)
    app_id = _submit(member).json["id"]
    admin = _admin(client)
    admin.post(f"/admin/applications/{app_id}/reject", json={"reason": "Experiência insuficiente"})

    r = member.post(f"/member-applications/{app_id}/appeals", json={"message": "Tenho 2 anos comprovados"})
    assert r.status_code == 201
    assert r.json["appeal"]["type"] == "appeal"
    assert r.json["appeal"]["status"] == "pending"
    assert r.json["application"]["status"] == "pending"
    assert "Recurso: Tenho 2 anos comprovados" in r.json["application"]["adminNotes"]

    appeals = admin.get("/admin/appeals?status=pending").json
    assert [a["id"] for a in appeals] == [r.json["appeal"]["id"]]

    review = admin.post(
        f"/admin/appeals/{appeals[0]['id']}/review",
        json={"status": "accepted", "response": "Vamos reavaliar"},
    )
    assert review.status_code == 200
    assert review.json["appeal"]["status"] == "accepted"
    assert _db_application(client.application, app_id).status == "pending"

    again = admin.post(f"/admin/appeals/{appeals[0]['id']}/review", json={"status": "rejected"})
    assert again.status_code == 409


def test_response_to_documents_request(client):
    member = _member(client)
    app_id = _submit(member).json["id"]
    _admin(client).post(f"/admin/applications/{app_id}/reject", json={"reason": "Falta RG legível", "requestDocuments": True})

    r = member.post(f"/member-applications/{app_id}/appeals", json={"message": "RG reenviado"})
    assert r.status_code == 201
    assert r.json["appeal"]["type"] == "response"
    assert r.json["application"]["status"] == "pending"


def test_appeal_rules(client):
    member = _member(client)
    app_id = _submit(member).json["id"]
    assert member.post(f"/member-applications/{app_id}/appeals", json={"message": "x"}).status_code == 409

    _admin(client).post(f"/admin/applications/{app_id}/reject", json={"reason": "Não"})
    assert member.post(f"/member-applications/{app_id}/appeals", json={"message": " "}).status_code == 400


def test_invalid_appeal_review_status(client):
    member = _member(client)
    app_id = _submit(member).json["id"]
    admin = _admin(client)
    admin.post(f"/admin/applications/{app_id}/reject", json={"reason": "Não"})
    appeal_id = member.post(f"/member-applications/{app_id}/appeals", json={"message": "Por favor"}).json["appeal"]["id"]
    assert admin.post(f"/admin/appeals/{appeal_id}/review", json={"status": "pending"}).status_code == 400


# ---------- authorization ----------
def test_member_cannot_use_admin_endpoints(client):
    member = _member(client)
    app_id = _submit(member).json["id"]
    assert member.post(f"/admin/applications/{app_id}/approve").status_code == 403
    assert member.get("/admin/applications").status_code == 403
    assert _db_application(client.application, app_id).status == "pending"


def test_member_cannot_see_other_members_application(client):
    app_id = _submit(_member(client, "ana")).json["id"]
    bruno = _member(client, "bruno")
    assert bruno.get(f"/member-applications/{app_id}").status_code == 403
    assert bruno.get(f"/member-applications/{app_id}/documents").status_code == 403
    assert bruno.post(f"/member-applications/{app_id}/submit").status_code == 403
    assert bruno.get("/member-applications").json == []


def test_admin_queue_hides_drafts(client):
    member = _member(client)
    member.post(
        "/member-applications",
        json={"planId": _plan_id(client.application, "Público"), "experienceYears": 0},
    )
    bruno = _member(client, "bruno")
    pending_id = _submit(bruno, plan="Público", years=0).json["id"]

    admin = _admin(client)
    queue = admin.get("/admin/applications").json
    assert [a["id"] for a in queue] == [pending_id]
    assert queue[0]["applicant"]["username"] == "bruno"
    assert len(admin.get("/admin/applications?status=draft").json) == 1
    assert admin.get("/admin/applications?status=bogus").status_code == 400

    detail = admin.get(f"/admin/applications/{pending_id}").json
    assert len(detail["documents"]) == 2


def test_transitions_are_audited(client):
    app_id = _submit(_member(client)).json["id"]
    _admin(client).post(f"/admin/applications/{app_id}/approve")
    with session_scope(client.application) as s:
        actions = [a for (a,) in s.execute(select(AuditEvent.action).where(AuditEvent.entity_type == "Application"))]
    assert "application.create" in actions
    assert "application.submit" in actions
    assert "application.approve" in actions


def test_invalid_transition_exception_type():
    a = Application(status="approved")
    with pytest.raises(InvalidTransition):
        _transition(a, "pending")
