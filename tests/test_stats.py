"""Tests for the admin dashboard aggregates."""
from datetime import date, datetime, time

import pytest
from sqlalchemy import select
from werkzeug.security import generate_password_hash

from app.aneti import create_app
from app.aneti.auth import _login_attempts
from app.aneti.db import session_scope
from app.aneti.models import Base, User
from app.aneti.modules.applications.models import Application
from app.aneti.modules.membership_plans.models import MembershipPlan
from app.aneti.modules.membership_plans.service import seed_default_plans
from app.aneti.modules.stats.service import compute_admin_stats, growth_percent, percentage
from app.aneti.utils import first_of_month, previous_month_bounds


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    _login_attempts.clear()

    app = create_app()
    app.config["TESTING"] = True
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    today = date.today()
    this_month = datetime.combine(first_of_month(today), time(12, 0))
    last_month = datetime.combine(previous_month_bounds(today)[0], time(12, 0))

    with session_scope(app) as s:
        seed_default_plans(s)
        plans = {p.name: p for p in s.scalars(select(MembershipPlan))}

        def member(username, plan, state, city, created_at, **kw):
            values = dict(
                email=f"{username}@example.com",
                username=username,
                password_hash=generate_password_hash("pw"),
                full_name=username.title(),
                role="member",
                is_approved=True,
                state=state,
                city=city,
                plan_name=plan.name if plan else None,
                current_plan_id=plan.id if plan else None,
                created_at=created_at,
                updated_at=created_at,
            )
            values.update(kw)
            u = User(**values)
            s.add(u)
            return u

        member("ana", plans["Júnior"], "SP", "São Paulo", this_month)
        member("bruno", plans["Júnior"], "SP", "Campinas", this_month)
        member("carla", plans["Sênior"], "RJ", "Rio de Janeiro", last_month)
        # not counted: inactive, unapproved, admin
        member("davi", plans["Pleno"], "MG", "Belo Horizonte", this_month, is_active=False)
        eva = member("eva", None, "BA", "Salvador", this_month, is_approved=False)
        member("admin", None, "DF", "Brasília", this_month, role="admin")
        s.flush()
        s.add(Application(user_id=eva.id, plan_id=plans["Pleno"].id, status="pending", experience_years=4))
    return app


def test_percentage_and_growth():
    assert percentage(1, 3) == 33.3
    assert percentage(0, 0) == 0.0
    assert growth_percent(2, 1) == 100.0
    assert growth_percent(1, 2) == -50.0
    assert growth_percent(3, 0) == 100.0
    assert growth_percent(0, 0) == 0.0


def test_compute_admin_stats(app):
    with session_scope(app) as s:
        stats = compute_admin_stats(s, date.today())

    assert stats["activeMembers"] == 3
    assert stats["newMembersThisMonth"] == 2
    assert stats["newMembersLastMonth"] == 1
    assert stats["memberGrowthPercent"] == 100.0
    assert stats["pendingApplications"] == 1
    assert stats["applicationsByStatus"]["draft"] == 0

    by_plan = stats["membersByPlan"]
    assert by_plan["Júnior"] == {"count": 2, "percentage": 66.7}
    assert by_plan["Sênior"] == {"count": 1, "percentage": 33.3}
    assert by_plan["Pleno"]["count"] == 0
    assert stats["lastMonthMembersByPlan"]["Sênior"] == {"count": 1, "percentage": 100.0}

    assert stats["membersByState"] == [
        {"state": "SP", "count": 2, "percentage": 66.7},
        {"state": "RJ", "count": 1, "percentage": 33.3},
    ]
    assert [c["city"] for c in stats["membersByCity"]["SP"]] == ["Campinas", "São Paulo"]
    assert "MG" not in stats["membersByCity"]

    revenue = {r["planName"]: r for r in stats["revenueByPlan"]}
    assert revenue["Júnior"]["subscribers"] == 2
    assert revenue["Júnior"]["yearlyRevenue"] == 5000
    assert revenue["Sênior"]["yearlyRevenue"] == 9900
    assert "Pleno" not in revenue
    assert stats["yearlyRevenueEstimate"] == 14900


def test_monthly_plans_are_annualised(app):
    with session_scope(app) as s:
        junior = s.scalars(select(MembershipPlan).where(MembershipPlan.name == "Júnior")).one()
        junior.billing_period = "monthly"
    with session_scope(app) as s:
        stats = compute_admin_stats(s, date.today())
    revenue = {r["planName"]: r for r in stats["revenueByPlan"]}
    assert revenue["Júnior"]["yearlyRevenue"] == 2500 * 2 * 12


def test_stats_endpoint_requires_admin(app):
    c = app.test_client()
    c.environ_base["HTTP_X_CSRF_TOKEN"] = c.get("/auth/csrf-token").json["csrfToken"]
    assert c.get("/admin/stats").status_code == 401

    c.post("/auth/login", json={"email": "ana@example.com", "password": "pw"})
    assert c.get("/admin/stats").status_code == 403

    c.post("/admin/auth/login", json={"email": "admin@example.com", "password": "pw"})
    r = c.get("/admin/stats")
    assert r.status_code == 200
    assert r.json["activeMembers"] == 3
    assert r.json["yearlyRevenueEstimate"] == 14900
