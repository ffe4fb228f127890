from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash

from app.aneti.audit import record_event
from app.aneti.db import db_session
from app.aneti.models import User
from app.aneti.rbac import (
    ADMIN_SESSION_KEY,
    MEMBER_SESSION_KEY,
    AuthContext,
    current_admin,
    require_member,
)
from app.aneti.security import ensure_csrf_token
from app.aneti.utils import clean_str, iso, request_payload

bp = Blueprint("auth", __name__)
admin_bp = Blueprint("admin_auth", __name__)

_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def serialize_user(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "fullName": user.full_name,
        "phone": user.phone,
        "state": user.state,
        "city": user.city,
        "area": user.area,
        "role": user.role,
        "isApproved": user.is_approved,
        "isActive": user.is_active,
        "planName": user.plan_name,
        "currentPlanId": user.current_plan_id,
        "subscriptionStatus": user.subscription_status,
        "createdAt": iso(user.created_at),
    }


def _resolve(session_key: str, *, admin: bool) -> AuthContext | None:
    user_id = session.get(session_key)
    if not user_id:
        return None
    s = db_session()
    user = s.get(User, int(user_id))
    if not user or not user.is_active or (admin and not user.is_admin):
        session.pop(session_key, None)
        return None
    return AuthContext(subject_id=user.id, role=user.role, user=user)


def load_auth_context() -> None:
    """
    Resolves g.member_auth / g.admin_auth from the signed session cookie.
    Member and admin sessions are separate keys and never stand in for each other.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.member_auth = None
    g.admin_auth = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    try:
        g.member_auth = _resolve(MEMBER_SESSION_KEY, admin=False)
        g.admin_auth = _resolve(ADMIN_SESSION_KEY, admin=True)
    except Exception as e:
        current_app.logger.error("load_auth_context DB error (clearing session): %s", e)
        session.pop(MEMBER_SESSION_KEY, None)
        session.pop(ADMIN_SESSION_KEY, None)
        g.member_auth = None
        g.admin_auth = None


def _authenticate(identifier: str, password: str) -> User | None:
    s = db_session()
    ident = identifier.strip().lower()
    user = (
        s.query(User)
        .filter((User.email == ident) | (User.username == identifier.strip()))
        .one_or_none()
    )
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        return None
    return user


def _login(*, session_key: str, admin: bool):
    payload = request_payload()
    identifier = clean_str(payload.get("email") or payload.get("username"))
    password = payload.get("password") or ""
    ip = request.remote_addr or "unknown"

    if not identifier or not password:
        return jsonify({"success": False, "message": "Email/username and password are required."}), 400

    if _check_rate_limit(ip):
        return jsonify({"success": False, "message": "Too many login attempts. Please wait 5 minutes."}), 429

    _record_attempt(ip)

    s = db_session()
    user = _authenticate(identifier, password)
    if user is None or (admin and not user.is_admin):
        record_event(
            s,
            actor=None,
            action="admin_auth.login_failed" if admin else "auth.login_failed",
            entity_type="User",
            entity_id=identifier,
            reason="Invalid credentials",
        )
        s.commit()
        return jsonify({"success": False, "message": "Invalid credentials."}), 401

    session[session_key] = user.id
    session.permanent = True
    _login_attempts[ip].clear()
    user.last_login_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="admin_auth.login" if admin else "auth.login",
        entity_type="User",
        entity_id=str(user.id),
    )
    s.commit()
    return jsonify({"success": True, "user": serialize_user(user), "csrfToken": ensure_csrf_token()})


@bp.get("/csrf-token")
def csrf_token():
    return jsonify({"csrfToken": ensure_csrf_token()})


@bp.post("/login")
def login_post():
    try:
        return _login(session_key=MEMBER_SESSION_KEY, admin=False)
    except Exception:
        current_app.logger.exception("Login POST crashed (request_id=%s)", getattr(g, "request_id", None))
        raise


@bp.post("/logout")
def logout():
    s = db_session()
    member = getattr(g, "member_auth", None)
    if member:
        record_event(s, actor=member.user, action="auth.logout", entity_type="User", entity_id=str(member.subject_id))
        s.commit()
    session.pop(MEMBER_SESSION_KEY, None)
    return jsonify({"success": True})


@bp.get("/me")
@require_member
def me(auth: AuthContext):
    return jsonify({"user": serialize_user(auth.user)})


@admin_bp.post("/login")
def admin_login():
    try:
        return _login(session_key=ADMIN_SESSION_KEY, admin=True)
    except Exception:
        current_app.logger.exception("Admin login POST crashed (request_id=%s)", getattr(g, "request_id", None))
        raise


@admin_bp.post("/logout")
def admin_logout():
    s = db_session()
    admin = current_admin()
    if admin:
        record_event(s, actor=admin.user, action="admin_auth.logout", entity_type="User", entity_id=str(admin.subject_id))
        s.commit()
    session.pop(ADMIN_SESSION_KEY, None)
    return jsonify({"success": True, "message": "Admin logged out successfully"})


@admin_bp.get("/check")
def admin_check():
    admin = current_admin()
    if admin is None:
        return jsonify({"isAuthenticated": False})
    return jsonify(
        {
            "isAuthenticated": True,
            "user": {"id": admin.subject_id, "username": admin.user.username, "role": admin.role},
        }
    )