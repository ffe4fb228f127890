from __future__ import annotations

from datetime import date, datetime

from flask import Blueprint, jsonify, request

from app.aneti.audit import list_events, record_event, serialize_event
from app.aneti.auth import serialize_user
from app.aneti.constants import BRAZILIAN_STATES
from app.aneti.db import db_session, get_or_404
from app.aneti.errors import ValidationFailed
from app.aneti.models import User
from app.aneti.modules.applications.service import serialize_application
from app.aneti.modules.membership_plans.models import MembershipPlan
from app.aneti.modules.stats.service import compute_admin_stats
from app.aneti.rbac import AuthContext, require_admin
from app.aneti.utils import clean_str, iso, parse_bool, parse_int, request_payload

bp = Blueprint("admin", __name__)

MEMBER_EDITABLE_FIELDS = {
    "fullName": "full_name",
    "phone": "phone",
    "state": "state",
    "city": "city",
    "area": "area",
}


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


@bp.get("/stats")
@require_admin
def stats(auth: AuthContext):
    s = db_session()
    return jsonify(compute_admin_stats(s, date.today()))


# ---------- Members ----------
@bp.get("/members")
@require_admin
def members_list(auth: AuthContext):
    s = db_session()
    search = (request.args.get("q") or "").strip()
    state = (request.args.get("state") or "").strip().upper()
    plan_name = (request.args.get("plan") or "").strip()
    approved = request.args.get("approved")

    q = s.query(User).filter(User.role == "member")
    if search:
        like = f"%{search}%"
        q = q.filter((User.full_name.ilike(like)) | (User.email.ilike(like)) | (User.username.ilike(like)))
    if state:
        q = q.filter(User.state == state)
    if plan_name:
        q = q.filter(User.plan_name == plan_name)
    if approved is not None and approved.strip():
        q = q.filter(User.is_approved.is_(parse_bool(approved)))

    limit = parse_int(request.args.get("limit")) or 100
    users = q.order_by(User.created_at.desc(), User.id.desc()).limit(max(1, min(limit, 500))).all()
    return jsonify([serialize_user(u) for u in users])


@bp.get("/members/<int:user_id>")
@require_admin
def members_detail(user_id: int, auth: AuthContext):
    s = db_session()
    user = get_or_404(s, User, user_id)
    d = serialize_user(user)
    d["lastLoginAt"] = iso(user.last_login_at)
    d["applications"] = [serialize_application(a, include_documents=False) for a in user.applications]
    return jsonify(d)


@bp.put("/members/<int:user_id>")
@require_admin
def members_update(user_id: int, auth: AuthContext):
    s = db_session()
    user = get_or_404(s, User, user_id)
    payload = request_payload()
    changes: dict[str, dict] = {}

    for key, attr in MEMBER_EDITABLE_FIELDS.items():
        if key not in payload:
            continue
        value = clean_str(payload.get(key)) or None
        if attr == "full_name" and not value:
            raise ValidationFailed("Nome completo é obrigatório.")
        if attr == "state" and value:
            value = value.upper()
            if value not in BRAZILIAN_STATES:
                raise ValidationFailed(f"Estado inválido: {value}.")
        if getattr(user, attr) != value:
            changes[attr] = {"old": getattr(user, attr), "new": value}
            setattr(user, attr, value)

    # Honorary and board tiers are assigned here, never through registration.
    if "planId" in payload:
        plan_id = parse_int(payload.get("planId"))
        plan = get_or_404(s, MembershipPlan, plan_id) if plan_id is not None else None
        new_name = plan.name if plan else None
        if user.current_plan_id != (plan.id if plan else None):
            changes["plan"] = {"old": user.plan_name, "new": new_name}
            user.current_plan_id = plan.id if plan else None
            user.plan_name = new_name

    if changes:
        user.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=auth.user,
            action="member.update",
            entity_type="User",
            entity_id=str(user.id),
            metadata={"changes": changes},
        )
        s.commit()
    return jsonify(serialize_user(user))


def _set_active(user_id: int, auth: AuthContext, active: bool):
    s = db_session()
    user = get_or_404(s, User, user_id)
    if user.id == auth.subject_id and not active:
        raise ValidationFailed("Você não pode desativar sua própria conta.")
    if user.is_active != active:
        user.is_active = active
        user.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=auth.user,
            action="member.activate" if active else "member.deactivate",
            entity_type="User",
            entity_id=str(user.id),
            reason=clean_str(request_payload().get("reason")) or None,
        )
        s.commit()
    return jsonify(serialize_user(user))


@bp.post("/members/<int:user_id>/deactivate")
@require_admin
def members_deactivate(user_id: int, auth: AuthContext):
    return _set_active(user_id, auth, False)


@bp.post("/members/<int:user_id>/activate")
@require_admin
def members_activate(user_id: int, auth: AuthContext):
    return _set_active(user_id, auth, True)


# ---------- Audit ----------
@bp.get("/audit")
@require_admin
def audit_list(auth: AuthContext):
    """
    Newest audit events (at most AUDIT_LIST_LIMIT), optionally filtered by:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    errors = []
    if (request.args.get("date_from") or "").strip() and not date_from:
        errors.append("date_from must be YYYY-MM-DD")
    if (request.args.get("date_to") or "").strip() and not date_to:
        errors.append("date_to must be YYYY-MM-DD")
    if errors:
        raise ValidationFailed(errors)

    events = list_events(s, action=action, actor_email=actor_email, date_from=date_from, date_to=date_to)
    return jsonify([serialize_event(ev) for ev in events])
