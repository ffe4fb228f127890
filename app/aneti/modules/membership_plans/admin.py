from __future__ import annotations

from flask import Blueprint, jsonify

from app.aneti.db import db_session, get_or_404
from app.aneti.modules.membership_plans.models import MembershipPlan
from app.aneti.modules.membership_plans.service import create_plan, list_all_plans, serialize_plan, update_plan
from app.aneti.rbac import AuthContext, require_admin
from app.aneti.utils import request_payload

bp = Blueprint("membership_plans_admin", __name__)


@bp.get("/membership-plans")
@require_admin
def plans_list(auth: AuthContext):
    s = db_session()
    return jsonify([serialize_plan(p) for p in list_all_plans(s)])


@bp.post("/membership-plans")
@require_admin
def plans_create(auth: AuthContext):
    s = db_session()
    plan = create_plan(s, request_payload(), auth.user)
    s.commit()
    return jsonify(serialize_plan(plan)), 201


@bp.put("/membership-plans/<int:plan_id>")
@require_admin
def plans_update(plan_id: int, auth: AuthContext):
    s = db_session()
    plan = get_or_404(s, MembershipPlan, plan_id)
    update_plan(s, plan, request_payload(), auth.user)
    s.commit()
    return jsonify(serialize_plan(plan))
