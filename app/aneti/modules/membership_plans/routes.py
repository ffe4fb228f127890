from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.aneti.db import db_session
from app.aneti.modules.membership_plans.service import annotate_eligibility, list_registration_plans
from app.aneti.utils import parse_bool, parse_int

bp = Blueprint("membership_plans", __name__)


@bp.get("/membership-plans")
def membership_plans_list():
    """
    Plans open for registration, ordered by priority.
    With ?experienceYears=N each plan carries `eligible` / `ineligibleReason`.
    """
    s = db_session()
    experience_years = parse_int(request.args.get("experienceYears"))
    if experience_years is not None and experience_years < 0:
        experience_years = None
    is_student = parse_bool(request.args.get("isStudent"))
    plans = list_registration_plans(s)
    return jsonify(annotate_eligibility(plans, experience_years, is_student))
