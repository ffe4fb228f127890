from __future__ import annotations

from flask import Blueprint, current_app, jsonify, session

from app.aneti.auth import serialize_user
from app.aneti.db import db_session
from app.aneti.errors import ValidationFailed
from app.aneti.modules.applications.service import serialize_application
from app.aneti.modules.billing.service import billing_client_for
from app.aneti.modules.documents.service import ProvisionalDocuments
from app.aneti.modules.membership_plans.models import MembershipPlan
from app.aneti.modules.registration.service import (
    is_email_available,
    is_username_available,
    normalize_email,
    register_candidate,
    username_errors,
)
from app.aneti.modules.registration.wizard import RegistrationWizard
from app.aneti.rbac import MEMBER_SESSION_KEY
from app.aneti.security import ensure_csrf_token
from app.aneti.utils import clean_str, parse_int, request_payload

bp = Blueprint("registration", __name__)


@bp.post("/check-email")
def check_email():
    s = db_session()
    email = normalize_email(request_payload().get("email"))
    if not email:
        raise ValidationFailed("Email é obrigatório.")
    return jsonify({"email": email, "available": is_email_available(s, email)})


@bp.post("/check-username")
def check_username():
    s = db_session()
    username = clean_str(request_payload().get("username"))
    errors = username_errors(username)
    if errors:
        return jsonify({"username": username, "available": False, "errors": errors})
    return jsonify({"username": username, "available": is_username_available(s, username)})


@bp.post("/registration/validate-step")
def validate_step():
    """Server-side mirror of the wizard's per-step guard."""
    s = db_session()
    payload = request_payload()
    plan_id = parse_int(payload.get("planId"))
    plan = s.get(MembershipPlan, plan_id) if plan_id is not None else None
    if plan is not None and not (plan.is_active and plan.is_available_for_registration):
        plan = None
    try:
        docs = ProvisionalDocuments.from_payload(payload.get("documents"))
    except ValidationFailed as e:
        return jsonify({"ok": False, "errors": e.errors, "totalSteps": 4})
    wizard = RegistrationWizard.from_payload(payload, plan, docs)
    errors = wizard.step_errors()
    return jsonify({"ok": not errors, "errors": errors, "step": wizard.step, "totalSteps": wizard.total_steps})


@bp.post("/register")
def register():
    s = db_session()
    user, application = register_candidate(s, request_payload(), billing_client=billing_client_for(current_app))
    s.commit()
    session[MEMBER_SESSION_KEY] = user.id
    session.permanent = True
    current_app.logger.info("New registration user_id=%s application_id=%s", user.id, application.id)
    return (
        jsonify(
            {
                "success": True,
                "user": serialize_user(user),
                "application": serialize_application(application),
                "csrfToken": ensure_csrf_token(),
            }
        ),
        201,
    )
