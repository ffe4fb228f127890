from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.aneti.audit import record_event
from app.aneti.constants import STATUS_DRAFT
from app.aneti.db import db_session, get_or_404
from app.aneti.errors import InvalidTransition, ValidationFailed
from app.aneti.modules.applications.models import Application
from app.aneti.modules.applications.service import ensure_subscription_unbound
from app.aneti.modules.billing.service import billing_client_for, ensure_subscription, handle_webhook_event
from app.aneti.modules.billing.stripe_client import (
    BillingError,
    WebhookSignatureError,
    parse_event,
    verify_webhook_signature,
)
from app.aneti.modules.membership_plans.service import get_registration_plan
from app.aneti.rbac import current_member, ensure_owner
from app.aneti.utils import clean_str, parse_int, request_payload

bp = Blueprint("billing", __name__)


@bp.post("/create-subscription")
def create_subscription():
    """
    Start payment for a paid plan. Works before the account exists (registration
    wizard); a logged-in member may pass applicationId to bind the ids to a draft.
    """
    s = db_session()
    payload = request_payload()
    plan = get_registration_plan(s, parse_int(payload.get("planId")))
    email = clean_str(payload.get("email")).lower()
    full_name = clean_str(payload.get("fullName"))
    errors = []
    if not email or "@" not in email:
        errors.append("Email inválido.")
    if not full_name:
        errors.append("Nome completo é obrigatório.")
    if errors:
        raise ValidationFailed(errors)

    application: Application | None = None
    application_id = parse_int(payload.get("applicationId"))
    member = current_member()
    if application_id is not None:
        if member is None:
            raise ValidationFailed("applicationId requires a logged-in member.")
        application = get_or_404(s, Application, application_id)
        ensure_owner(member, application.user_id)
        if application.status != STATUS_DRAFT:
            raise InvalidTransition("Payment can only be started for a draft application.")
        if application.plan_id != plan.id:
            raise ValidationFailed("planId does not match the application's plan.")

    boot = ensure_subscription(
        s,
        plan,
        email,
        full_name,
        client=billing_client_for(current_app),
        currency=current_app.config.get("STRIPE_CURRENCY") or "brl",
    )

    if application is not None:
        ensure_subscription_unbound(s, boot.subscription_id, application_id=application.id)
        application.billing_customer_id = boot.customer_id
        application.billing_subscription_id = boot.subscription_id
    record_event(
        s,
        actor=member.user if member else None,
        action="billing.subscription_start",
        entity_type="MembershipPlan",
        entity_id=str(plan.id),
        metadata={
            "customer_id": boot.customer_id,
            "subscription_id": boot.subscription_id,
            "application_id": application.id if application else None,
        },
    )
    s.commit()
    return jsonify(boot.to_dict())


@bp.post("/billing/webhook")
def billing_webhook():
    payload = request.get_data()
    secret = (current_app.config.get("STRIPE_WEBHOOK_SECRET") or "").strip()
    try:
        if secret:
            event = verify_webhook_signature(payload, request.headers.get("Stripe-Signature"), secret)
        else:
            current_app.logger.warning("STRIPE_WEBHOOK_SECRET not set; accepting billing webhook without signature check")
            event = parse_event(payload)
    except WebhookSignatureError as e:
        current_app.logger.warning("Rejected billing webhook (request_id=%s): %s", getattr(g, "request_id", None), e)
        return jsonify({"success": False, "message": "Invalid signature"}), 400
    except BillingError as e:
        current_app.logger.warning("Malformed billing webhook (request_id=%s): %s", getattr(g, "request_id", None), e)
        return jsonify({"success": False, "message": "Invalid payload"}), 400

    s = db_session()
    outcome = handle_webhook_event(s, event)
    s.commit()
    current_app.logger.info("Billing webhook %s (%s): %s", event.get("id"), event.get("type"), outcome)
    return jsonify({"received": True, "outcome": outcome})
