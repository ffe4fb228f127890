from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from app.aneti.db import db_session, get_or_404
from app.aneti.errors import ValidationFailed
from app.aneti.modules.applications.models import Application
from app.aneti.modules.applications.service import (
    attach_provisional,
    create_application,
    file_appeal,
    list_user_applications,
    resubmit_application,
    serialize_appeal,
    serialize_application,
    submit_application,
)
from app.aneti.modules.billing.service import billing_client_for, verified_subscription_id
from app.aneti.modules.documents.service import ProvisionalDocuments, key_owned_by, serialize_document
from app.aneti.modules.membership_plans.service import get_registration_plan
from app.aneti.rbac import AuthContext, ensure_owner, require_member
from app.aneti.utils import clean_str, parse_bool, parse_int, request_payload

bp = Blueprint("member_applications", __name__)


def _own_application(s, application_id: int, auth: AuthContext) -> Application:
    application = get_or_404(s, Application, application_id)
    ensure_owner(auth, application.user_id)
    return application


@bp.get("/member-applications")
@require_member
def applications_list(auth: AuthContext):
    s = db_session()
    return jsonify([serialize_application(a) for a in list_user_applications(s, auth.subject_id)])


@bp.post("/member-applications")
@require_member
def applications_create(auth: AuthContext):
    """
    Creates a draft. Documents may be attached in the same call, and with
    `submit: true` the draft is submitted in the same transaction.
    """
    s = db_session()
    payload = request_payload()
    plan = get_registration_plan(s, parse_int(payload.get("planId")))

    years = parse_int(payload.get("experienceYears"))
    if years is None or years < 0:
        raise ValidationFailed("Anos de experiência deve ser um número maior ou igual a zero.")

    docs = ProvisionalDocuments.from_payload(payload.get("documents"))
    foreign = [ref.url for _, ref in docs.items() if not key_owned_by(ref.url, auth.subject_id)]
    if foreign:
        raise ValidationFailed("documentURL não pertence a este usuário.")

    customer_id = clean_str(payload.get("billingCustomerId")) or None
    subscription_id = verified_subscription_id(
        plan,
        clean_str(payload.get("billingSubscriptionId")) or None,
        client=billing_client_for(current_app),
        customer_id=customer_id,
    )

    application = create_application(
        s,
        auth.user,
        plan,
        experience_years=years,
        is_student=parse_bool(payload.get("isStudent")),
        student_proof=clean_str(payload.get("studentProof")) or None,
        billing_customer_id=customer_id,
        billing_subscription_id=subscription_id,
    )
    attach_provisional(s, application, docs, auth.user)
    if parse_bool(payload.get("submit")):
        submit_application(s, application, auth.user)
    s.commit()
    return jsonify(serialize_application(application)), 201


@bp.get("/member-applications/<int:application_id>")
@require_member
def applications_detail(application_id: int, auth: AuthContext):
    s = db_session()
    return jsonify(serialize_application(_own_application(s, application_id, auth)))


@bp.get("/member-applications/<int:application_id>/documents")
@require_member
def applications_documents(application_id: int, auth: AuthContext):
    s = db_session()
    application = _own_application(s, application_id, auth)
    return jsonify([serialize_document(d) for d in application.documents])


@bp.post("/member-applications/<int:application_id>/submit")
@require_member
def applications_submit(application_id: int, auth: AuthContext):
    s = db_session()
    application = _own_application(s, application_id, auth)
    submit_application(s, application, auth.user)
    s.commit()
    return jsonify(serialize_application(application))


@bp.post("/member-applications/<int:application_id>/resubmit")
@require_member
def applications_resubmit(application_id: int, auth: AuthContext):
    s = db_session()
    application = _own_application(s, application_id, auth)
    resubmit_application(s, application, auth.user, clean_str(request_payload().get("message")) or None)
    s.commit()
    return jsonify(serialize_application(application))


@bp.post("/member-applications/<int:application_id>/appeals")
@require_member
def applications_appeal(application_id: int, auth: AuthContext):
    s = db_session()
    application = _own_application(s, application_id, auth)
    appeal = file_appeal(s, application, auth.user, request_payload().get("message") or "")
    s.commit()
    return jsonify({"appeal": serialize_appeal(appeal), "application": serialize_application(application)}), 201
