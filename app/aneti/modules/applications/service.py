"""
Membership application lifecycle.

    draft --submit--> pending --approve--> approved (terminal)
                         |----reject-----> rejected --appeal--> pending
                         '----request----> documents_requested --resubmit/response--> pending

Review status and payment status are independent: webhooks move payment_status
without touching status, and an approved application may still be awaiting its
first charge.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.aneti.audit import record_event
from app.aneti.constants import (
    APPEAL_STATUSES,
    OPEN_APPLICATION_STATUSES,
    PAYMENT_FREE,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_STATUSES,
    STATUS_APPROVED,
    STATUS_DOCUMENTS_REQUESTED,
    STATUS_DRAFT,
    STATUS_PENDING,
    STATUS_REJECTED,
)
from app.aneti.errors import ConflictError, InvalidTransition, ValidationFailed
from app.aneti.modules.applications.models import Application, ApplicationAppeal
from app.aneti.modules.documents.service import ProvisionalDocuments, attach_document, missing_documents, serialize_document
from app.aneti.modules.membership_plans.eligibility import ineligibility_reason
from app.aneti.modules.notifications.service import (
    notify_application_approved,
    notify_application_rejected,
    notify_documents_requested,
)
from app.aneti.utils import clean_str, iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.aneti.models import User
    from app.aneti.modules.membership_plans.models import MembershipPlan

logger = logging.getLogger(__name__)


STATUS_TRANSITIONS: dict[str, set[str]] = {
    STATUS_DRAFT: {STATUS_PENDING},
    STATUS_PENDING: {STATUS_APPROVED, STATUS_REJECTED, STATUS_DOCUMENTS_REQUESTED},
    STATUS_DOCUMENTS_REQUESTED: {STATUS_PENDING},
    STATUS_REJECTED: {STATUS_PENDING},
    STATUS_APPROVED: set(),
}


def can_transition_to(application: Application, to_status: str) -> tuple[bool, list[str]]:
    errors: list[str] = []
    allowed = STATUS_TRANSITIONS.get(application.status, set())
    if to_status not in allowed:
        errors.append(f"Cannot transition from {application.status} to {to_status}.")
    return (not errors, errors)


def _transition(application: Application, to_status: str) -> str:
    ok, errors = can_transition_to(application, to_status)
    if not ok:
        raise InvalidTransition("; ".join(errors))
    old = application.status
    application.status = to_status
    application.updated_at = datetime.utcnow()
    return old


def append_admin_note(application: Application, author: str, text: str, *, now: datetime | None = None) -> None:
    """admin_notes is append-only: one timestamped line per entry."""
    text = clean_str(text)
    if not text:
        return
    stamp = (now or datetime.utcnow()).strftime("%Y-%m-%d %H:%M")
    line = f"[{stamp}] {author}: {text}"
    application.admin_notes = f"{application.admin_notes}\n{line}" if application.admin_notes else line


def initial_payment_status(plan: "MembershipPlan") -> str:
    return PAYMENT_FREE if plan.is_free else PAYMENT_PENDING


def get_open_application(s: "Session", user_id: int) -> Application | None:
    return s.scalars(
        select(Application)
        .where(Application.user_id == user_id, Application.status.in_(OPEN_APPLICATION_STATUSES))
        .order_by(Application.id.desc())
    ).first()


def list_user_applications(s: "Session", user_id: int) -> list[Application]:
    return list(s.scalars(select(Application).where(Application.user_id == user_id).order_by(Application.id.desc())))


def ensure_subscription_unbound(s: "Session", subscription_id: str, *, application_id: int | None = None) -> None:
    """A billing subscription pays for exactly one application."""
    owner = s.scalar(select(Application.id).where(Application.billing_subscription_id == subscription_id))
    if owner is not None and owner != application_id:
        raise ConflictError("Esta assinatura já está vinculada a outra solicitação.")


def create_application(
    s: "Session",
    user: "User",
    plan: "MembershipPlan",
    *,
    experience_years: int,
    is_student: bool,
    student_proof: str | None = None,
    billing_customer_id: str | None = None,
    billing_subscription_id: str | None = None,
) -> Application:
    """Create a draft application. A user may hold at most one open application."""
    if experience_years < 0:
        raise ValidationFailed("Anos de experiência deve ser um número maior ou igual a zero.")
    reason = ineligibility_reason(plan, experience_years, is_student)
    if reason:
        raise ValidationFailed(reason)
    existing = get_open_application(s, user.id)
    if existing is not None:
        raise ConflictError(f"Você já possui uma solicitação em aberto (#{existing.id}, {existing.status}).")
    if billing_subscription_id:
        ensure_subscription_unbound(s, billing_subscription_id)

    now = datetime.utcnow()
    application = Application(
        user_id=user.id,
        plan_id=plan.id,
        status=STATUS_DRAFT,
        payment_status=initial_payment_status(plan),
        experience_years=experience_years,
        is_student=is_student,
        student_proof=student_proof,
        billing_customer_id=billing_customer_id,
        billing_subscription_id=billing_subscription_id,
        created_at=now,
        updated_at=now,
    )
    application.plan = plan
    s.add(application)
    s.flush()
    record_event(
        s,
        actor=user,
        action="application.create",
        entity_type="Application",
        entity_id=str(application.id),
        metadata={"plan": plan.name, "experience_years": experience_years, "is_student": is_student},
    )
    return application


def attach_provisional(s: "Session", application: Application, docs: ProvisionalDocuments, user: "User") -> None:
    for doc_type, ref in docs.items():
        attach_document(s, application, doc_type=doc_type, file_ref=ref, user=user)


def submit_application(s: "Session", application: Application, user: "User") -> Application:
    """draft -> pending once the document set is complete (and payment started for paid plans)."""
    if application.status != STATUS_DRAFT:
        raise InvalidTransition(f"Cannot submit an application that is {application.status}.")
    plan = application.plan
    problems = missing_documents(plan, application.is_student, application.documents)
    if not plan.is_free and not application.billing_subscription_id:
        problems.append("O pagamento da assinatura precisa ser iniciado antes do envio.")
    if problems:
        raise ValidationFailed(problems)

    _transition(application, STATUS_PENDING)
    application.submitted_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="application.submit",
        entity_type="Application",
        entity_id=str(application.id),
        metadata={"documents": len(application.documents), "payment_status": application.payment_status},
    )
    return application


def resubmit_application(s: "Session", application: Application, user: "User", message: str | None = None) -> Application:
    """documents_requested -> pending; attached documents are kept as-is."""
    if application.status != STATUS_DOCUMENTS_REQUESTED:
        raise InvalidTransition(f"Cannot resubmit an application that is {application.status}.")
    problems = missing_documents(application.plan, application.is_student, application.documents, resubmission=True)
    if problems:
        raise ValidationFailed(problems)
    _transition(application, STATUS_PENDING)
    application.submitted_at = datetime.utcnow()
    append_admin_note(application, f"member:{user.username}", message or "Documentos reenviados.")
    record_event(
        s,
        actor=user,
        action="application.resubmit",
        entity_type="Application",
        entity_id=str(application.id),
        metadata={"documents": len(application.documents)},
    )
    return application


def approve_application(s: "Session", application: Application, admin: "User", note: str | None = None) -> bool:
    """
    pending -> approved. Returns False when the application was already approved
    (no side effects are repeated).
    """
    if application.status == STATUS_APPROVED:
        logger.info("Application %s already approved; approve is a no-op", application.id)
        return False
    old = _transition(application, STATUS_APPROVED)

    now = datetime.utcnow()
    application.reviewed_by = admin
    application.reviewed_at = now
    if note:
        append_admin_note(application, f"admin:{admin.username}", note)

    user = application.user
    user.is_approved = True
    user.plan_name = application.plan.name
    user.current_plan_id = application.plan_id
    user.updated_at = now

    notify_application_approved(s, application)
    record_event(
        s,
        actor=admin,
        action="application.approve",
        entity_type="Application",
        entity_id=str(application.id),
        metadata={"from": old, "to": STATUS_APPROVED, "user_id": user.id, "plan": application.plan.name},
    )
    return True


def reject_application(
    s: "Session",
    application: Application,
    admin: "User",
    reason: str,
    *,
    request_documents: bool = False,
) -> Application:
    """pending -> rejected, or pending -> documents_requested when request_documents."""
    reason = clean_str(reason)
    if not reason:
        raise ValidationFailed("Informe o motivo da decisão.")
    to_status = STATUS_DOCUMENTS_REQUESTED if request_documents else STATUS_REJECTED
    old = _transition(application, to_status)

    application.reviewed_by = admin
    application.reviewed_at = datetime.utcnow()
    label = "Documentos solicitados" if request_documents else "Rejeitado"
    append_admin_note(application, f"admin:{admin.username}", f"{label}: {reason}")

    if request_documents:
        notify_documents_requested(s, application, reason)
    else:
        notify_application_rejected(s, application, reason)
    record_event(
        s,
        actor=admin,
        action="application.request_documents" if request_documents else "application.reject",
        entity_type="Application",
        entity_id=str(application.id),
        reason=reason,
        metadata={"from": old, "to": to_status},
    )
    return application


def file_appeal(s: "Session", application: Application, user: "User", message: str) -> ApplicationAppeal:
    """
    Member follow-up after a negative decision. Against `rejected` it is an appeal,
    against `documents_requested` a response; both re-queue the application as pending.
    """
    message = clean_str(message)
    if not message:
        raise ValidationFailed("A mensagem do recurso é obrigatória.")
    if application.status == STATUS_REJECTED:
        appeal_type = "appeal"
    elif application.status == STATUS_DOCUMENTS_REQUESTED:
        appeal_type = "response"
        problems = missing_documents(application.plan, application.is_student, application.documents, resubmission=True)
        if problems:
            raise ValidationFailed(problems)
    else:
        raise InvalidTransition(f"Appeals are only accepted for rejected or documents_requested applications (is {application.status}).")

    now = datetime.utcnow()
    appeal = ApplicationAppeal(
        application_id=application.id,
        user_id=user.id,
        type=appeal_type,
        message=message,
        status="pending",
        created_at=now,
    )
    application.appeals.append(appeal)
    old = _transition(application, STATUS_PENDING)
    application.submitted_at = now
    label = "Recurso" if appeal_type == "appeal" else "Resposta"
    append_admin_note(application, f"member:{user.username}", f"{label}: {message}", now=now)
    s.flush()
    record_event(
        s,
        actor=user,
        action=f"application.{appeal_type}",
        entity_type="ApplicationAppeal",
        entity_id=str(appeal.id),
        metadata={"application_id": application.id, "from": old, "to": STATUS_PENDING},
    )
    return appeal


def review_appeal(
    s: "Session",
    appeal: ApplicationAppeal,
    admin: "User",
    *,
    status: str,
    response: str | None = None,
) -> ApplicationAppeal:
    """Record the admin's answer to an appeal. The application itself is decided through approve/reject."""
    if status not in APPEAL_STATUSES or status == "pending":
        raise ValidationFailed("Invalid appeal status. Must be one of: reviewed, accepted, rejected")
    if appeal.status != "pending":
        raise InvalidTransition(f"Appeal #{appeal.id} was already reviewed ({appeal.status}).")
    appeal.status = status
    appeal.admin_response = clean_str(response) or None
    appeal.reviewed_by_user_id = admin.id
    appeal.reviewed_at = datetime.utcnow()
    if appeal.admin_response:
        append_admin_note(appeal.application, f"admin:{admin.username}", f"Resposta ao recurso: {appeal.admin_response}")
    record_event(
        s,
        actor=admin,
        action="appeal.review",
        entity_type="ApplicationAppeal",
        entity_id=str(appeal.id),
        metadata={"application_id": appeal.application_id, "status": status},
    )
    return appeal


def update_payment_status_by_subscription(
    s: "Session", subscription_id: str, payment_status: str, *, event_id: str | None = None
) -> Application | None:
    """Webhook entry point. Unknown subscription ids are logged and dropped."""
    if payment_status not in PAYMENT_STATUSES:
        raise ValueError(f"Unknown payment status {payment_status!r}")
    application = s.scalars(
        select(Application).where(Application.billing_subscription_id == subscription_id)
    ).one_or_none()
    if application is None:
        logger.warning("Billing event %s for unknown subscription %s dropped", event_id, subscription_id)
        return None
    old = application.payment_status
    if old == payment_status:
        return application
    application.payment_status = payment_status
    application.updated_at = datetime.utcnow()
    if payment_status == PAYMENT_PAID:
        application.user.subscription_status = "active"
    else:
        application.user.subscription_status = "past_due"
    record_event(
        s,
        actor=None,
        action="application.payment_status",
        entity_type="Application",
        entity_id=str(application.id),
        metadata={"from": old, "to": payment_status, "subscription_id": subscription_id, "event_id": event_id},
    )
    return application


def serialize_appeal(appeal: ApplicationAppeal) -> dict[str, Any]:
    return {
        "id": appeal.id,
        "applicationId": appeal.application_id,
        "userId": appeal.user_id,
        "type": appeal.type,
        "message": appeal.message,
        "status": appeal.status,
        "adminResponse": appeal.admin_response,
        "reviewedAt": iso(appeal.reviewed_at),
        "createdAt": iso(appeal.created_at),
    }


def serialize_application(application: Application, *, include_documents: bool = True, admin_view: bool = False) -> dict[str, Any]:
    d: dict[str, Any] = {
        "id": application.id,
        "userId": application.user_id,
        "planId": application.plan_id,
        "planName": application.plan.name if application.plan else None,
        "status": application.status,
        "paymentStatus": application.payment_status,
        "experienceYears": application.experience_years,
        "isStudent": application.is_student,
        "studentProof": application.student_proof,
        "adminNotes": application.admin_notes,
        "reviewedAt": iso(application.reviewed_at),
        "submittedAt": iso(application.submitted_at),
        "subscriptionId": application.billing_subscription_id,
        "createdAt": iso(application.created_at),
        "updatedAt": iso(application.updated_at),
        "appeals": [serialize_appeal(a) for a in application.appeals],
    }
    if include_documents:
        d["documents"] = [serialize_document(doc) for doc in application.documents]
    if admin_view:
        u = application.user
        d["applicant"] = {
            "id": u.id,
            "fullName": u.full_name,
            "email": u.email,
            "username": u.username,
            "phone": u.phone,
            "state": u.state,
            "city": u.city,
            "area": u.area,
            "isApproved": u.is_approved,
        }
        d["reviewedBy"] = application.reviewed_by.username if application.reviewed_by else None
        d["customerId"] = application.billing_customer_id
    return d
