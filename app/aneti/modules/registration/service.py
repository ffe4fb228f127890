from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from werkzeug.security import generate_password_hash

from app.aneti.audit import record_event
from app.aneti.constants import BRAZILIAN_STATES
from app.aneti.errors import ConflictError, ValidationFailed
from app.aneti.models import User
from app.aneti.modules.applications.models import Application
from app.aneti.modules.applications.service import attach_provisional, create_application, submit_application
from app.aneti.modules.billing.service import verified_subscription_id
from app.aneti.modules.documents.service import ProvisionalDocuments
from app.aneti.modules.membership_plans.service import get_registration_plan
from app.aneti.modules.notifications.service import notify_welcome
from app.aneti.modules.registration.wizard import RegistrationWizard
from app.aneti.storage import ANON_PREFIX
from app.aneti.utils import clean_str, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.aneti.modules.billing.stripe_client import StripeClient

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[a-zA-Z0-9._-]+$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PASSWORD_SPECIALS = "@$!%*?&"


def normalize_email(email: Any) -> str:
    return clean_str(email).lower()


def username_errors(username: str) -> list[str]:
    errors: list[str] = []
    if len(username) < 3:
        errors.append("Nome de usuário deve ter pelo menos 3 caracteres.")
    elif len(username) > 30:
        errors.append("Nome de usuário deve ter no máximo 30 caracteres.")
    if username and not USERNAME_RE.match(username):
        errors.append("Nome de usuário pode conter apenas letras, números, ponto, hífen e sublinhado.")
    return errors


def password_errors(password: str) -> list[str]:
    errors: list[str] = []
    if len(password) < 8:
        errors.append("Senha deve ter pelo menos 8 caracteres.")
    if not re.search(r"[a-z]", password):
        errors.append("Senha deve conter ao menos uma letra minúscula.")
    if not re.search(r"[A-Z]", password):
        errors.append("Senha deve conter ao menos uma letra maiúscula.")
    if not re.search(r"\d", password):
        errors.append("Senha deve conter ao menos um número.")
    if not any(ch in PASSWORD_SPECIALS for ch in password):
        errors.append(f"Senha deve conter ao menos um caractere especial ({PASSWORD_SPECIALS}).")
    return errors


def is_email_available(s: "Session", email: str) -> bool:
    return s.scalar(select(User.id).where(User.email == normalize_email(email))) is None


def is_username_available(s: "Session", username: str) -> bool:
    return s.scalar(select(User.id).where(func.lower(User.username) == clean_str(username).lower())) is None


def validate_account_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    email = normalize_email(payload.get("email"))
    if not email or not EMAIL_RE.match(email):
        errors.append("Email inválido.")
    errors.extend(username_errors(clean_str(payload.get("username"))))
    password = payload.get("password") or ""
    errors.extend(password_errors(password))
    confirm = payload.get("confirmPassword")
    if confirm is not None and confirm != password:
        errors.append("As senhas não coincidem.")
    state = clean_str(payload.get("state")).upper()
    if state and state not in BRAZILIAN_STATES:
        errors.append(f"Estado inválido: {state}.")
    years = payload.get("experienceYears")
    if years not in (None, ""):
        parsed = parse_int(years)
        if parsed is None or parsed < 0:
            errors.append("Anos de experiência deve ser um número maior ou igual a zero.")
    return errors


def register_candidate(s: "Session", payload: dict, *, billing_client: "StripeClient") -> tuple[User, Application]:
    """
    Create the member account, its draft application and documents, then submit
    it, all in the caller's transaction. Any failure leaves nothing behind once
    the caller rolls back.
    """
    errors = validate_account_payload(payload)
    if errors:
        raise ValidationFailed(errors)

    email = normalize_email(payload.get("email"))
    username = clean_str(payload.get("username"))
    if not is_email_available(s, email):
        raise ConflictError("Este email já está cadastrado.")
    if not is_username_available(s, username):
        raise ConflictError("Este nome de usuário já está em uso.")

    plan = get_registration_plan(s, parse_int(payload.get("planId")))
    docs = ProvisionalDocuments.from_payload(payload.get("documents"))
    foreign = [ref.url for _, ref in docs.items() if not ref.url.startswith(ANON_PREFIX)]
    if foreign:
        raise ValidationFailed("Documentos devem ser enviados pelo formulário de inscrição.")

    wizard = RegistrationWizard.from_payload(payload, plan, docs)
    wizard.step = wizard.total_steps
    errors = wizard.validate_all()
    if errors:
        raise ValidationFailed(errors)

    customer_id = clean_str(payload.get("billingCustomerId")) or None
    subscription_id = verified_subscription_id(
        plan,
        clean_str(payload.get("billingSubscriptionId")) or None,
        client=billing_client,
        customer_id=customer_id,
    )

    now = datetime.utcnow()
    user = User(
        email=email,
        username=username,
        password_hash=generate_password_hash(payload.get("password") or ""),
        full_name=wizard.full_name,
        phone=wizard.phone,
        state=wizard.state,
        city=wizard.city,
        area=wizard.area,
        role="member",
        is_approved=False,
        is_active=True,
        billing_customer_id=customer_id,
        subscription_status="incomplete" if wizard.is_paid else None,
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()
    record_event(
        s,
        actor=user,
        action="user.register",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"username": username, "plan": plan.name},
    )

    application = create_application(
        s,
        user,
        plan,
        experience_years=wizard.experience_years,
        is_student=wizard.is_student,
        billing_customer_id=customer_id,
        billing_subscription_id=subscription_id,
    )
    attach_provisional(s, application, docs, user)
    submit_application(s, application, user)
    notify_welcome(s, user.id)
    logger.info("Registered user %s with application %s (plan %s)", user.id, application.id, plan.name)
    return user, application
