from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.aneti.audit import record_event
from app.aneti.constants import BILLING_PERIODS
from app.aneti.errors import ConflictError, ValidationFailed
from app.aneti.modules.membership_plans.eligibility import ineligibility_reason
from app.aneti.modules.membership_plans.models import MembershipPlan
from app.aneti.utils import clean_str, iso, parse_bool, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.aneti.models import User

logger = logging.getLogger(__name__)


DEFAULT_PLANS: list[dict[str, Any]] = [
    {
        "name": "Público",
        "description": "Acesso gratuito para estudantes e profissionais iniciantes",
        "price": 0,
        "min_experience_years": 0,
        "max_experience_years": None,
        "requires_payment": False,
        "is_available_for_registration": True,
        "priority": 1,
        "features": ["Acesso à comunidade", "Participação em fóruns", "Eventos básicos", "Networking inicial"],
        "rules": "Estar matriculado em curso de TI ou ter qualquer tempo de experiência comprovada",
    },
    {
        "name": "Júnior",
        "description": "Para profissionais com até 3 anos de experiência",
        "price": 2500,
        "min_experience_years": 0,
        "max_experience_years": 3,
        "requires_payment": True,
        "is_available_for_registration": True,
        "priority": 2,
        "features": [
            "Todos os benefícios do plano Público",
            "Acesso a webinars exclusivos",
            "Mentorias individuais",
            "Certificados de participação",
            "Acesso ao banco de vagas",
        ],
        "rules": "Ser profissional atuante em TI e comprovar até 3 anos de experiência",
    },
    {
        "name": "Pleno",
        "description": "Para profissionais com 3 a 8 anos de experiência",
        "price": 4900,
        "min_experience_years": 3,
        "max_experience_years": 8,
        "requires_payment": True,
        "is_available_for_registration": True,
        "priority": 3,
        "features": [
            "Todos os benefícios do plano Júnior",
            "Acesso a cursos avançados",
            "Participação em grupos especializados",
            "Prioridade em eventos",
            "Consultoria técnica",
        ],
        "rules": "Ser profissional atuante em TI e comprovar de 3 a 8 anos de experiência",
    },
    {
        "name": "Sênior",
        "description": "Para profissionais com 8 anos ou mais de experiência",
        "price": 9900,
        "min_experience_years": 8,
        "max_experience_years": None,
        "requires_payment": True,
        "is_available_for_registration": True,
        "priority": 4,
        "features": [
            "Todos os benefícios do plano Pleno",
            "Acesso VIP a todos os eventos",
            "Participação no conselho consultivo",
            "Oportunidade de palestrante",
            "Rede premium de contatos",
            "Consultoria estratégica",
        ],
        "rules": "Ser profissional atuante em TI e comprovar 8 anos ou mais de experiência",
    },
    {
        "name": "Diretivo",
        "description": "Membros da diretoria da ANETI",
        "price": 0,
        "min_experience_years": 0,
        "max_experience_years": None,
        "requires_payment": False,
        "is_available_for_registration": False,
        "priority": 5,
        "features": ["Todos os benefícios", "Acesso administrativo", "Direito a voto em decisões", "Representação institucional"],
        "rules": "Atribuído apenas por administradores",
    },
    {
        "name": "Honra",
        "description": "Membros honorários da ANETI",
        "price": 0,
        "min_experience_years": 0,
        "max_experience_years": None,
        "requires_payment": False,
        "is_available_for_registration": False,
        "priority": 6,
        "features": ["Reconhecimento especial", "Acesso vitalício", "Participação em cerimônias", "Representação institucional"],
        "rules": "Atribuído apenas por administradores para membros com contribuições excepcionais",
    },
]


def serialize_plan(plan: MembershipPlan) -> dict[str, Any]:
    return {
        "id": plan.id,
        "name": plan.name,
        "tier": plan.tier.value if plan.tier else None,
        "description": plan.description,
        "price": plan.price,
        "currency": plan.currency,
        "minExperienceYears": plan.min_experience_years,
        "maxExperienceYears": plan.max_experience_years,
        "requiresPayment": plan.requires_payment,
        "isRecurring": plan.is_recurring,
        "billingPeriod": plan.billing_period,
        "isActive": plan.is_active,
        "isAvailableForRegistration": plan.is_available_for_registration,
        "priority": plan.priority,
        "features": list(plan.features or []),
        "rules": plan.rules,
        "hasBillingPrice": plan.billing_refs is not None,
        "createdAt": iso(plan.created_at),
        "updatedAt": iso(plan.updated_at),
    }


def list_registration_plans(s: "Session") -> list[MembershipPlan]:
    return list(
        s.scalars(
            select(MembershipPlan)
            .where(MembershipPlan.is_active.is_(True), MembershipPlan.is_available_for_registration.is_(True))
            .order_by(MembershipPlan.priority, MembershipPlan.id)
        )
    )


def list_all_plans(s: "Session") -> list[MembershipPlan]:
    return list(s.scalars(select(MembershipPlan).order_by(MembershipPlan.priority, MembershipPlan.id)))


def annotate_eligibility(
    plans: list[MembershipPlan], experience_years: int | None, is_student: bool
) -> list[dict[str, Any]]:
    out = []
    for plan in plans:
        d = serialize_plan(plan)
        if experience_years is not None:
            reason = ineligibility_reason(plan, experience_years, is_student)
            d["eligible"] = reason is None
            d["ineligibleReason"] = reason
        out.append(d)
    return out


def get_registration_plan(s: "Session", plan_id: int | None) -> MembershipPlan:
    if plan_id is None:
        raise ValidationFailed("Selecione um plano de associação.")
    plan = s.get(MembershipPlan, plan_id)
    if plan is None or not plan.is_active or not plan.is_available_for_registration:
        raise ValidationFailed("Plano de associação inválido ou indisponível.")
    return plan


def validate_plan_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial or "name" in payload:
        if not clean_str(payload.get("name")):
            errors.append("Plan name is required.")
    if "price" in payload or not partial:
        price = parse_int(payload.get("price"))
        if price is None or price < 0:
            errors.append("Price must be a non-negative integer (minor units).")
    for key in ("minExperienceYears", "maxExperienceYears"):
        raw = payload.get(key)
        if raw not in (None, ""):
            val = parse_int(raw)
            if val is None or val < 0:
                errors.append(f"{key} must be a non-negative integer.")
    lo = parse_int(payload.get("minExperienceYears"))
    hi = parse_int(payload.get("maxExperienceYears"))
    if lo is not None and hi is not None and hi < lo:
        errors.append("maxExperienceYears must be greater than or equal to minExperienceYears.")
    period = clean_str(payload.get("billingPeriod"))
    if period and period not in BILLING_PERIODS:
        errors.append(f"Invalid billingPeriod. Must be one of: {', '.join(BILLING_PERIODS)}")
    features = payload.get("features")
    if features is not None and not isinstance(features, list):
        errors.append("features must be a list of strings.")
    return errors


def _apply(plan: MembershipPlan, payload: dict) -> dict[str, Any]:
    changes: dict[str, Any] = {}

    def _set(attr: str, value: Any) -> None:
        old = getattr(plan, attr)
        if old != value:
            changes[attr] = {"old": old, "new": value}
            setattr(plan, attr, value)

    if "name" in payload:
        _set("name", clean_str(payload.get("name")))
    if "description" in payload:
        _set("description", clean_str(payload.get("description")) or None)
    if "price" in payload:
        _set("price", parse_int(payload.get("price")) or 0)
    if "currency" in payload:
        _set("currency", clean_str(payload.get("currency")).lower() or "brl")
    if "minExperienceYears" in payload:
        _set("min_experience_years", parse_int(payload.get("minExperienceYears")))
    if "maxExperienceYears" in payload:
        _set("max_experience_years", parse_int(payload.get("maxExperienceYears")))
    if "requiresPayment" in payload:
        _set("requires_payment", parse_bool(payload.get("requiresPayment")))
    if "isRecurring" in payload:
        _set("is_recurring", parse_bool(payload.get("isRecurring"), default=True))
    if "billingPeriod" in payload:
        _set("billing_period", clean_str(payload.get("billingPeriod")) or "yearly")
    if "isActive" in payload:
        _set("is_active", parse_bool(payload.get("isActive"), default=True))
    if "isAvailableForRegistration" in payload:
        _set("is_available_for_registration", parse_bool(payload.get("isAvailableForRegistration"), default=True))
    if "priority" in payload:
        _set("priority", parse_int(payload.get("priority")) or 0)
    if "features" in payload:
        _set("features", [clean_str(f) for f in (payload.get("features") or []) if clean_str(f)])
    if "rules" in payload:
        _set("rules", clean_str(payload.get("rules")) or None)
    return changes


def create_plan(s: "Session", payload: dict, user: "User | None") -> MembershipPlan:
    errors = validate_plan_payload(payload)
    if errors:
        raise ValidationFailed(errors)
    name = clean_str(payload.get("name"))
    if s.scalar(select(MembershipPlan.id).where(MembershipPlan.name == name)) is not None:
        raise ConflictError(f"A plan named {name!r} already exists.")

    now = datetime.utcnow()
    plan = MembershipPlan(name=name, created_at=now, updated_at=now, features=[])
    _apply(plan, payload)
    s.add(plan)
    s.flush()
    record_event(
        s,
        actor=user,
        action="membership_plan.create",
        entity_type="MembershipPlan",
        entity_id=str(plan.id),
        metadata={"name": plan.name, "price": plan.price},
    )
    return plan


def update_plan(s: "Session", plan: MembershipPlan, payload: dict, user: "User | None") -> MembershipPlan:
    errors = validate_plan_payload(payload, partial=True)
    if not errors:
        merged = {
            "minExperienceYears": payload.get("minExperienceYears", plan.min_experience_years),
            "maxExperienceYears": payload.get("maxExperienceYears", plan.max_experience_years),
        }
        errors = validate_plan_payload(merged, partial=True)
    if errors:
        raise ValidationFailed(errors)
    new_name = clean_str(payload.get("name")) if "name" in payload else plan.name
    if new_name != plan.name:
        clash = s.scalar(select(MembershipPlan.id).where(MembershipPlan.name == new_name))
        if clash is not None:
            raise ConflictError(f"A plan named {new_name!r} already exists.")

    old_price = plan.price
    old_period = plan.billing_period
    old_currency = plan.currency
    changes = _apply(plan, payload)
    if not changes:
        return plan
    # Prices are immutable upstream; the cached one is recreated on next use.
    if plan.price != old_price or plan.billing_period != old_period or plan.currency != old_currency:
        plan.billing_price_id = None
    plan.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="membership_plan.update",
        entity_type="MembershipPlan",
        entity_id=str(plan.id),
        metadata={"changes": changes},
    )
    return plan


def seed_default_plans(s: "Session") -> int:
    """Insert the default catalogue, skipping names that already exist. Returns inserted count."""
    existing = set(s.scalars(select(MembershipPlan.name)))
    now = datetime.utcnow()
    inserted = 0
    for defaults in DEFAULT_PLANS:
        if defaults["name"] in existing:
            continue
        s.add(
            MembershipPlan(
                currency="brl",
                is_recurring=True,
                billing_period="yearly",
                is_active=True,
                created_at=now,
                updated_at=now,
                **defaults,
            )
        )
        inserted += 1
    if inserted:
        logger.info("Seeded %s default membership plans", inserted)
    return inserted
