"""
Plan eligibility rules.

Pure functions over a plan and the candidate's declared experience; no DB access.
Rules are applied in order and the first failing one wins:

1. plan closed to registration -> not eligible
2. Público -> always eligible
3. below min_experience_years -> not eligible
4. above max_experience_years -> not eligible

Bounds are inclusive. is_student does not affect eligibility; it only changes the
required documents.
"""
from __future__ import annotations

from typing import Protocol

from app.aneti.constants import PlanTier


class _PlanLike(Protocol):
    name: str
    is_available_for_registration: bool
    min_experience_years: int | None
    max_experience_years: int | None


def ineligibility_reason(plan: _PlanLike, experience_years: int, is_student: bool = False) -> str | None:
    if not plan.is_available_for_registration:
        return f"O plano {plan.name} não está disponível para inscrição."
    if PlanTier.from_name(plan.name) is PlanTier.PUBLICO:
        return None
    if plan.min_experience_years is not None and experience_years < plan.min_experience_years:
        return f"O plano {plan.name} exige no mínimo {plan.min_experience_years} anos de experiência."
    if plan.max_experience_years is not None and experience_years > plan.max_experience_years:
        return f"O plano {plan.name} aceita no máximo {plan.max_experience_years} anos de experiência."
    return None


def is_eligible(plan: _PlanLike, experience_years: int, is_student: bool = False) -> bool:
    return ineligibility_reason(plan, experience_years, is_student) is None
