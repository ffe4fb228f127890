"""Tests for plan eligibility rules."""
import pytest

from app.aneti.constants import PlanTier
from app.aneti.modules.membership_plans.eligibility import ineligibility_reason, is_eligible
from app.aneti.modules.membership_plans.models import MembershipPlan
from app.aneti.modules.membership_plans.service import DEFAULT_PLANS


def _plan(name, lo=None, hi=None, open_=True):
    return MembershipPlan(
        name=name,
        min_experience_years=lo,
        max_experience_years=hi,
        is_available_for_registration=open_,
    )


def _default(name):
    defaults = next(p for p in DEFAULT_PLANS if p["name"] == name)
    return MembershipPlan(**defaults)


def test_bounds_are_inclusive():
    pleno = _plan("Pleno", 3, 8)
    assert not is_eligible(pleno, 2)
    assert is_eligible(pleno, 3)
    assert is_eligible(pleno, 8)
    assert not is_eligible(pleno, 9)


def test_closed_plan_is_never_eligible():
    honra = _default("Honra")
    for years in (0, 5, 40):
        assert not is_eligible(honra, years)
    assert "não está disponível" in ineligibility_reason(honra, 10)


def test_closed_publico_is_not_eligible():
    assert not is_eligible(_plan("Público", open_=False), 1)


@pytest.mark.parametrize("is_student", [True, False])
def test_publico_always_eligible(is_student):
    publico = _plan("Público", lo=5, hi=6)
    for years in range(0, 50):
        assert is_eligible(publico, years, is_student)


def test_monotonic_without_upper_bound():
    for defaults in DEFAULT_PLANS:
        plan = MembershipPlan(**defaults)
        if plan.max_experience_years is not None or plan.tier is PlanTier.PUBLICO:
            continue
        for years in range(0, 40):
            if is_eligible(plan, years, False):
                assert is_eligible(plan, years + 1, False)


def test_senior_with_three_years_is_blocked():
    senior = _default("Sênior")
    assert not is_eligible(senior, 3)
    assert "mínimo 8" in ineligibility_reason(senior, 3)


def test_junior_with_two_years_is_eligible():
    assert is_eligible(_default("Júnior"), 2)


def test_student_flag_does_not_change_eligibility():
    junior = _default("Júnior")
    for years in range(0, 10):
        assert is_eligible(junior, years, True) == is_eligible(junior, years, False)


def test_plan_tier_from_name():
    assert PlanTier.from_name("Júnior") is PlanTier.JUNIOR
    assert PlanTier.from_name("Plano Sênior") is PlanTier.SENIOR
    assert PlanTier.from_name("Premium") is None
    assert PlanTier.from_name(None) is None
