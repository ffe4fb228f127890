"""
Admin dashboard aggregates. Everything is recomputed per request from grouped
queries; nothing is cached.

"Members" are active, approved accounts with role=member.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from app.aneti.constants import APPLICATION_STATUSES, STATUS_PENDING, PlanTier
from app.aneti.models import User
from app.aneti.modules.applications.models import Application
from app.aneti.modules.membership_plans.models import MembershipPlan
from app.aneti.utils import first_of_month, next_month_start, previous_month_bounds

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def percentage(part: int, total: int) -> float:
    return round(part * 100.0 / total, 1) if total else 0.0


def growth_percent(current: int, previous: int) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) * 100.0 / previous, 1)


def _member_filter():
    return (User.role == "member", User.is_active.is_(True), User.is_approved.is_(True))


def _count_members(s: "Session", start: date | None = None, end: date | None = None) -> int:
    q = select(func.count(User.id)).where(*_member_filter())
    if start is not None:
        q = q.where(User.created_at >= datetime.combine(start, datetime.min.time()))
    if end is not None:
        q = q.where(User.created_at < datetime.combine(end, datetime.min.time()))
    return int(s.scalar(q) or 0)


def members_by_tier(s: "Session", start: date | None = None, end: date | None = None) -> dict[PlanTier, int]:
    """Counts keyed by every PlanTier (zero-filled). Plan names outside the enum are not counted."""
    q = select(User.plan_name, func.count(User.id)).where(*_member_filter()).group_by(User.plan_name)
    if start is not None:
        q = q.where(User.created_at >= datetime.combine(start, datetime.min.time()))
    if end is not None:
        q = q.where(User.created_at < datetime.combine(end, datetime.min.time()))
    counts: dict[PlanTier, int] = {tier: 0 for tier in PlanTier}
    for plan_name, n in s.execute(q):
        tier = PlanTier.from_name(plan_name)
        if tier is not None:
            counts[tier] += int(n)
    return counts


def _tier_breakdown(counts: dict[PlanTier, int]) -> dict[str, dict[str, Any]]:
    total = sum(counts.values())
    return {tier.value: {"count": n, "percentage": percentage(n, total)} for tier, n in counts.items()}


def members_by_state(s: "Session") -> list[dict[str, Any]]:
    rows = s.execute(
        select(User.state, func.count(User.id))
        .where(*_member_filter(), User.state.is_not(None))
        .group_by(User.state)
    ).all()
    total = sum(int(n) for _, n in rows)
    out = [{"state": st, "count": int(n), "percentage": percentage(int(n), total)} for st, n in rows]
    out.sort(key=lambda r: (-r["count"], r["state"]))
    return out


def members_by_city(s: "Session") -> dict[str, list[dict[str, Any]]]:
    rows = s.execute(
        select(User.state, User.city, func.count(User.id))
        .where(*_member_filter(), User.state.is_not(None), User.city.is_not(None))
        .group_by(User.state, User.city)
    ).all()
    out: dict[str, list[dict[str, Any]]] = {}
    for st, city, n in rows:
        out.setdefault(st, []).append({"city": city, "count": int(n)})
    for cities in out.values():
        cities.sort(key=lambda r: (-r["count"], r["city"]))
    return out


def revenue_by_plan(s: "Session") -> list[dict[str, Any]]:
    """price x active subscribers per paid plan, annualised for monthly plans."""
    rows = s.execute(
        select(MembershipPlan, func.count(User.id))
        .join(User, User.current_plan_id == MembershipPlan.id)
        .where(*_member_filter(), MembershipPlan.requires_payment.is_(True))
        .group_by(MembershipPlan.id)
        .order_by(MembershipPlan.priority, MembershipPlan.id)
    ).all()
    out = []
    for plan, n in rows:
        subscribers = int(n)
        periods = 12 if plan.billing_period == "monthly" else 1
        out.append(
            {
                "planId": plan.id,
                "planName": plan.name,
                "price": plan.price,
                "billingPeriod": plan.billing_period,
                "subscribers": subscribers,
                "yearlyRevenue": plan.price * subscribers * periods,
            }
        )
    return out


def applications_by_status(s: "Session") -> dict[str, int]:
    counts = {st: 0 for st in APPLICATION_STATUSES}
    for st, n in s.execute(select(Application.status, func.count(Application.id)).group_by(Application.status)):
        counts[st] = int(n)
    return counts


def compute_admin_stats(s: "Session", today: date) -> dict[str, Any]:
    month_start = first_of_month(today)
    prev_start, prev_end = previous_month_bounds(today)

    new_this_month = _count_members(s, month_start, next_month_start(today))
    new_last_month = _count_members(s, prev_start, prev_end)
    revenue = revenue_by_plan(s)
    by_status = applications_by_status(s)

    return {
        "generatedAt": datetime.utcnow().isoformat(),
        "activeMembers": _count_members(s),
        "newMembersThisMonth": new_this_month,
        "newMembersLastMonth": new_last_month,
        "memberGrowthPercent": growth_percent(new_this_month, new_last_month),
        "pendingApplications": by_status.get(STATUS_PENDING, 0),
        "applicationsByStatus": by_status,
        "membersByPlan": _tier_breakdown(members_by_tier(s)),
        "lastMonthMembersByPlan": _tier_breakdown(members_by_tier(s, prev_start, prev_end)),
        "membersByState": members_by_state(s),
        "membersByCity": members_by_city(s),
        "revenueByPlan": revenue,
        "yearlyRevenueEstimate": sum(r["yearlyRevenue"] for r in revenue),
    }
