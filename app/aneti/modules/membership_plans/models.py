from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.aneti.constants import PlanTier
from app.aneti.models import Base


@dataclass(frozen=True)
class BillingRefs:
    """External product/price pair; only exists once the plan was bootstrapped."""

    product_id: str
    price_id: str


class MembershipPlan(Base):
    __tablename__ = "membership_plans"
    __table_args__ = (
        Index("idx_membership_plans_registration", "is_active", "is_available_for_registration"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Minor units (centavos)
    price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="brl")

    # Inclusive bounds; NULL max means unbounded
    min_experience_years: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_experience_years: Mapped[int | None] = mapped_column(Integer, nullable=True)

    requires_payment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    billing_period: Mapped[str] = mapped_column(String(16), nullable=False, default="yearly")  # monthly, yearly, one_time

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_available_for_registration: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    features: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    rules: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Filled lazily the first time someone subscribes
    billing_product_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    billing_price_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    @property
    def tier(self) -> PlanTier | None:
        return PlanTier.from_name(self.name)

    @property
    def is_free(self) -> bool:
        return not self.requires_payment or self.price <= 0

    @property
    def billing_refs(self) -> BillingRefs | None:
        if self.billing_product_id and self.billing_price_id:
            return BillingRefs(product_id=self.billing_product_id, price_id=self.billing_price_id)
        return None

    @billing_refs.setter
    def billing_refs(self, refs: BillingRefs | None) -> None:
        self.billing_product_id = refs.product_id if refs else None
        self.billing_price_id = refs.price_id if refs else None

    def __repr__(self) -> str:
        return f"<MembershipPlan id={self.id} name={self.name!r}>"
