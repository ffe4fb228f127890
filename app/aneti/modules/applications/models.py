from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.aneti.models import Base

if TYPE_CHECKING:
    from app.aneti.models import User
    from app.aneti.modules.documents.models import ApplicationDocument
    from app.aneti.modules.membership_plans.models import MembershipPlan


class Application(Base):
    """
    A membership application. `status` (review) and `payment_status` (billing)
    move independently.
    """

    __tablename__ = "member_applications"
    __table_args__ = (
        Index("idx_member_applications_status", "status"),
        Index("idx_member_applications_user", "user_id"),
        Index("uq_member_applications_subscription", "billing_subscription_id", unique=True),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    plan_id: Mapped[int] = mapped_column(ForeignKey("membership_plans.id", ondelete="RESTRICT"), nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")
    payment_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    experience_years: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_student: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    student_proof: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # Append-only review log
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    billing_customer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    billing_subscription_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped["User"] = relationship("User", back_populates="applications", foreign_keys=[user_id], lazy="selectin")
    reviewed_by: Mapped["User | None"] = relationship("User", foreign_keys=[reviewed_by_user_id], lazy="selectin")
    plan: Mapped["MembershipPlan"] = relationship("MembershipPlan", lazy="selectin")
    documents: Mapped[list["ApplicationDocument"]] = relationship(
        "ApplicationDocument",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="ApplicationDocument.id",
        lazy="selectin",
    )
    appeals: Mapped[list["ApplicationAppeal"]] = relationship(
        "ApplicationAppeal",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="ApplicationAppeal.id",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Application id={self.id} user_id={self.user_id} status={self.status}>"


class ApplicationAppeal(Base):
    __tablename__ = "application_appeals"
    __table_args__ = (
        Index("idx_application_appeals_application", "application_id"),
        Index("idx_application_appeals_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    application_id: Mapped[int] = mapped_column(ForeignKey("member_applications.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    type: Mapped[str] = mapped_column(String(16), nullable=False)  # appeal, response
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    admin_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    application: Mapped["Application"] = relationship("Application", back_populates="appeals", lazy="selectin")
    user: Mapped["User"] = relationship("User", foreign_keys=[user_id], lazy="selectin")
