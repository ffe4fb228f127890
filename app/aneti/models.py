from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

if TYPE_CHECKING:
    from app.aneti.modules.applications.models import Application
    from app.aneti.modules.membership_plans.models import MembershipPlan


class Base(DeclarativeBase):
    pass


class User(Base):
    """
    Member or admin account.

    Members are created by the registration flow with is_approved=False; the flag
    flips only when one of their applications is approved.
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_role", "role"),
        Index("idx_users_state_city", "state", "city"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    state: Mapped[str | None] = mapped_column(String(8), nullable=True)  # UF code, e.g. "SP"
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    area: Mapped[str | None] = mapped_column(String(128), nullable=True)

    role: Mapped[str] = mapped_column(String(16), nullable=False, default="member")  # member, admin
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Membership state (denormalised from the approved application)
    plan_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    current_plan_id: Mapped[int | None] = mapped_column(
        ForeignKey("membership_plans.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Mirrors external billing state
    subscription_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    billing_customer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    applications: Mapped[list["Application"]] = relationship(
        "Application",
        back_populates="user",
        foreign_keys="Application.user_id",
        lazy="selectin",
    )
    current_plan: Mapped["MembershipPlan | None"] = relationship("MembershipPlan", lazy="selectin")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Keep this table intentionally generic; module-specific tables can refer to it by id if needed.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        Index("idx_audit_events_action", "action"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "application.approve"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Application"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.aneti.modules.membership_plans.models import MembershipPlan  # noqa: E402,F401
from app.aneti.modules.applications.models import Application, ApplicationAppeal  # noqa: E402,F401
from app.aneti.modules.documents.models import ApplicationDocument  # noqa: E402,F401
from app.aneti.modules.notifications.models import Notification  # noqa: E402,F401
