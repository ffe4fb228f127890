from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.aneti.models import Base

if TYPE_CHECKING:
    from app.aneti.modules.applications.models import Application


class ApplicationDocument(Base):
    __tablename__ = "application_documents"
    __table_args__ = (
        Index("idx_application_documents_application", "application_id"),
        Index("idx_application_documents_type", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    application_id: Mapped[int] = mapped_column(ForeignKey("member_applications.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # identity, experience, student
    file_path: Mapped[str] = mapped_column(String(512), nullable=False)  # storage key
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(128), nullable=True)

    uploaded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    application: Mapped["Application"] = relationship("Application", back_populates="documents", lazy="selectin")
