from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update

from app.aneti.modules.notifications.models import Notification
from app.aneti.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.aneti.modules.applications.models import Application


def _notify(
    s: "Session",
    *,
    user_id: int,
    type: str,
    title: str,
    message: str,
    application: "Application | None" = None,
) -> Notification:
    n = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        related_entity_type="application" if application is not None else None,
        related_entity_id=application.id if application is not None else None,
        created_at=datetime.utcnow(),
    )
    s.add(n)
    return n


def notify_welcome(s: "Session", user_id: int) -> Notification:
    return _notify(
        s,
        user_id=user_id,
        type="welcome",
        title="Bem-vindo à ANETI!",
        message=(
            "Seja bem-vindo à Associação Nacional dos Especialistas em TI. "
            "Sua solicitação de associação foi recebida e será analisada em breve."
        ),
    )


def notify_application_approved(s: "Session", application: "Application") -> Notification:
    return _notify(
        s,
        user_id=application.user_id,
        type="application_approved",
        title="Associação aprovada",
        message=f"Sua solicitação de associação ao plano {application.plan.name} foi aprovada!",
        application=application,
    )


def notify_application_rejected(s: "Session", application: "Application", reason: str | None) -> Notification:
    plan_name = application.plan.name
    message = (
        f"Sua solicitação de associação ao plano {plan_name} foi rejeitada: {reason}"
        if reason
        else f"Sua solicitação de associação ao plano {plan_name} foi rejeitada"
    )
    return _notify(
        s,
        user_id=application.user_id,
        type="application_rejected",
        title="Associação rejeitada",
        message=message,
        application=application,
    )


def notify_documents_requested(s: "Session", application: "Application", reason: str | None) -> Notification:
    message = f"Precisamos de documentos adicionais para sua solicitação ao plano {application.plan.name}."
    if reason:
        message += f" {reason}"
    return _notify(
        s,
        user_id=application.user_id,
        type="documents_requested",
        title="Documentos solicitados",
        message=message,
        application=application,
    )


def serialize_notification(n: Notification) -> dict[str, Any]:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "relatedEntityType": n.related_entity_type,
        "relatedEntityId": n.related_entity_id,
        "isRead": n.is_read,
        "readAt": iso(n.read_at),
        "createdAt": iso(n.created_at),
    }


def list_for_user(s: "Session", user_id: int, *, limit: int = 50) -> list[Notification]:
    return list(
        s.scalars(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
    )


def unread_count(s: "Session", user_id: int) -> int:
    return int(
        s.scalar(
            select(func.count(Notification.id)).where(Notification.user_id == user_id, Notification.is_read.is_(False))
        )
        or 0
    )


def mark_read(n: Notification) -> None:
    if not n.is_read:
        n.is_read = True
        n.read_at = datetime.utcnow()


def mark_all_read(s: "Session", user_id: int) -> int:
    res = s.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=datetime.utcnow())
    )
    return int(res.rowcount or 0)
