"""
Audit trail: every state change on plans, applications, documents, members and
sessions appends one AuditEvent. Rows are never updated or deleted.
"""
import json
from datetime import date, datetime, time
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.aneti.models import AuditEvent, User

AUDIT_LIST_LIMIT = 200


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """Stage an event on the caller's session; it commits with the change it describes."""
    in_request = has_request_context()
    event = AuditEvent(
        request_id=request_id or (getattr(g, "request_id", None) if in_request else None),
        client_ip=request.remote_addr if in_request else None,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason[:512] if reason else None,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(event)
    return event


def list_events(
    s: Session,
    *,
    action: str = "",
    actor_email: str = "",
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = AUDIT_LIST_LIMIT,
) -> list[AuditEvent]:
    """Newest first. `action` and `actor_email` are substring matches; dates are inclusive."""
    q = select(AuditEvent)
    if action:
        q = q.where(AuditEvent.action.contains(action, autoescape=True))
    if actor_email:
        q = q.where(AuditEvent.actor_user_email.contains(actor_email.lower(), autoescape=True))
    if date_from:
        q = q.where(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.where(AuditEvent.created_at <= datetime.combine(date_to, time.max))
    return list(s.scalars(q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit)))


def serialize_event(event: AuditEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "createdAt": event.created_at.isoformat() if event.created_at else None,
        "requestId": event.request_id,
        "clientIp": event.client_ip,
        "actorUserId": event.actor_user_id,
        "actorEmail": event.actor_user_email,
        "action": event.action,
        "entityType": event.entity_type,
        "entityId": event.entity_id,
        "reason": event.reason,
        "metadata": json.loads(event.metadata_json) if event.metadata_json else None,
    }
