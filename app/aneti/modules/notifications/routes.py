from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.aneti.db import db_session, get_or_404
from app.aneti.modules.notifications.models import Notification
from app.aneti.modules.notifications.service import (
    list_for_user,
    mark_all_read,
    mark_read,
    serialize_notification,
    unread_count,
)
from app.aneti.rbac import AuthContext, ensure_owner, require_member
from app.aneti.utils import parse_int

bp = Blueprint("notifications", __name__)


@bp.get("/notifications")
@require_member
def notifications_list(auth: AuthContext):
    s = db_session()
    limit = parse_int(request.args.get("limit")) or 50
    items = list_for_user(s, auth.subject_id, limit=max(1, min(limit, 200)))
    return jsonify([serialize_notification(n) for n in items])


@bp.get("/notifications/unread-count")
@require_member
def notifications_unread_count(auth: AuthContext):
    s = db_session()
    return jsonify({"count": unread_count(s, auth.subject_id)})


@bp.post("/notifications/<int:notification_id>/read")
@require_member
def notifications_mark_read(notification_id: int, auth: AuthContext):
    s = db_session()
    n = get_or_404(s, Notification, notification_id)
    ensure_owner(auth, n.user_id)
    mark_read(n)
    s.commit()
    return jsonify(serialize_notification(n))


@bp.post("/notifications/read-all")
@require_member
def notifications_mark_all_read(auth: AuthContext):
    s = db_session()
    updated = mark_all_read(s, auth.subject_id)
    s.commit()
    return jsonify({"success": True, "updated": updated})
