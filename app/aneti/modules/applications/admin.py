from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request, send_file

from app.aneti.audit import record_event
from app.aneti.constants import APPEAL_STATUSES, APPLICATION_STATUSES
from app.aneti.db import db_session, get_or_404
from app.aneti.errors import ValidationFailed
from app.aneti.modules.applications.models import Application, ApplicationAppeal
from app.aneti.modules.applications.service import (
    approve_application,
    reject_application,
    review_appeal,
    serialize_appeal,
    serialize_application,
)
from app.aneti.modules.documents.models import ApplicationDocument
from app.aneti.rbac import AuthContext, require_admin
from app.aneti.storage import document_store
from app.aneti.utils import clean_str, parse_bool, request_payload

bp = Blueprint("applications_admin", __name__)


@bp.get("/applications")
@require_admin
def applications_list(auth: AuthContext):
    s = db_session()
    status = (request.args.get("status") or "").strip()
    q = s.query(Application)
    if status:
        if status not in APPLICATION_STATUSES:
            raise ValidationFailed(f"Invalid status. Must be one of: {', '.join(APPLICATION_STATUSES)}")
        q = q.filter(Application.status == status)
    else:
        # Drafts are the member's business until submitted.
        q = q.filter(Application.status != "draft")
    apps = q.order_by(Application.submitted_at.desc(), Application.id.desc()).all()
    return jsonify([serialize_application(a, include_documents=False, admin_view=True) for a in apps])


@bp.get("/applications/<int:application_id>")
@require_admin
def applications_detail(application_id: int, auth: AuthContext):
    s = db_session()
    application = get_or_404(s, Application, application_id)
    return jsonify(serialize_application(application, admin_view=True))


@bp.post("/applications/<int:application_id>/approve")
@require_admin
def applications_approve(application_id: int, auth: AuthContext):
    s = db_session()
    application = get_or_404(s, Application, application_id)
    changed = approve_application(s, application, auth.user, clean_str(request_payload().get("note")) or None)
    s.commit()
    current_app.logger.info(
        "Application %s approve by admin %s (changed=%s request_id=%s)",
        application.id,
        auth.subject_id,
        changed,
        getattr(g, "request_id", None),
    )
    return jsonify({"success": True, "changed": changed, "application": serialize_application(application, admin_view=True)})


@bp.post("/applications/<int:application_id>/reject")
@require_admin
def applications_reject(application_id: int, auth: AuthContext):
    s = db_session()
    application = get_or_404(s, Application, application_id)
    payload = request_payload()
    reject_application(
        s,
        application,
        auth.user,
        clean_str(payload.get("reason")),
        request_documents=parse_bool(payload.get("requestDocuments")),
    )
    s.commit()
    return jsonify({"success": True, "application": serialize_application(application, admin_view=True)})


@bp.get("/documents/<int:document_id>/download")
@require_admin
def documents_download(document_id: int, auth: AuthContext):
    s = db_session()
    doc = get_or_404(s, ApplicationDocument, document_id)
    fobj = document_store(current_app.config).open(doc.file_path)
    record_event(
        s,
        actor=auth.user,
        action="document.download",
        entity_type="ApplicationDocument",
        entity_id=str(doc.id),
        metadata={"application_id": doc.application_id},
    )
    s.commit()
    return send_file(
        fobj,
        mimetype=doc.mime_type or "application/octet-stream",
        as_attachment=True,
        download_name=doc.name or doc.file_path.rsplit("/", 1)[-1],
    )


@bp.get("/appeals")
@require_admin
def appeals_list(auth: AuthContext):
    s = db_session()
    status = (request.args.get("status") or "").strip()
    q = s.query(ApplicationAppeal)
    if status:
        if status not in APPEAL_STATUSES:
            raise ValidationFailed(f"Invalid status. Must be one of: {', '.join(APPEAL_STATUSES)}")
        q = q.filter(ApplicationAppeal.status == status)
    appeals = q.order_by(ApplicationAppeal.created_at.desc(), ApplicationAppeal.id.desc()).all()
    return jsonify([serialize_appeal(a) for a in appeals])


@bp.post("/appeals/<int:appeal_id>/review")
@require_admin
def appeals_review(appeal_id: int, auth: AuthContext):
    s = db_session()
    appeal = get_or_404(s, ApplicationAppeal, appeal_id)
    payload = request_payload()
    review_appeal(
        s,
        appeal,
        auth.user,
        status=clean_str(payload.get("status")),
        response=payload.get("response"),
    )
    s.commit()
    return jsonify({"success": True, "appeal": serialize_appeal(appeal)})
