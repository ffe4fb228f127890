from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.aneti.audit import record_event
from app.aneti.db import db_session, get_or_404
from app.aneti.errors import ValidationFailed
from app.aneti.modules.applications.models import Application
from app.aneti.modules.documents.models import ApplicationDocument
from app.aneti.modules.documents.service import (
    FileRef,
    attach_document,
    detach_document,
    key_owned_by,
    serialize_document,
    validate_upload,
)
from app.aneti.rbac import AuthContext, current_member, ensure_owner, require_member
from app.aneti.storage import document_key, document_store
from app.aneti.utils import clean_str, parse_int, request_payload

bp = Blueprint("documents", __name__)


@bp.post("/documents/upload")
def documents_upload():
    """
    Multipart upload (field `file`). Open to anonymous callers so the
    registration wizard can upload before the account exists.
    """
    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationFailed("Nenhum arquivo enviado.")
    data = f.read()
    max_bytes = int(current_app.config.get("MAX_UPLOAD_BYTES") or 10 * 1024 * 1024)
    errors = validate_upload(f.filename, f.mimetype, len(data), max_bytes)
    if errors:
        raise ValidationFailed(errors)

    member = current_member()
    key = document_key(member.subject_id if member else None, f.filename)
    document_store(current_app.config).save(key, data, content_type=f.mimetype)

    s = db_session()
    record_event(
        s,
        actor=member.user if member else None,
        action="document.upload",
        entity_type="StoredFile",
        entity_id=key[:128],
        metadata={"filename": f.filename, "size": len(data), "mime_type": f.mimetype},
    )
    s.commit()
    return (
        jsonify({"fileId": key, "fileName": f.filename, "fileUrl": key, "size": len(data), "type": f.mimetype}),
        201,
    )


@bp.post("/documents")
@require_member
def documents_create(auth: AuthContext):
    s = db_session()
    payload = request_payload()
    application_id = parse_int(payload.get("applicationId"))
    if application_id is None:
        raise ValidationFailed("applicationId é obrigatório.")
    application = get_or_404(s, Application, application_id)
    ensure_owner(auth, application.user_id)

    url = clean_str(payload.get("documentURL"))
    if not url:
        raise ValidationFailed("documentURL é obrigatório.")
    if not key_owned_by(url, auth.subject_id):
        raise ValidationFailed("documentURL não pertence a este usuário.")
    size = payload.get("size")
    ref = FileRef(
        url=url,
        name=clean_str(payload.get("name")) or url.rsplit("/", 1)[-1],
        size=size if isinstance(size, int) and not isinstance(size, bool) else None,
        mime_type=clean_str(payload.get("mimeType")) or None,
    )
    doc = attach_document(s, application, doc_type=clean_str(payload.get("type")), file_ref=ref, user=auth.user)
    s.commit()
    return jsonify(serialize_document(doc)), 201


@bp.delete("/documents/<int:document_id>")
@require_member
def documents_delete(document_id: int, auth: AuthContext):
    s = db_session()
    doc = get_or_404(s, ApplicationDocument, document_id)
    ensure_owner(auth, doc.application.user_id)
    detach_document(s, doc, user=auth.user)
    s.commit()
    return jsonify({"success": True})
