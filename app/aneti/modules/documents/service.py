from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.aneti.audit import record_event
from app.aneti.constants import (
    ALLOWED_UPLOAD_PREFIXES,
    ALLOWED_UPLOAD_TYPES,
    DOC_EXPERIENCE,
    DOC_IDENTITY,
    DOC_STUDENT,
    DOCUMENT_TYPES,
    MAX_EXPERIENCE_DOCUMENTS,
    STATUS_DOCUMENTS_REQUESTED,
    STATUS_DRAFT,
)
from app.aneti.errors import InvalidTransition, ValidationFailed
from app.aneti.modules.documents.models import ApplicationDocument
from app.aneti.storage import ANON_PREFIX
from app.aneti.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.aneti.models import User
    from app.aneti.modules.applications.models import Application
    from app.aneti.modules.membership_plans.models import MembershipPlan

logger = logging.getLogger(__name__)

SINGLETON_TYPES = frozenset({DOC_IDENTITY, DOC_STUDENT})
ATTACHABLE_STATUSES = frozenset({STATUS_DRAFT, STATUS_DOCUMENTS_REQUESTED})


@dataclass(frozen=True)
class FileRef:
    """Reference to an already-uploaded file (storage key plus metadata)."""

    url: str
    name: str
    size: int | None = None
    mime_type: str | None = None


@dataclass
class ProvisionalDocuments:
    """
    Client-side document list held by the registration wizard before an
    application exists. identity and student are singletons (re-attach replaces);
    experience holds up to MAX_EXPERIENCE_DOCUMENTS entries.
    """

    identity: FileRef | None = None
    student: FileRef | None = None
    experience: list[FileRef] = field(default_factory=list)

    def attach(self, doc_type: str, file_ref: FileRef) -> None:
        if doc_type == DOC_IDENTITY:
            self.identity = file_ref
        elif doc_type == DOC_STUDENT:
            self.student = file_ref
        elif doc_type == DOC_EXPERIENCE:
            if len(self.experience) >= MAX_EXPERIENCE_DOCUMENTS:
                raise ValidationFailed(f"Máximo de {MAX_EXPERIENCE_DOCUMENTS} comprovantes de experiência.")
            self.experience.append(file_ref)
        else:
            raise ValidationFailed(f"Tipo de documento inválido: {doc_type!r}")

    def detach(self, doc_type: str, index: int) -> FileRef:
        if doc_type != DOC_EXPERIENCE:
            raise ValidationFailed("Somente comprovantes de experiência podem ser removidos individualmente.")
        if index < 0 or index >= len(self.experience):
            raise ValidationFailed("Documento não encontrado.")
        return self.experience.pop(index)

    def items(self) -> list[tuple[str, FileRef]]:
        out: list[tuple[str, FileRef]] = []
        if self.identity is not None:
            out.append((DOC_IDENTITY, self.identity))
        out.extend((DOC_EXPERIENCE, ref) for ref in self.experience)
        if self.student is not None:
            out.append((DOC_STUDENT, self.student))
        return out

    def types(self) -> list[str]:
        return [t for t, _ in self.items()]

    @classmethod
    def from_payload(cls, raw: Any) -> "ProvisionalDocuments":
        """Build from a list of {type, documentURL, name, size, mimeType} dicts."""
        docs = cls()
        if raw is None:
            return docs
        if not isinstance(raw, list):
            raise ValidationFailed("documents must be a list.")
        for item in raw:
            if not isinstance(item, dict):
                raise ValidationFailed("Each document must be an object.")
            url = (item.get("documentURL") or item.get("fileUrl") or "").strip()
            if not url:
                raise ValidationFailed("documentURL is required for every document.")
            size = item.get("size")
            docs.attach(
                (item.get("type") or "").strip(),
                FileRef(
                    url=url,
                    name=(item.get("name") or "").strip() or url.rsplit("/", 1)[-1],
                    size=size if isinstance(size, int) and not isinstance(size, bool) else None,
                    mime_type=(item.get("mimeType") or None),
                ),
            )
        return docs


def _doc_type(doc: Any) -> str:
    if isinstance(doc, str):
        return doc
    return getattr(doc, "type", None) or (doc.get("type") if isinstance(doc, dict) else "")


def missing_documents(
    plan: "MembershipPlan",
    is_student: bool,
    documents: Iterable[Any],
    *,
    resubmission: bool = False,
) -> list[str]:
    """
    Problems with the document set for a submission. Empty list means complete.

    First submission requires exactly one identity document, one to five
    experience documents (every plan, Público included) and exactly one student
    document iff is_student. On resubmission documents are only ever added, so
    the checks become lower bounds.
    """
    counts = Counter(_doc_type(d) for d in documents)
    problems: list[str] = []

    n_identity = counts.get(DOC_IDENTITY, 0)
    if n_identity == 0:
        problems.append("Documento de identidade é obrigatório.")
    elif n_identity > 1 and not resubmission:
        problems.append("Envie apenas um documento de identidade.")

    n_exp = counts.get(DOC_EXPERIENCE, 0)
    if n_exp == 0:
        problems.append(f"O plano {plan.name} exige ao menos um comprovante de experiência.")
    elif n_exp > MAX_EXPERIENCE_DOCUMENTS and not resubmission:
        problems.append(f"Máximo de {MAX_EXPERIENCE_DOCUMENTS} comprovantes de experiência.")

    n_student = counts.get(DOC_STUDENT, 0)
    if is_student and n_student == 0:
        problems.append("Comprovante de matrícula é obrigatório para estudantes.")
    elif is_student and n_student > 1 and not resubmission:
        problems.append("Envie apenas um comprovante de matrícula.")
    elif not is_student and n_student > 0 and not resubmission:
        problems.append("Comprovante de matrícula enviado sem declarar-se estudante.")

    return problems


def validate_upload(filename: str, mime_type: str | None, size: int, max_bytes: int) -> list[str]:
    errors: list[str] = []
    if not filename:
        errors.append("Nenhum arquivo enviado.")
    mt = (mime_type or "").lower()
    if not (mt.startswith(ALLOWED_UPLOAD_PREFIXES) or mt in ALLOWED_UPLOAD_TYPES):
        errors.append("Apenas imagens e arquivos PDF são permitidos.")
    if size <= 0:
        errors.append("Arquivo vazio.")
    elif size > max_bytes:
        errors.append(f"Arquivo muito grande. Tamanho máximo: {max_bytes // (1024 * 1024)}MB.")
    return errors


def key_owned_by(key: str, user_id: int) -> bool:
    """Storage keys a user may reference: their own uploads or pre-registration ones."""
    return key.startswith((f"documents/{user_id}/", ANON_PREFIX))


def attach_document(
    s: "Session",
    application: "Application",
    *,
    doc_type: str,
    file_ref: FileRef,
    user: "User",
) -> ApplicationDocument:
    if doc_type not in DOCUMENT_TYPES:
        raise ValidationFailed(f"Invalid document type. Must be one of: {', '.join(DOCUMENT_TYPES)}")
    if application.status not in ATTACHABLE_STATUSES:
        raise InvalidTransition(f"Documents cannot be added while the application is {application.status}.")

    if application.status == STATUS_DRAFT:
        if doc_type in SINGLETON_TYPES:
            for existing in [d for d in application.documents if d.type == doc_type]:
                application.documents.remove(existing)
                s.delete(existing)
        elif sum(1 for d in application.documents if d.type == DOC_EXPERIENCE) >= MAX_EXPERIENCE_DOCUMENTS:
            raise ValidationFailed(f"Máximo de {MAX_EXPERIENCE_DOCUMENTS} comprovantes de experiência.")

    doc = ApplicationDocument(
        name=file_ref.name,
        type=doc_type,
        file_path=file_ref.url,
        file_size=file_ref.size,
        mime_type=file_ref.mime_type,
        uploaded_by_user_id=user.id,
        uploaded_at=datetime.utcnow(),
    )
    application.documents.append(doc)
    if doc_type == DOC_STUDENT:
        application.student_proof = file_ref.url
    s.flush()
    record_event(
        s,
        actor=user,
        action="document.attach",
        entity_type="ApplicationDocument",
        entity_id=str(doc.id),
        metadata={"application_id": application.id, "type": doc_type, "name": doc.name},
    )
    return doc


def detach_document(s: "Session", doc: ApplicationDocument, *, user: "User") -> None:
    application = doc.application
    if application.status != STATUS_DRAFT:
        raise InvalidTransition("Documents can only be removed before the application is submitted.")
    if doc.type == DOC_STUDENT and application.student_proof == doc.file_path:
        application.student_proof = None
    application.documents.remove(doc)
    s.delete(doc)
    record_event(
        s,
        actor=user,
        action="document.detach",
        entity_type="ApplicationDocument",
        entity_id=str(doc.id),
        metadata={"application_id": application.id, "type": doc.type, "file_path": doc.file_path},
    )


def serialize_document(doc: ApplicationDocument) -> dict[str, Any]:
    return {
        "id": doc.id,
        "applicationId": doc.application_id,
        "name": doc.name,
        "type": doc.type,
        "documentURL": doc.file_path,
        "size": doc.file_size,
        "mimeType": doc.mime_type,
        "uploadedAt": iso(doc.uploaded_at),
    }
