from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

from werkzeug.utils import secure_filename

ANON_PREFIX = "documents/anon/"


class StorageError(RuntimeError):
    pass


class DocumentStore:
    """Blob store for uploaded membership documents, addressed by opaque keys."""

    def save(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalDocumentStore(DocumentStore):
    root: Path

    def _resolve(self, key: str) -> Path:
        rel = key.replace("\\", "/").lstrip("/")
        target = (self.root / rel).resolve()
        if self.root.resolve() not in target.parents:
            raise StorageError(f"Invalid document key: {key!r}")
        return target

    def save(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        target = self._resolve(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        target = self._resolve(key)
        if not target.is_file():
            raise StorageError(f"Document not found in local store: {key}")
        return target.open("rb")


@dataclass(frozen=True)
class S3DocumentStore(DocumentStore):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str

    def _s3(self):
        import boto3

        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def save(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        kwargs: dict[str, object] = {"Bucket": self.bucket, "Key": key, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            self._s3().put_object(**kwargs)
        except Exception as e:
            raise StorageError(f"S3 put_object failed for {key}: {e}") from e

    def open(self, key: str) -> BinaryIO:
        try:
            resp = self._s3().get_object(Bucket=self.bucket, Key=key)
        except Exception as e:
            raise StorageError(f"S3 get_object failed for {key}: {e}") from e
        return resp["Body"]  # type: ignore[return-value]


def document_store(config: dict) -> DocumentStore:
    """STORAGE_BACKEND=s3 selects the bucket; anything else writes under STORAGE_LOCAL_ROOT."""
    if (config.get("STORAGE_BACKEND") or "local").strip().lower() == "s3":
        return S3DocumentStore(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "sa-east-1").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    local_root = (config.get("STORAGE_LOCAL_ROOT") or "").strip()
    return LocalDocumentStore(root=Path(local_root) if local_root else Path(os.getcwd()) / "storage")


def document_key(owner_id: int | None, filename: str, *, now: datetime | None = None) -> str:
    """
    documents/<user_id|anon>/<yyyymmdd>/<uuid>-<safe filename>
    Uploads made before the account exists (registration wizard) land under "anon".
    """
    day = (now or datetime.utcnow()).strftime("%Y%m%d")
    safe_name = secure_filename(filename or "") or "document.bin"
    prefix = f"documents/{owner_id}/" if owner_id else ANON_PREFIX
    return f"{prefix}{day}/{uuid.uuid4().hex[:12]}-{safe_name}"
