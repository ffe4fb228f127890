import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    storage_backend: str
    storage_local_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    stripe_secret_key: str
    stripe_webhook_secret: str
    stripe_api_base: str
    stripe_currency: str

    max_upload_bytes: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///aneti.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "sa-east-1"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        stripe_secret_key=_getenv("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=_getenv("STRIPE_WEBHOOK_SECRET", ""),
        stripe_api_base=_getenv("STRIPE_API_BASE", "https://api.stripe.com"),
        stripe_currency=_getenv("STRIPE_CURRENCY", "brl").lower(),
        # registration documents (images/PDF)
        max_upload_bytes=_getenv_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "STRIPE_SECRET_KEY": s.stripe_secret_key,
        "STRIPE_WEBHOOK_SECRET": s.stripe_webhook_secret,
        "STRIPE_API_BASE": s.stripe_api_base,
        "STRIPE_CURRENCY": s.stripe_currency,
        "MAX_UPLOAD_BYTES": s.max_upload_bytes,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # request body cap; per-file limit enforced in the upload handler
        "MAX_CONTENT_LENGTH": s.max_upload_bytes + 1024 * 1024,
    }
