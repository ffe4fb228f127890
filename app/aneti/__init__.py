import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify
from werkzeug.exceptions import HTTPException

import app.aneti.models  # noqa: F401  (registers every table on Base.metadata)
from app.aneti.admin import bp as admin_bp
from app.aneti.auth import admin_bp as admin_auth_bp
from app.aneti.auth import bp as auth_bp
from app.aneti.auth import load_auth_context
from app.aneti.config import load_config
from app.aneti.db import init_db, teardown_db_session
from app.aneti.errors import ConflictError, InvalidTransition, ValidationFailed
from app.aneti.modules.applications.admin import bp as applications_admin_bp
from app.aneti.modules.applications.routes import bp as member_applications_bp
from app.aneti.modules.billing.routes import bp as billing_bp
from app.aneti.modules.billing.stripe_client import BillingError
from app.aneti.modules.documents.routes import bp as documents_bp
from app.aneti.modules.membership_plans.admin import bp as membership_plans_admin_bp
from app.aneti.modules.membership_plans.routes import bp as membership_plans_bp
from app.aneti.modules.notifications.routes import bp as notifications_bp
from app.aneti.modules.registration.routes import bp as registration_bp
from app.aneti.routes import bp as routes_bp
from app.aneti.security import csrf_guard
from app.aneti.storage import StorageError


def _error(status: int, message: str, errors: list[str] | None = None):
    return jsonify({"success": False, "message": message, "errors": errors or [message]}), status


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.logger.setLevel(app.config.get("LOG_LEVEL") or "INFO")

    app.before_request(csrf_guard)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("STRIPE_WEBHOOK_SECRET"):
            app.logger.error("STRIPE_WEBHOOK_SECRET is not set; billing webhooks are not signature-checked.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage config check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [k for k in ("S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_auth_bp, url_prefix="/admin/auth")
    app.register_blueprint(registration_bp)
    app.register_blueprint(membership_plans_bp)
    app.register_blueprint(member_applications_bp)
    app.register_blueprint(documents_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(applications_admin_bp, url_prefix="/admin")
    app.register_blueprint(membership_plans_admin_bp, url_prefix="/admin")

    app.before_request(load_auth_context)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(ValidationFailed)
    def _err_validation(e: ValidationFailed):  # type: ignore[no-redef]
        return _error(400, e.errors[0] if len(e.errors) == 1 else "Validation failed.", e.errors)

    @app.errorhandler(InvalidTransition)
    @app.errorhandler(ConflictError)
    def _err_conflict(e: ValueError):  # type: ignore[no-redef]
        return _error(409, str(e))

    @app.errorhandler(BillingError)
    def _err_billing(e: BillingError):  # type: ignore[no-redef]
        app.logger.error("Billing provider error (request_id=%s): %s", getattr(g, "request_id", None), e)
        return _error(502, "Não foi possível iniciar o pagamento. Tente novamente.")

    @app.errorhandler(StorageError)
    def _err_storage(e: StorageError):  # type: ignore[no-redef]
        app.logger.error("Storage error (request_id=%s): %s", getattr(g, "request_id", None), e)
        return _error(502, "Storage unavailable. Try again later.")

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        if e.code == 413:
            max_mb = int(app.config.get("MAX_UPLOAD_BYTES") or 0) // (1024 * 1024)
            return _error(413, f"Arquivo muito grande. Tamanho máximo: {max_mb}MB.")
        return _error(e.code or 500, e.description or e.name)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return _error(500, "Internal server error.")

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
