from flask import Blueprint, jsonify

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return jsonify({"service": "aneti", "ok": True})


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container probes. No DB access.
    """
    return "ok", 200
