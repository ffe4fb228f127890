"""Session-bound CSRF protection for the JSON API."""
import secrets

from flask import Request, jsonify, request, session

CSRF_SESSION_KEY = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
UNGUARDED_PATHS = ("/static/", "/health", "/healthz")

# Login/logout hand out the token; the billing webhook carries its own signature.
CSRF_EXEMPT_PREFIXES = ("auth.", "admin_auth.")
CSRF_EXEMPT_ENDPOINTS = frozenset({"billing.billing_webhook"})


def ensure_csrf_token() -> str:
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def _submitted_token(req: Request) -> str | None:
    token = req.headers.get(CSRF_HEADER) or req.form.get(CSRF_SESSION_KEY)
    if not token and req.is_json:
        body = req.get_json(silent=True)
        if isinstance(body, dict):
            token = body.get(CSRF_SESSION_KEY)
    return token


def validate_csrf(req: Request) -> bool:
    """Header first, then form field, then JSON body."""
    token = _submitted_token(req)
    expected = session.get(CSRF_SESSION_KEY)
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))


def is_csrf_exempt(endpoint: str | None) -> bool:
    endpoint = endpoint or ""
    return endpoint.startswith(CSRF_EXEMPT_PREFIXES) or endpoint in CSRF_EXEMPT_ENDPOINTS


def csrf_guard():
    """before_request hook: issue a token to every session, demand it on writes."""
    if request.path.startswith(UNGUARDED_PATHS):
        return None
    ensure_csrf_token()
    session.permanent = True
    if request.method not in UNSAFE_METHODS or is_csrf_exempt(request.endpoint):
        return None
    if validate_csrf(request):
        return None
    message = "CSRF token missing or invalid."
    return jsonify({"success": False, "message": message, "errors": [message]}), 400
