from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from flask import abort, current_app, g, request

from app.aneti.models import User

MEMBER_SESSION_KEY = "member_user_id"
ADMIN_SESSION_KEY = "admin_user_id"


@dataclass(frozen=True)
class AuthContext:
    """Verified identity for one request. Resolved once in before_request."""

    subject_id: int
    role: str
    user: User

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def current_member() -> AuthContext | None:
    return getattr(g, "member_auth", None)


def current_admin() -> AuthContext | None:
    return getattr(g, "admin_auth", None)


def require_member(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Member session required; handler receives ``auth: AuthContext``."""

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        auth = current_member()
        if auth is None:
            abort(401)
        return fn(*args, auth=auth, **kwargs)

    return wrapped


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Admin session required; handler receives ``auth: AuthContext``.
    A member session never satisfies this, even for a user with role=admin.
    """

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        auth = current_admin()
        if auth is None:
            if current_member() is not None:
                current_app.logger.warning(
                    "Forbidden: member session on admin endpoint path=%s request_id=%s",
                    request.path,
                    getattr(g, "request_id", None),
                )
                abort(403)
            abort(401)
        if not auth.is_admin:
            abort(403)
        return fn(*args, auth=auth, **kwargs)

    return wrapped


def ensure_owner(auth: AuthContext, owner_user_id: int) -> None:
    """Members may only touch their own records."""
    if auth.subject_id != owner_user_id:
        current_app.logger.warning(
            "Forbidden: user_id=%s attempted access to records of user_id=%s request_id=%s",
            auth.subject_id,
            owner_user_id,
            getattr(g, "request_id", None),
        )
        abort(403)
