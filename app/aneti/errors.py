from __future__ import annotations


class ValidationFailed(ValueError):
    """Payload or business-rule validation failure (HTTP 400)."""

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class InvalidTransition(ValueError):
    """Requested status change is not allowed from the current state (HTTP 409)."""


class ConflictError(ValueError):
    """Request collides with existing state, e.g. duplicate email (HTTP 409)."""
