"""
core/errors.py -- Typed error taxonomy shared by the auth core and HR services.

Services raise these with a human-readable message and a machine-readable
code. api/main.py maps each class to its HTTP status through a single
exception handler; it never inspects messages or adds logic.

Layer rule: core/ is the kernel. No imports from api/, auth/ or hr/.
"""

from __future__ import annotations


class PeopleHubError(Exception):
    """Base class for every error the service layer raises on purpose."""

    status_code: int = 500
    default_code: str = "error"

    def __init__(self, message: str, code: str | None = None, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.errors = errors


class ValidationError(PeopleHubError):
    """Client-fixable input problem (missing field, mismatch, too short)."""

    status_code = 400
    default_code = "validation_error"


class NotFoundError(PeopleHubError):
    status_code = 404
    default_code = "not_found"


class ConflictError(PeopleHubError):
    """Duplicate resource (email, contact number, project name)."""

    status_code = 409
    default_code = "conflict"


class AuthError(PeopleHubError):
    """Bad credentials, unverified account, or missing/invalid token."""

    status_code = 401
    default_code = "unauthorized"


class ForbiddenError(AuthError):
    """Authenticated, but the role or ownership check failed."""

    status_code = 403
    default_code = "forbidden"


class ExpiredError(PeopleHubError):
    """A one-time code's window has lapsed."""

    status_code = 400
    default_code = "expired"


class StateError(PeopleHubError):
    """Invalid transition, e.g. verifying an already-verified account."""

    status_code = 400
    default_code = "invalid_state"


class ServerError(PeopleHubError):
    """Store or notifier failure not attributable to the caller."""

    status_code = 500
    default_code = "internal_error"


def require_fields(**fields) -> None:
    """Raise ValidationError listing every absent or blank field."""
    missing = [name for name, value in fields.items() if value is None or (isinstance(value, str) and not value.strip())]
    if missing:
        raise ValidationError(
            "All fields are required.",
            code="missing_fields",
            errors=[f"{name} is required" for name in missing],
        )
