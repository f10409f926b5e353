"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; these own the domain shape.

Layer rule: no imports from api/ or hr/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of account roles. Free-form role strings are never accepted."""

    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    USER = "user"
    EMPLOYEE = "employee"


ADMIN_ROLES: frozenset[Role] = frozenset({Role.SUPERADMIN, Role.ADMIN})
# Roles that can be assigned to a project team.
STAFF_ROLES: frozenset[Role] = frozenset({Role.SUPERADMIN, Role.ADMIN, Role.EMPLOYEE})


@dataclass
class Account:
    """A user account as persisted by the credential store.

    email is stored lowercased and stripped; uniqueness is enforced on that
    normalized form. hashed_password is always a bcrypt hash.

    The two code pairs are either both set or both None. They are only
    written together through AccountStore.set_verification_code() /
    set_reset_code(), so a half-written pair cannot exist.
    """

    username: str
    email: str
    hashed_password: str
    role: Role = Role.USER
    verified: bool = False
    id: int | None = None
    verification_code: str | None = None
    verification_code_expires_at: str | None = None  # ISO 8601 UTC
    forgot_password_code: str | None = None
    forgot_password_code_expires_at: str | None = None  # ISO 8601 UTC
    created_at: str | None = None
    updated_at: str | None = None

    def summary(self) -> dict:
        """Sanitized representation: no password hash, no codes."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role.value,
            "verified": self.verified,
        }


@dataclass(frozen=True)
class Principal:
    """Resolved caller identity attached to each authenticated request.

    Built from the persisted account rather than the token claims, since the
    claims may be stale (role changed, account unverified after issue).
    """

    id: int
    username: str
    email: str
    role: Role
    verified: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @classmethod
    def from_account(cls, account: Account) -> "Principal":
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            role=account.role,
            verified=account.verified,
        )


@dataclass(frozen=True)
class TokenPair:
    """An access/refresh token pair issued together."""

    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int
    refresh_jti: str
