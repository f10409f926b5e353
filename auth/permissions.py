"""
auth/permissions.py -- The single role-based capability check.

Every role decision in the codebase goes through authorize(). Services never
compare role strings inline; they pass the Principal and the set of roles the
operation permits. An empty set means "any authenticated identity".
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.models import Principal, Role
from core.errors import ForbiddenError

logger = logging.getLogger("peoplehub.auth.permissions")


def authorize(actor: Principal, required_roles: Iterable[Role] = ()) -> Principal:
    """Return actor if its role is in required_roles (or the set is empty).

    Raises ForbiddenError otherwise.
    """
    allowed = frozenset(required_roles)
    if allowed and actor.role not in allowed:
        logger.warning(
            "Account %s with role %s denied; requires one of: %s",
            actor.id,
            actor.role.value,
            ", ".join(sorted(r.value for r in allowed)),
        )
        raise ForbiddenError("Access denied. Insufficient permissions.")
    return actor
