"""
auth/codes.py -- One-time code generation and expiry policy.

Codes are 6-digit numeric strings drawn from the secrets module. A code is
bound to one account and one purpose (verification or password reset); any
newly issued code for the same purpose overwrites the stored one, so only the
latest code is ever valid.

Expiry is stored as an ISO 8601 UTC string next to the code. A code is
expired when now >= expiry. A missing or unparseable expiry counts as
expired so a malformed row can never yield a code that never lapses.
"""

from __future__ import annotations

import hmac
import secrets
from datetime import datetime, timedelta, timezone

CODE_LENGTH = 6


def generate_code() -> str:
    """Return a zero-padded random numeric code of CODE_LENGTH digits."""
    return f"{secrets.randbelow(10**CODE_LENGTH):0{CODE_LENGTH}d}"


def issue_code(ttl_seconds: int, now: datetime | None = None) -> tuple[str, str]:
    """Return (code, expiry_iso) for a window of ttl_seconds starting now."""
    now = now or datetime.now(timezone.utc)
    return generate_code(), (now + timedelta(seconds=ttl_seconds)).isoformat()


def is_expired(expires_at: str | None, now: datetime | None = None) -> bool:
    if not expires_at:
        return True
    try:
        expiry = datetime.fromisoformat(expires_at)
    except ValueError:
        return True
    if expiry.tzinfo is None:
        # Naive timestamps are written as UTC by the store.
        expiry = expiry.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return now >= expiry


def codes_match(stored: str | None, supplied: str | None) -> bool:
    """Constant-time comparison. Empty values never match."""
    if not stored or not supplied:
        return False
    return hmac.compare_digest(stored.encode("utf-8"), supplied.strip().encode("utf-8"))
