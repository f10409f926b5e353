"""
auth/tokens.py -- Password hashing, JWT issue/verify, and auth cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Two independent token kinds:
       access  -- short-lived (1h), signed with SECRET_KEY
       refresh -- long-lived (7d), signed with REFRESH_SECRET_KEY
       Every token also carries a "typ" claim naming its kind. A token is
       only accepted when both the signature (per-kind secret) and the typ
       claim match, so an access token can never pass as a refresh token or
       the other way round.

  Claims: {"sub": str(id), "id", "email", "role", "typ", "jti", "iat", "exp"}.
       sub is the string form of the id because python-jose rejects a
       non-string subject.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in AuthService.login() so response time
       does not reveal whether an email is registered [C1].

  TokenService is constructed once at startup with the frozen Settings
  object. No module-level secret is read here.

Layer rule: no imports from api/ or hr/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import Account, Role, TokenPair
from core.errors import AuthError

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("peoplehub.auth.tokens")

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


class TokenExpired(AuthError):
    default_code = "token_expired"


class TokenInvalid(AuthError):
    default_code = "invalid_token"


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input at 72 bytes. Request models cap password length
    at 128 characters, and hashing still succeeds for longer byte strings.
    """
    return bcrypt.hashpw(plain.encode("utf-8")[:72], bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the store -- treat as a non-match.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones [C1].
_DUMMY_HASH: str = hash_password("peoplehub_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a bcrypt comparison against the dummy hash and discard the result."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenService:
    """Issues and verifies signed, time-bounded access and refresh tokens.

    Usage:
        tokens = TokenService(get_settings())
        pair = tokens.issue_pair(account)
        claims = tokens.verify(pair.access_token, ACCESS)
    """

    def __init__(self, settings: Settings) -> None:
        self._secrets = {
            ACCESS: settings.secret_key,
            REFRESH: settings.refresh_secret_key,
        }
        self.ttls = {
            ACCESS: settings.access_token_expire_seconds,
            REFRESH: settings.refresh_token_expire_seconds,
        }

    def issue(self, claims: dict, kind: str, ttl: int | None = None) -> str:
        """Encode a signed JWT of the given kind.

        claims must contain "id" and "role". ttl defaults to the kind's
        configured lifetime. A jti is generated when claims does not carry one.
        """
        if "id" not in claims or "role" not in claims:
            raise ValueError("token claims must include id and role")
        now = datetime.now(timezone.utc)
        duration = ttl if ttl is not None else self.ttls[kind]
        role = claims["role"]
        payload = {
            **claims,
            "sub": str(claims["id"]),
            "role": role.value if isinstance(role, Role) else role,
            "typ": kind,
            "jti": claims.get("jti") or uuid.uuid4().hex,
            "iat": now,
            "exp": now + timedelta(seconds=duration),
        }
        return jwt.encode(payload, self._secrets[kind], algorithm=_ALGORITHM)

    def verify(self, token: str, kind: str) -> dict:
        """Decode and verify a token of the given kind.

        Raises TokenExpired when the signature is valid but exp has passed,
        TokenInvalid for every other failure (bad signature, wrong kind,
        malformed payload, unknown role).
        """
        try:
            payload = jwt.decode(token, self._secrets[kind], algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired("Token has expired.") from exc
        except JWTError as exc:
            raise TokenInvalid("Invalid token.") from exc
        if payload.get("typ") != kind or "id" not in payload or "role" not in payload:
            raise TokenInvalid("Invalid token.")
        try:
            payload["role"] = Role(payload["role"])
        except ValueError as exc:
            raise TokenInvalid("Invalid token.") from exc
        return payload

    def issue_pair(self, account: Account) -> TokenPair:
        """Issue a fresh access + refresh pair for the account."""
        claims = {"id": account.id, "email": account.email, "role": account.role}
        refresh_jti = uuid.uuid4().hex
        return TokenPair(
            access_token=self.issue(claims, ACCESS),
            refresh_token=self.issue({**claims, "jti": refresh_jti}, REFRESH),
            access_expires_in=self.ttls[ACCESS],
            refresh_expires_in=self.ttls[REFRESH],
            refresh_jti=refresh_jti,
        )


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, pair: TokenPair, settings: Settings) -> None:
    """Write both tokens as httpOnly cookies on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches each token's expiry so cookie and token lapse together.
    """
    for name, value, max_age in (
        (ACCESS_COOKIE, pair.access_token, pair.access_expires_in),
        (REFRESH_COOKIE, pair.refresh_token, pair.refresh_expires_in),
    ):
        response.set_cookie(
            name,
            value=value,
            httponly=True,
            samesite="strict",
            secure=settings.secure_cookies,
            max_age=max_age,
        )


def clear_auth_cookies(response) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)
