"""
auth/guard.py -- Per-request authentication and role gate.

State machine (AuthorizationGuard.resolve):

  no access token and no refresh token       -> AuthError (unauthenticated)
  access token malformed / bad signature     -> AuthError (invalid_token)
  access token expired (or absent), no refresh -> AuthError (token_expired)
  access token expired (or absent), refresh  -> silent refresh: rotate the
                                              session, issue a new pair,
                                              re-verify the new access token
  access token valid                         -> load the account, build a
                                              Principal from persisted data,
                                              authorize(principal, roles)

An absent access token with a refresh cookie is treated like an expired one:
the browser drops the access cookie when its max-age (= token ttl) lapses,
so this is how an expired session normally arrives.

Token claims are only used to find the account. Role and profile come from
the store because claims may be stale.

authenticate(*roles) wraps the guard as a FastAPI dependency. Token sources,
in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "access_token" cookie -- browser sessions.
The refresh token is only ever read from the "refresh_token" cookie.

Layer rule: no imports from hr/. auth/guard.py may import from fastapi
because the dependency factory is part of FastAPI's DI system.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request, Response

from auth.models import ADMIN_ROLES, Principal, Role, TokenPair
from auth.permissions import authorize
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import (
    ACCESS,
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    TokenExpired,
    TokenInvalid,
    TokenService,
    set_auth_cookies,
)
from core.errors import AuthError


@dataclass(frozen=True)
class GuardResult:
    principal: Principal
    refreshed: TokenPair | None = None


class AuthorizationGuard:
    """Resolves a request's tokens to an authorized Principal."""

    def __init__(self, store: AccountStore, tokens: TokenService, auth: AuthService) -> None:
        self.store = store
        self.tokens = tokens
        self.auth = auth

    def resolve(
        self,
        access_token: str | None,
        refresh_token: str | None,
        required_roles: frozenset[Role] = frozenset(),
    ) -> GuardResult:
        if not access_token and not refresh_token:
            raise AuthError("No token provided, authentication failed.", code="unauthenticated")

        refreshed: TokenPair | None = None
        try:
            if not access_token:
                raise TokenExpired("Token has expired.")
            claims = self.tokens.verify(access_token, ACCESS)
        except TokenExpired:
            if not refresh_token:
                raise AuthError("Token expired and no refresh token provided.", code="token_expired") from None
            refreshed = self.auth.refresh(refresh_token).tokens
            claims = self.tokens.verify(refreshed.access_token, ACCESS)
        except TokenInvalid:
            raise AuthError("Invalid token.", code="invalid_token") from None

        account = self.store.get_by_id(claims["id"])
        if account is None:
            raise AuthError("Account no longer exists.", code="unauthenticated")
        if not account.verified:
            # Reverted to unverified after the token was issued (e.g. employee removed).
            raise AuthError("Please verify your email before logging in.", code="not_verified")
        principal = authorize(Principal.from_account(account), required_roles)
        return GuardResult(principal=principal, refreshed=refreshed)


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def authenticate(*roles: Role):
    """Build a FastAPI dependency that requires one of roles (any role if none).

    Use as a dependency:
        @router.post("/employees")
        def route(actor: Principal = Depends(authenticate(Role.ADMIN, Role.SUPERADMIN))): ...

    When the guard silently refreshes, the new pair is written as cookies on
    the outgoing response. Routes must return models/dicts (not a Response
    object) for FastAPI to merge those cookies.
    """
    required = frozenset(roles)

    def dependency(request: Request, response: Response) -> Principal:
        guard: AuthorizationGuard = request.app.state.guard
        result = guard.resolve(
            _bearer_token(request) or request.cookies.get(ACCESS_COOKIE),
            request.cookies.get(REFRESH_COOKIE),
            required,
        )
        if result.refreshed is not None:
            set_auth_cookies(response, result.refreshed, request.app.state.settings)
        request.state.principal = result.principal
        return result.principal

    return dependency


get_current_principal = authenticate()
require_admin = authenticate(*ADMIN_ROLES)
