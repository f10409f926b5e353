"""
api/routes/v1/auth.py -- Identity lifecycle and account administration endpoints.

Routes:
  POST  /api/v1/auth/signup               -- create unverified account; 201
  POST  /api/v1/auth/verify               -- confirm email with the 6-digit code
  POST  /api/v1/auth/resend-verification  -- issue a fresh verification code
  POST  /api/v1/auth/login                -- password login; sets both cookies
  POST  /api/v1/auth/refresh              -- rotate the refresh token; sets both cookies
  POST  /api/v1/auth/forgot-password      -- always the same generic answer
  POST  /api/v1/auth/reset-password       -- consume reset code, set new password
  POST  /api/v1/auth/change-password      -- requires auth + current password
  POST  /api/v1/auth/logout               -- requires auth; ends every session
  GET   /api/v1/auth/me                   -- current account
  GET   /api/v1/auth/users                -- all accounts (admin only)
  PATCH /api/v1/auth/users/{id}/role      -- change a role (admin only)

Security:
  [H2] login and every code-issuing route (signup, resend-verification,
       forgot-password) are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] AuthService.login() equalizes timing; never look the account up here.
  [M5] Cache-Control: no-store on every response that carries tokens.

Handlers stay thin: they unpack the body, call one AuthService method and
shape the response. Typed errors propagate to the handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status

from api.limiter import limiter
from api.models import (
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    ResetPasswordRequest,
    RoleUpdate,
    SignupRequest,
    SignupResponse,
    UserSummary,
    VerifyRequest,
)
from auth.guard import get_current_principal, require_admin
from auth.models import Principal, TokenPair
from auth.service import AuthService
from auth.tokens import REFRESH_COOKIE, clear_auth_cookies, set_auth_cookies
from core.config import get_settings

# Auth policy:
# - signup, verify, resend-verification, login, refresh,
#   forgot-password, reset-password:  public
# - change-password, logout, me:      any authenticated account
# - users, users/{id}/role:           admin or superadmin (require_admin)
router = APIRouter()

_RATE_LIMIT = get_settings().login_rate_limit


def _auth(request: Request) -> AuthService:
    return request.app.state.auth


def _token_response(message: str, user: dict, pair: TokenPair) -> LoginResponse:
    return LoginResponse(
        message=message,
        user=UserSummary(**user),
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=pair.access_expires_in,
        refresh_expires_in=pair.refresh_expires_in,
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_RATE_LIMIT)  # [H2] each signup sends an email
@router.post("/auth/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
def signup(request: Request, body: SignupRequest) -> SignupResponse:
    """Create an unverified account and email its verification code.

    The email is sent in the background; a delivery failure does not undo
    the signup (the user can ask for a new code).
    """
    result = _auth(request).signup(body.username, body.email, body.password, body.confirm_password)
    return SignupResponse(**result)


@router.post("/auth/verify", response_model=SignupResponse)
def verify(request: Request, body: VerifyRequest) -> SignupResponse:
    return SignupResponse(**_auth(request).verify_account(body.email, body.code))


@limiter.limit(_RATE_LIMIT)  # [H2]
@router.post("/auth/resend-verification", response_model=MessageResponse)
def resend_verification(request: Request, body: EmailRequest) -> MessageResponse:
    return MessageResponse(**_auth(request).resend_verification_code(body.email))


@limiter.limit(_RATE_LIMIT)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate with email and password.

    The token pair is returned in the body for API clients and set as
    httpOnly cookies for browsers.
    """
    result = _auth(request).login(body.email, body.password)
    set_auth_cookies(response, result.tokens, request.app.state.settings)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return _token_response(result.message, result.user, result.tokens)


@router.post("/auth/refresh", response_model=LoginResponse)
def refresh(request: Request, response: Response, body: RefreshRequest | None = None) -> LoginResponse:
    """Exchange a refresh token (body or cookie) for a new pair.

    The presented refresh token is single-use: its session row is rotated to
    the new token, so replaying it fails with session_revoked.
    """
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    result = _auth(request).refresh(token)
    set_auth_cookies(response, result.tokens, request.app.state.settings)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    user = _auth(request).get_account(result.principal.id)
    return _token_response("Token refreshed", user, result.tokens)


@limiter.limit(_RATE_LIMIT)  # [H2] code requests trigger email; throttle per IP
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: EmailRequest) -> MessageResponse:
    return MessageResponse(**_auth(request).forgot_password(body.email))


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    result = _auth(request).reset_password(body.email, body.reset_code, body.new_password, body.confirm_password)
    return MessageResponse(**result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    result = _auth(request).change_password(
        principal.id, body.current_password, body.new_password, body.confirm_password
    )
    return MessageResponse(**result)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    """End every server-side session for the caller and clear both cookies.

    Access tokens already handed out stay valid until they expire; clients
    must discard them.
    """
    result = _auth(request).logout(principal.id)
    clear_auth_cookies(response)
    return MessageResponse(**result)


@router.get("/auth/me", response_model=UserSummary)
def me(request: Request, principal: Principal = Depends(get_current_principal)) -> UserSummary:
    return UserSummary(**_auth(request).get_account(principal.id))


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserSummary])
def list_users(request: Request, principal: Principal = Depends(require_admin)) -> list[UserSummary]:
    return [UserSummary(**u) for u in _auth(request).list_accounts(principal)]


@router.patch("/auth/users/{user_id}/role", response_model=UserSummary)
def change_role(
    request: Request,
    user_id: int,
    body: RoleUpdate,
    principal: Principal = Depends(require_admin),
) -> UserSummary:
    """Change another account's role. Self-changes are refused."""
    return UserSummary(**_auth(request).change_role(principal, user_id, body.role.value))
