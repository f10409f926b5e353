"""
auth/service.py -- Identity lifecycle: signup, verification, login, password
reset/change, logout, token refresh and administrative role changes.

State machine per account (fields on auth.models.Account):

    signup ──> unverified (verification code + 1h expiry)
                 │  resend: new code, previous one superseded
                 │  verify(code): verified, code pair cleared
                 v
              verified ──login──> session (refresh jti stored)
                 │  forgot: reset code + 30min expiry (generic response always)
                 │  reset(code): new hash, reset pair cleared, sessions revoked
                 │  change(current): new hash
                 v
              logout: sessions deleted (idempotent)

Anti-enumeration:
  login fails with one message for "no such email" and "wrong password", and
  always runs bcrypt (dummy hash for unknown emails) [C1]. "Not verified" is
  only reported after the password matched. forgot_password returns the same
  message whether or not the account exists and whether or not delivery
  worked.

Notify policy per operation:
  signup               FIRE_AND_FORGET  (account is created even if mail fails)
  resend_verification  BLOCKING         (failure surfaces as ServerError)
  forgot_password      BLOCKING         (failure logged, generic message kept)

Layer rule: no imports from api/ or hr/.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.codes import codes_match, is_expired, issue_code
from auth.models import ADMIN_ROLES, Account, Principal, Role, TokenPair
from auth.notifier import Notifier, NotifierError, NotifyPolicy, TemplateKind
from auth.permissions import authorize
from auth.store import AccountStore, normalize_email
from auth.tokens import REFRESH, TokenService, burn_password_check, hash_password, verify_password
from core.errors import (
    AuthError,
    ConflictError,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
    ServerError,
    StateError,
    ValidationError,
    require_fields,
)

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("peoplehub.auth")

FORGOT_PASSWORD_MESSAGE = "If an account with this email exists, you will receive a password reset code."
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password."


@dataclass
class LoginResult:
    user: dict
    claims: dict
    tokens: TokenPair
    message: str = "Login successful"


@dataclass
class RefreshResult:
    principal: Principal
    tokens: TokenPair
    claims: dict = field(default_factory=dict)


class AuthService:
    """Orchestrates every identity transition over the credential store.

    Usage:
        service = AuthService(store, TokenService(settings), SmtpNotifier(settings), settings)
        service.signup("alice", "alice@x.com", "Abc123!", "Abc123!")
        ...
        service.close()
    """

    SIGNUP_NOTIFY = NotifyPolicy.FIRE_AND_FORGET
    RESEND_NOTIFY = NotifyPolicy.BLOCKING
    FORGOT_PASSWORD_NOTIFY = NotifyPolicy.BLOCKING

    def __init__(
        self,
        store: AccountStore,
        tokens: TokenService,
        notifier: Notifier,
        settings: Settings,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.notifier = notifier
        self._verification_ttl = settings.verification_code_ttl_seconds
        self._reset_ttl = settings.reset_code_ttl_seconds
        self._min_password_length = settings.min_password_length
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="notifier")

    # ------------------------------------------------------------------
    # Signup and verification
    # ------------------------------------------------------------------

    def signup(self, username: str, email: str, password: str, confirm_password: str) -> dict:
        require_fields(username=username, email=email, password=password, confirm_password=confirm_password)
        if password != confirm_password:
            raise ValidationError("Passwords do not match.", code="password_mismatch")
        self._check_length(password)

        email = normalize_email(email)
        if self.store.get_by_email(email) is not None:
            raise ConflictError("An account with this email already exists.", code="email_taken")

        code, expires_at = issue_code(self._verification_ttl)
        account = Account(
            username=username.strip(),
            email=email,
            hashed_password=hash_password(password),
            role=Role.USER,
            verified=False,
            verification_code=code,
            verification_code_expires_at=expires_at,
        )
        account.id = self.store.create_account(account)
        logger.info("Account %s created (unverified)", account.id)

        self._deliver(self.SIGNUP_NOTIFY, account, code, TemplateKind.VERIFICATION)
        return {
            "message": f"Registration successful! Please check your email at {email} for verification code.",
            "user": _signup_summary(account),
        }

    def verify_account(self, email: str, code: str) -> dict:
        require_fields(email=email)
        account = self.store.get_by_email(email)
        if account is None:
            raise NotFoundError("User not found.", code="user_not_found")
        if account.verified:
            raise StateError("User is already verified.", code="already_verified")
        if not codes_match(account.verification_code, code):
            raise ValidationError("Invalid verification code.", code="invalid_code")
        if is_expired(account.verification_code_expires_at):
            raise ExpiredError("Verification code has expired. Please request a new one.", code="code_expired")

        self.store.mark_verified(account.id)
        logger.info("Account %s verified", account.id)
        verified = self.store.get_by_id(account.id)
        return {"message": "Email verified successfully! You can now login.", "user": _signup_summary(verified)}

    def resend_verification_code(self, email: str) -> dict:
        require_fields(email=email)
        account = self.store.get_by_email(email)
        if account is None:
            raise NotFoundError("User not found.", code="user_not_found")
        if account.verified:
            raise StateError("User is already verified.", code="already_verified")

        code, expires_at = issue_code(self._verification_ttl)
        self.store.set_verification_code(account.id, code, expires_at)
        try:
            self._deliver(self.RESEND_NOTIFY, account, code, TemplateKind.VERIFICATION)
        except NotifierError as exc:
            raise ServerError("Failed to send verification email.", code="delivery_failed") from exc
        return {"message": "New verification code sent to your email."}

    # ------------------------------------------------------------------
    # Login / refresh / logout
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> LoginResult:
        require_fields(email=email, password=password)
        account = self.store.get_by_email(email)
        if account is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            burn_password_check(password)
            raise AuthError(INVALID_CREDENTIALS_MESSAGE, code="invalid_credentials")
        if not verify_password(password, account.hashed_password):
            raise AuthError(INVALID_CREDENTIALS_MESSAGE, code="invalid_credentials")
        if not account.verified:
            raise AuthError("Please verify your email before logging in.", code="not_verified")

        pair = self.tokens.issue_pair(account)
        self.store.create_session(account.id, pair.refresh_jti, _expiry_iso(pair.refresh_expires_in))
        logger.info("Account %s logged in (role=%s)", account.id, account.role.value)
        return LoginResult(
            user=account.summary(),
            claims={"id": account.id, "email": account.email, "role": account.role.value},
            tokens=pair,
        )

    def refresh(self, refresh_token: str) -> RefreshResult:
        """Exchange a refresh token for a new pair, rotating the session.

        Fails with AuthError (TokenExpired / TokenInvalid) on a bad token and
        with AuthError("session_revoked") when the session was logged out or
        already rotated.
        """
        if not refresh_token:
            raise AuthError("Refresh token required.", code="unauthorized")
        claims = self.tokens.verify(refresh_token, REFRESH)
        account = self.store.get_by_id(claims["id"])
        if account is None or self.store.get_session_account(claims["jti"]) != account.id:
            raise AuthError("Session has ended. Please log in again.", code="session_revoked")
        if not account.verified:
            raise AuthError("Please verify your email before logging in.", code="not_verified")

        pair = self.tokens.issue_pair(account)
        if not self.store.rotate_session(claims["jti"], pair.refresh_jti, _expiry_iso(pair.refresh_expires_in)):
            raise AuthError("Session has ended. Please log in again.", code="session_revoked")
        logger.info("Account %s refreshed its session", account.id)
        return RefreshResult(principal=Principal.from_account(account), tokens=pair, claims=claims)

    def logout(self, identity: int) -> dict:
        """End every server-side session for the account. Safe to repeat."""
        removed = self.store.delete_sessions(identity)
        logger.info("Account %s logged out (%d session(s) cleared)", identity, removed)
        return {"message": "Logged out. Discard both tokens."}

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> dict:
        require_fields(email=email)
        account = self.store.get_by_email(email)
        if account is None:
            return {"message": FORGOT_PASSWORD_MESSAGE}

        code, expires_at = issue_code(self._reset_ttl)
        self.store.set_reset_code(account.id, code, expires_at)
        try:
            self._deliver(self.FORGOT_PASSWORD_NOTIFY, account, code, TemplateKind.PASSWORD_RESET)
        except NotifierError:
            # The response must not differ from the unknown-email case.
            logger.warning("Password reset email for account %s was not delivered", account.id, exc_info=True)
        return {"message": FORGOT_PASSWORD_MESSAGE}

    def reset_password(self, email: str, reset_code: str, new_password: str, confirm_password: str) -> dict:
        require_fields(email=email, reset_code=reset_code, new_password=new_password, confirm_password=confirm_password)
        if new_password != confirm_password:
            raise ValidationError("Passwords do not match.", code="password_mismatch")
        self._check_length(new_password)

        account = self.store.get_by_email(email)
        if account is None:
            raise NotFoundError("User not found.", code="user_not_found")
        if not codes_match(account.forgot_password_code, reset_code):
            raise ValidationError("Invalid reset code.", code="invalid_code")
        if is_expired(account.forgot_password_code_expires_at):
            raise ExpiredError("Reset code has expired. Please request a new one.", code="code_expired")

        self.store.replace_password(account.id, hash_password(new_password), clear_reset_code=True)
        self.store.delete_sessions(account.id)
        logger.info("Account %s reset its password", account.id)
        return {"message": "Password reset successful. You can now login with your new password."}

    def change_password(self, identity: int, current_password: str, new_password: str, confirm_password: str) -> dict:
        require_fields(current_password=current_password, new_password=new_password, confirm_password=confirm_password)
        if new_password != confirm_password:
            raise ValidationError("New passwords do not match.", code="password_mismatch")
        self._check_length(new_password)

        account = self.store.get_by_id(identity)
        if account is None:
            raise NotFoundError("User not found.", code="user_not_found")
        if not verify_password(current_password, account.hashed_password):
            raise AuthError("Current password is incorrect.", code="invalid_credentials")

        self.store.replace_password(account.id, hash_password(new_password))
        logger.info("Account %s changed its password", account.id)
        return {"message": "Password changed successfully."}

    # ------------------------------------------------------------------
    # Profile and administration
    # ------------------------------------------------------------------

    def get_account(self, identity: int) -> dict:
        account = self.store.get_by_id(identity)
        if account is None:
            raise NotFoundError("User not found.", code="user_not_found")
        return account.summary()

    def list_accounts(self, actor: Principal) -> list[dict]:
        authorize(actor, ADMIN_ROLES)
        return [a.summary() for a in self.store.list_accounts()]

    def change_role(self, actor: Principal, target_id: int, role: Role | str) -> dict:
        """Administrator-initiated role change.

        Nobody changes their own role. Only a superadmin may grant or revoke
        the superadmin role.
        """
        authorize(actor, ADMIN_ROLES)
        try:
            role = Role(role)
        except ValueError as exc:
            raise ValidationError(f"Unknown role: {role!r}", code="invalid_role") from exc

        target = self.store.get_by_id(target_id)
        if target is None:
            raise NotFoundError("User not found.", code="user_not_found")
        if target.id == actor.id:
            raise ForbiddenError("You cannot change your own role.", code="self_role_change")
        if Role.SUPERADMIN in (role, target.role) and actor.role is not Role.SUPERADMIN:
            raise ForbiddenError("Only a superadmin can grant or revoke superadmin.")

        self.store.update_account(target.id, role=role)
        logger.info("Account %s role %s -> %s by account %s", target.id, target.role.value, role.value, actor.id)
        return self.store.get_by_id(target.id).summary()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_length(self, password: str) -> None:
        if len(password) < self._min_password_length:
            raise ValidationError(
                f"Password must be at least {self._min_password_length} characters long.",
                code="password_too_short",
            )

    def _deliver(self, policy: NotifyPolicy, account: Account, code: str, kind: TemplateKind) -> None:
        """Send a code per policy. BLOCKING sends raise NotifierError to the caller."""
        if policy is NotifyPolicy.BLOCKING:
            self.notifier.send(account.email, account.username, code, kind)
            return
        future = self._executor.submit(self._send_logged, account.id, account.email, account.username, code, kind)
        future.add_done_callback(_log_unexpected_failure)

    def _send_logged(self, account_id: int, email: str, username: str, code: str, kind: TemplateKind) -> None:
        try:
            self.notifier.send(email, username, code, kind)
        except NotifierError:
            logger.warning("%s email for account %s was not delivered", kind.value, account_id, exc_info=True)

    def close(self) -> None:
        """Wait for queued fire-and-forget sends, then stop the worker pool."""
        self._executor.shutdown(wait=True)


def _signup_summary(account: Account) -> dict:
    return {"id": account.id, "username": account.username, "email": account.email, "verified": account.verified}


def _expiry_iso(seconds: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(seconds=seconds)).isoformat()


def _log_unexpected_failure(future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error("Background notification crashed", exc_info=exc)
