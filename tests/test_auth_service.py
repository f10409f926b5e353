"""Unit tests for auth/service.py -- the identity lifecycle.

Covers:
- signup: required fields, mismatch, short password, duplicate email,
  unverified account + verification code sent in the background
- signup survives notifier failure (fire-and-forget policy)
- verify: not found, already verified, wrong code, expired code, success
  clears the verification pair
- resend: invalidates the previous code, surfaces delivery failure
- login: identical failure for unknown email and wrong password, "not
  verified" only after a correct password, token claims, session created
- refresh: rotation, replay rejected, logout revokes
- forgot / reset password: generic message, no mutation for unknown email,
  expired code fails even when it matches, reset revokes sessions
- change password: old password required
- role changes: admin only, no self-change, superadmin guarded
"""

from datetime import datetime, timedelta, timezone

import pytest
from conftest import PASSWORD, FailingNotifier, drain, make_account

from auth.models import Principal, Role
from auth.notifier import TemplateKind
from auth.service import FORGOT_PASSWORD_MESSAGE, INVALID_CREDENTIALS_MESSAGE, AuthService
from auth.tokens import ACCESS, REFRESH, verify_password
from core.errors import (
    AuthError,
    ConflictError,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
    ServerError,
    StateError,
    ValidationError,
)


def _past() -> str:
    return (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()


def _signup_and_verify(service: AuthService, notifier, email: str = "alice@x.com") -> None:
    service.signup("alice", email, PASSWORD, PASSWORD)
    drain(service)
    service.verify_account(email, notifier.last_code(email, TemplateKind.VERIFICATION))


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


class TestSignup:
    def test_creates_unverified_account_and_sends_code(self, auth_service, account_store, notifier):
        result = auth_service.signup("alice", "Alice@X.com", PASSWORD, PASSWORD)

        assert result["user"]["verified"] is False
        assert result["user"]["email"] == "alice@x.com"
        assert "alice@x.com" in result["message"]
        assert "hashed_password" not in result["user"]

        account = account_store.get_by_email("alice@x.com")
        assert account.role is Role.USER
        assert account.verification_code is not None
        assert account.verification_code_expires_at is not None

        drain(auth_service)
        assert notifier.last_code("alice@x.com", TemplateKind.VERIFICATION) == account.verification_code

    def test_missing_fields_are_listed(self, auth_service):
        with pytest.raises(ValidationError) as exc_info:
            auth_service.signup("alice", "", PASSWORD, None)
        assert exc_info.value.code == "missing_fields"
        assert exc_info.value.errors == ["email is required", "confirm_password is required"]

    def test_password_mismatch(self, auth_service):
        with pytest.raises(ValidationError) as exc_info:
            auth_service.signup("alice", "alice@x.com", PASSWORD, "Abc123?")
        assert exc_info.value.code == "password_mismatch"

    def test_password_too_short(self, auth_service):
        with pytest.raises(ValidationError) as exc_info:
            auth_service.signup("alice", "alice@x.com", "abc", "abc")
        assert exc_info.value.code == "password_too_short"

    def test_duplicate_email_conflicts(self, auth_service):
        auth_service.signup("alice", "alice@x.com", PASSWORD, PASSWORD)
        with pytest.raises(ConflictError):
            auth_service.signup("alice2", "ALICE@x.com", PASSWORD, PASSWORD)

    def test_notifier_failure_does_not_fail_signup(self, account_store, tokens, settings):
        failing = FailingNotifier()
        service = AuthService(account_store, tokens, failing, settings)
        result = service.signup("bob", "bob@x.com", PASSWORD, PASSWORD)
        service.close()

        assert result["user"]["verified"] is False
        assert account_store.get_by_email("bob@x.com") is not None
        assert failing.attempts == 1


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class TestVerify:
    def test_success_sets_verified_and_clears_code(self, auth_service, account_store, notifier):
        auth_service.signup("alice", "alice@x.com", PASSWORD, PASSWORD)
        drain(auth_service)
        code = notifier.last_code("alice@x.com", TemplateKind.VERIFICATION)

        result = auth_service.verify_account("alice@x.com", code)

        assert result["user"]["verified"] is True
        account = account_store.get_by_email("alice@x.com")
        assert account.verified is True
        assert account.verification_code is None
        assert account.verification_code_expires_at is None

    def test_unknown_email(self, auth_service):
        with pytest.raises(NotFoundError):
            auth_service.verify_account("ghost@x.com", "123456")

    def test_already_verified(self, auth_service, notifier):
        _signup_and_verify(auth_service, notifier)
        with pytest.raises(StateError):
            auth_service.verify_account("alice@x.com", "123456")

    def test_wrong_code(self, auth_service, account_store):
        auth_service.signup("alice", "alice@x.com", PASSWORD, PASSWORD)
        stored = account_store.get_by_email("alice@x.com").verification_code
        wrong = "000000" if stored != "000000" else "111111"
        with pytest.raises(ValidationError) as exc_info:
            auth_service.verify_account("alice@x.com", wrong)
        assert exc_info.value.code == "invalid_code"

    def test_missing_code(self, auth_service):
        auth_service.signup("alice", "alice@x.com", PASSWORD, PASSWORD)
        with pytest.raises(ValidationError):
            auth_service.verify_account("alice@x.com", "")

    def test_expired_code_fails_even_when_matching(self, auth_service, account_store):
        auth_service.signup("alice", "alice@x.com", PASSWORD, PASSWORD)
        account = account_store.get_by_email("alice@x.com")
        account_store.set_verification_code(account.id, "424242", _past())

        with pytest.raises(ExpiredError):
            auth_service.verify_account("alice@x.com", "424242")
        assert account_store.get_by_id(account.id).verified is False


class TestResend:
    def test_second_resend_invalidates_first_code(self, auth_service, account_store, notifier):
        auth_service.signup("alice", "alice@x.com", PASSWORD, PASSWORD)
        drain(auth_service)
        auth_service.resend_verification_code("alice@x.com")
        first = notifier.last_code("alice@x.com", TemplateKind.VERIFICATION)
        auth_service.resend_verification_code("alice@x.com")
        second = notifier.last_code("alice@x.com", TemplateKind.VERIFICATION)

        if first != second:
            with pytest.raises(ValidationError):
                auth_service.verify_account("alice@x.com", first)
        auth_service.verify_account("alice@x.com", second)
        assert account_store.get_by_email("alice@x.com").verified is True

    def test_unknown_email(self, auth_service):
        with pytest.raises(NotFoundError):
            auth_service.resend_verification_code("ghost@x.com")

    def test_already_verified(self, auth_service, notifier):
        _signup_and_verify(auth_service, notifier)
        with pytest.raises(StateError):
            auth_service.resend_verification_code("alice@x.com")

    def test_delivery_failure_is_surfaced(self, account_store, tokens, settings):
        service = AuthService(account_store, tokens, FailingNotifier(), settings)
        service.signup("bob", "bob@x.com", PASSWORD, PASSWORD)
        with pytest.raises(ServerError) as exc_info:
            service.resend_verification_code("bob@x.com")
        service.close()
        assert exc_info.value.code == "delivery_failed"


# ---------------------------------------------------------------------------
# Login / refresh / logout
# ---------------------------------------------------------------------------


class TestLogin:
    def test_unknown_email_and_wrong_password_fail_identically(self, auth_service, account_store):
        make_account(account_store, "alice@x.com")

        with pytest.raises(AuthError) as unknown:
            auth_service.login("ghost@x.com", PASSWORD)
        with pytest.raises(AuthError) as wrong:
            auth_service.login("alice@x.com", "WrongPass1")

        assert type(unknown.value) is type(wrong.value)
        assert unknown.value.code == wrong.value.code == "invalid_credentials"
        assert unknown.value.message == wrong.value.message == INVALID_CREDENTIALS_MESSAGE

    def test_not_verified_only_after_correct_password(self, auth_service, account_store):
        make_account(account_store, "alice@x.com", verified=False)

        with pytest.raises(AuthError) as wrong:
            auth_service.login("alice@x.com", "WrongPass1")
        assert wrong.value.code == "invalid_credentials"

        with pytest.raises(AuthError) as unverified:
            auth_service.login("alice@x.com", PASSWORD)
        assert unverified.value.code == "not_verified"

    def test_success_returns_tokens_with_claims(self, auth_service, account_store, tokens):
        account = make_account(account_store, "alice@x.com")
        result = auth_service.login("ALICE@x.com", PASSWORD)

        assert result.user == account_store.get_by_id(account.id).summary()
        access = tokens.verify(result.tokens.access_token, ACCESS)
        refresh = tokens.verify(result.tokens.refresh_token, REFRESH)
        assert access["id"] == refresh["id"] == account.id
        assert access["role"] is Role.USER
        assert access["email"] == "alice@x.com"
        assert account_store.get_session_account(result.tokens.refresh_jti) == account.id

    def test_missing_fields(self, auth_service):
        with pytest.raises(ValidationError):
            auth_service.login("", "")


class TestRefresh:
    def test_rotates_session(self, auth_service, account_store):
        account = make_account(account_store, "alice@x.com")
        first = auth_service.login("alice@x.com", PASSWORD).tokens

        second = auth_service.refresh(first.refresh_token).tokens

        assert second.refresh_jti != first.refresh_jti
        assert account_store.get_session_account(first.refresh_jti) is None
        assert account_store.get_session_account(second.refresh_jti) == account.id

    def test_replayed_refresh_token_is_rejected(self, auth_service, account_store):
        make_account(account_store, "alice@x.com")
        first = auth_service.login("alice@x.com", PASSWORD).tokens
        auth_service.refresh(first.refresh_token)

        with pytest.raises(AuthError) as exc_info:
            auth_service.refresh(first.refresh_token)
        assert exc_info.value.code == "session_revoked"

    def test_access_token_is_not_a_refresh_token(self, auth_service, account_store):
        make_account(account_store, "alice@x.com")
        pair = auth_service.login("alice@x.com", PASSWORD).tokens
        with pytest.raises(AuthError):
            auth_service.refresh(pair.access_token)

    def test_missing_token(self, auth_service):
        with pytest.raises(AuthError):
            auth_service.refresh("")


class TestLogout:
    def test_logout_revokes_refresh_and_is_idempotent(self, auth_service, account_store):
        account = make_account(account_store, "alice@x.com")
        pair = auth_service.login("alice@x.com", PASSWORD).tokens

        first = auth_service.logout(account.id)
        second = auth_service.logout(account.id)

        assert first == second
        with pytest.raises(AuthError) as exc_info:
            auth_service.refresh(pair.refresh_token)
        assert exc_info.value.code == "session_revoked"


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


class TestForgotPassword:
    def test_unknown_email_gets_generic_message_and_no_send(self, auth_service, account_store, notifier):
        make_account(account_store, "alice@x.com")
        before = account_store.get_by_email("alice@x.com")

        result = auth_service.forgot_password("ghost@x.com")

        assert result == {"message": FORGOT_PASSWORD_MESSAGE}
        assert notifier.sent == []
        assert account_store.get_by_email("alice@x.com") == before
        assert account_store.get_by_email("ghost@x.com") is None

    def test_known_email_gets_same_message_and_a_code(self, auth_service, account_store, notifier):
        make_account(account_store, "alice@x.com")
        result = auth_service.forgot_password("alice@x.com")

        assert result == {"message": FORGOT_PASSWORD_MESSAGE}
        account = account_store.get_by_email("alice@x.com")
        assert notifier.last_code("alice@x.com", TemplateKind.PASSWORD_RESET) == account.forgot_password_code

    def test_delivery_failure_keeps_generic_message(self, account_store, tokens, settings):
        make_account(account_store, "alice@x.com")
        service = AuthService(account_store, tokens, FailingNotifier(), settings)
        assert service.forgot_password("alice@x.com") == {"message": FORGOT_PASSWORD_MESSAGE}
        service.close()


class TestResetPassword:
    def test_success_replaces_hash_clears_code_and_revokes_sessions(self, auth_service, account_store, notifier):
        account = make_account(account_store, "alice@x.com")
        pair = auth_service.login("alice@x.com", PASSWORD).tokens
        auth_service.forgot_password("alice@x.com")
        code = notifier.last_code("alice@x.com", TemplateKind.PASSWORD_RESET)

        auth_service.reset_password("alice@x.com", code, "NewPass1", "NewPass1")

        updated = account_store.get_by_id(account.id)
        assert verify_password("NewPass1", updated.hashed_password)
        assert updated.forgot_password_code is None
        assert updated.forgot_password_code_expires_at is None
        with pytest.raises(AuthError):
            auth_service.refresh(pair.refresh_token)
        auth_service.login("alice@x.com", "NewPass1")

    def test_expired_code_fails_even_when_matching(self, auth_service, account_store):
        account = make_account(account_store, "alice@x.com")
        account_store.set_reset_code(account.id, "135790", _past())

        with pytest.raises(ExpiredError):
            auth_service.reset_password("alice@x.com", "135790", "NewPass1", "NewPass1")
        assert verify_password(PASSWORD, account_store.get_by_id(account.id).hashed_password)

    def test_wrong_code(self, auth_service, account_store, notifier):
        make_account(account_store, "alice@x.com")
        auth_service.forgot_password("alice@x.com")
        code = notifier.last_code("alice@x.com", TemplateKind.PASSWORD_RESET)
        wrong = "000000" if code != "000000" else "111111"
        with pytest.raises(ValidationError) as exc_info:
            auth_service.reset_password("alice@x.com", wrong, "NewPass1", "NewPass1")
        assert exc_info.value.code == "invalid_code"

    def test_no_code_issued(self, auth_service, account_store):
        make_account(account_store, "alice@x.com")
        with pytest.raises(ValidationError):
            auth_service.reset_password("alice@x.com", "123456", "NewPass1", "NewPass1")

    def test_validation_order(self, auth_service):
        with pytest.raises(ValidationError) as mismatch:
            auth_service.reset_password("ghost@x.com", "123456", "NewPass1", "NewPass2")
        assert mismatch.value.code == "password_mismatch"
        with pytest.raises(ValidationError) as short:
            auth_service.reset_password("ghost@x.com", "123456", "abc", "abc")
        assert short.value.code == "password_too_short"
        with pytest.raises(NotFoundError):
            auth_service.reset_password("ghost@x.com", "123456", "NewPass1", "NewPass1")


class TestChangePassword:
    def test_requires_old_password(self, auth_service, account_store):
        account = make_account(account_store, "alice@x.com")
        with pytest.raises(AuthError):
            auth_service.change_password(account.id, "NewPass1", "NewPass1", "NewPass1")

        auth_service.change_password(account.id, PASSWORD, "NewPass1", "NewPass1")
        assert verify_password("NewPass1", account_store.get_by_id(account.id).hashed_password)

    def test_mismatch_and_length(self, auth_service, account_store):
        account = make_account(account_store, "alice@x.com")
        with pytest.raises(ValidationError):
            auth_service.change_password(account.id, PASSWORD, "NewPass1", "NewPass2")
        with pytest.raises(ValidationError):
            auth_service.change_password(account.id, PASSWORD, "abc", "abc")


# ---------------------------------------------------------------------------
# Scenario
# ---------------------------------------------------------------------------


def test_signup_verify_login_scenario(auth_service, account_store, notifier, tokens):
    result = auth_service.signup("alice", "alice@x.com", "Abc123!", "Abc123!")
    assert result["user"]["verified"] is False
    drain(auth_service)
    code = notifier.last_code("alice@x.com", TemplateKind.VERIFICATION)

    with pytest.raises(ValidationError):
        auth_service.verify_account("alice@x.com", "999999" if code != "999999" else "000000")
    with pytest.raises(AuthError) as before_verify:
        auth_service.login("alice@x.com", "Abc123!")
    assert before_verify.value.code == "not_verified"

    assert auth_service.verify_account("alice@x.com", code)["user"]["verified"] is True
    login = auth_service.login("alice@x.com", "Abc123!")
    assert tokens.verify(login.tokens.access_token, ACCESS)["role"] is Role.USER
    assert tokens.verify(login.tokens.refresh_token, REFRESH)["role"] is Role.USER


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


class TestChangeRole:
    def test_admin_promotes_user(self, auth_service, account_store):
        admin = Principal.from_account(make_account(account_store, "admin@x.com", role=Role.ADMIN))
        user = make_account(account_store, "alice@x.com")

        result = auth_service.change_role(admin, user.id, "employee")

        assert result["role"] == "employee"
        assert account_store.get_by_id(user.id).role is Role.EMPLOYEE

    def test_non_admin_forbidden(self, auth_service, account_store):
        actor = Principal.from_account(make_account(account_store, "bob@x.com", role=Role.EMPLOYEE))
        user = make_account(account_store, "alice@x.com")
        with pytest.raises(ForbiddenError):
            auth_service.change_role(actor, user.id, "admin")

    def test_cannot_change_own_role(self, auth_service, account_store):
        admin = Principal.from_account(make_account(account_store, "admin@x.com", role=Role.ADMIN))
        with pytest.raises(ForbiddenError):
            auth_service.change_role(admin, admin.id, "user")

    def test_only_superadmin_grants_superadmin(self, auth_service, account_store):
        admin = Principal.from_account(make_account(account_store, "admin@x.com", role=Role.ADMIN))
        root = Principal.from_account(make_account(account_store, "root@x.com", role=Role.SUPERADMIN))
        user = make_account(account_store, "alice@x.com")

        with pytest.raises(ForbiddenError):
            auth_service.change_role(admin, user.id, "superadmin")
        assert auth_service.change_role(root, user.id, "superadmin")["role"] == "superadmin"

    def test_unknown_role(self, auth_service, account_store):
        admin = Principal.from_account(make_account(account_store, "admin@x.com", role=Role.ADMIN))
        user = make_account(account_store, "alice@x.com")
        with pytest.raises(ValidationError):
            auth_service.change_role(admin, user.id, "overlord")

    def test_list_accounts_requires_admin(self, auth_service, account_store):
        user = Principal.from_account(make_account(account_store, "alice@x.com"))
        admin = Principal.from_account(make_account(account_store, "admin@x.com", role=Role.ADMIN))
        with pytest.raises(ForbiddenError):
            auth_service.list_accounts(user)
        emails = [a["email"] for a in auth_service.list_accounts(admin)]
        assert emails == ["admin@x.com", "alice@x.com"]
