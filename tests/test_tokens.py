"""Unit tests for auth/tokens.py -- password hashing and the token service.

Covers:
- bcrypt hash/verify round trip and malformed-hash handling
- access and refresh tokens carry id, email, role, typ, jti
- an access token never verifies as a refresh token and vice versa
  (separate secrets plus typ claim)
- expired tokens raise TokenExpired; tampered tokens raise TokenInvalid
- issue() refuses claims without id/role
- cookie helpers set httpOnly, SameSite=strict cookies with token lifetimes
"""

import pytest
from fastapi import Response
from jose import jwt

from auth.models import Account, Role
from auth.tokens import (
    ACCESS,
    ACCESS_COOKIE,
    REFRESH,
    REFRESH_COOKIE,
    TokenExpired,
    TokenInvalid,
    TokenService,
    clear_auth_cookies,
    hash_password,
    set_auth_cookies,
    verify_password,
)


@pytest.fixture
def account() -> Account:
    return Account(id=7, username="alice", email="alice@x.com", hashed_password="x", role=Role.USER, verified=True)


class TestPasswords:
    def test_hash_then_verify(self):
        hashed = hash_password("Abc123!")
        assert hashed != "Abc123!"
        assert verify_password("Abc123!", hashed) is True
        assert verify_password("abc123!", hashed) is False

    def test_malformed_hash_returns_false(self):
        assert verify_password("Abc123!", "not-a-bcrypt-hash") is False


class TestTokenService:
    def test_pair_claims(self, tokens: TokenService, account: Account):
        pair = tokens.issue_pair(account)
        access = tokens.verify(pair.access_token, ACCESS)
        refresh = tokens.verify(pair.refresh_token, REFRESH)
        for claims in (access, refresh):
            assert claims["id"] == 7
            assert claims["sub"] == "7"
            assert claims["email"] == "alice@x.com"
            assert claims["role"] is Role.USER
        assert access["typ"] == ACCESS
        assert refresh["typ"] == REFRESH
        assert refresh["jti"] == pair.refresh_jti
        assert pair.access_expires_in == 3600
        assert pair.refresh_expires_in == 7 * 24 * 3600

    def test_access_token_rejected_as_refresh(self, tokens: TokenService, account: Account):
        pair = tokens.issue_pair(account)
        with pytest.raises(TokenInvalid):
            tokens.verify(pair.access_token, REFRESH)

    def test_refresh_token_rejected_as_access(self, tokens: TokenService, account: Account):
        pair = tokens.issue_pair(account)
        with pytest.raises(TokenInvalid):
            tokens.verify(pair.refresh_token, ACCESS)

    def test_typ_claim_checked_even_with_right_secret(self, tokens: TokenService, settings):
        forged = jwt.encode({"id": 1, "role": "admin", "typ": REFRESH}, settings.secret_key, algorithm="HS256")
        with pytest.raises(TokenInvalid):
            tokens.verify(forged, ACCESS)

    def test_expired_token(self, tokens: TokenService):
        token = tokens.issue({"id": 1, "role": Role.USER}, ACCESS, ttl=-10)
        with pytest.raises(TokenExpired) as exc_info:
            tokens.verify(token, ACCESS)
        assert exc_info.value.code == "token_expired"

    def test_tampered_token(self, tokens: TokenService, account: Account):
        token = tokens.issue_pair(account).access_token
        tampered = token[:-2] + ("AA" if not token.endswith("AA") else "BB")
        with pytest.raises(TokenInvalid):
            tokens.verify(tampered, ACCESS)

    def test_garbage_token(self, tokens: TokenService):
        with pytest.raises(TokenInvalid):
            tokens.verify("not.a.jwt", ACCESS)

    def test_unknown_role_is_invalid(self, tokens: TokenService):
        token = tokens.issue({"id": 1, "role": "overlord"}, ACCESS)
        with pytest.raises(TokenInvalid):
            tokens.verify(token, ACCESS)

    def test_issue_requires_id_and_role(self, tokens: TokenService):
        with pytest.raises(ValueError):
            tokens.issue({"email": "a@b.c"}, ACCESS)

    def test_refresh_jti_unique_per_pair(self, tokens: TokenService, account: Account):
        assert tokens.issue_pair(account).refresh_jti != tokens.issue_pair(account).refresh_jti


class TestCookies:
    def test_set_auth_cookies(self, tokens: TokenService, account: Account, settings):
        response = Response()
        pair = tokens.issue_pair(account)
        set_auth_cookies(response, pair, settings)
        headers = [v for k, v in response.raw_headers if k == b"set-cookie"]
        assert len(headers) == 2
        access_header = next(h.decode() for h in headers if h.startswith(ACCESS_COOKIE.encode()))
        refresh_header = next(h.decode() for h in headers if h.startswith(REFRESH_COOKIE.encode()))
        for header in (access_header, refresh_header):
            assert "HttpOnly" in header
            assert "SameSite=strict" in header
        assert "Max-Age=3600" in access_header
        assert f"Max-Age={7 * 24 * 3600}" in refresh_header

    def test_clear_auth_cookies(self):
        response = Response()
        clear_auth_cookies(response)
        headers = [v.decode() for k, v in response.raw_headers if k == b"set-cookie"]
        assert any(h.startswith(f"{ACCESS_COOKIE}=") and "Max-Age=0" in h for h in headers)
        assert any(h.startswith(f"{REFRESH_COOKIE}=") and "Max-Age=0" in h for h in headers)
