"""
tests/conftest.py -- Shared test fixtures for PeopleHub unit and integration tests.

This module provides:
  - RecordingNotifier / FailingNotifier: Notifier doubles (no SMTP traffic)
  - settings, account_store, hr_store, tokens, notifier, auth_service:
    fresh in-memory building blocks for unit tests
  - make_account(): insert an account with a known password and role
  - _make_test_stores() / _patch_lifespan(): wire isolated stores into app.state
  - api_client: TestClient with an admin bearer token for integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient because it runs route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
Unit-test fixtures call services directly on one thread, so :memory: is fine.

DEBUG, RATE_LIMIT_ENABLED and ALLOWED_HOSTS must be set before any api/auth/core
import: get_settings() is cached on first call and api.main reads it at import.
"""

from __future__ import annotations

import asyncio
import os
import threading
from collections.abc import Generator
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

# CRITICAL: set before any project import (see module docstring).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost", "127.0.0.1"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.guard import AuthorizationGuard
from auth.models import Account, Role
from auth.notifier import NotifierError, TemplateKind
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import TokenService, hash_password
from core.config import Settings, get_settings
from hr.dashboard import DashboardService
from hr.employees import EmployeeService
from hr.projects import ProjectService
from hr.store import HRStore

PASSWORD = "Abc123!"


# ---------------------------------------------------------------------------
# Notifier doubles
# ---------------------------------------------------------------------------


class RecordingNotifier:
    """Captures every send so tests can read the code that was "emailed"."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self._lock = threading.Lock()

    def send(self, to_email: str, username: str, code: str, kind: TemplateKind) -> None:
        with self._lock:
            self.sent.append({"to": to_email, "username": username, "code": code, "kind": TemplateKind(kind)})

    def last_code(self, email: str, kind: TemplateKind) -> str:
        for message in reversed(self.sent):
            if message["to"] == email and message["kind"] is kind:
                return message["code"]
        raise AssertionError(f"no {kind.value} message sent to {email}")


class FailingNotifier:
    """Every send fails the way an unreachable SMTP relay would."""

    def __init__(self) -> None:
        self.attempts = 0

    def send(self, to_email: str, username: str, code: str, kind: TemplateKind) -> None:
        self.attempts += 1
        raise NotifierError("SMTP relay unreachable")


# ---------------------------------------------------------------------------
# Unit-test building blocks
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(debug=True, rate_limit_enabled=False)


@pytest.fixture
def account_store() -> Generator[AccountStore, None, None]:
    store = AccountStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def hr_store() -> Generator[HRStore, None, None]:
    store = HRStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def tokens(settings: Settings) -> TokenService:
    return TokenService(settings)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def auth_service(account_store, tokens, notifier, settings) -> Generator[AuthService, None, None]:
    """AuthService whose fire-and-forget sends run on a single worker.

    close() drains the worker, so tests call auth_service.close() (or
    _drain) before asserting on background sends.
    """
    service = AuthService(account_store, tokens, notifier, settings, executor=ThreadPoolExecutor(max_workers=1))
    yield service
    service.close()


@pytest.fixture
def guard(account_store, tokens, auth_service) -> AuthorizationGuard:
    return AuthorizationGuard(account_store, tokens, auth_service)


@pytest.fixture
def employee_service(hr_store, account_store) -> EmployeeService:
    return EmployeeService(hr_store, account_store)


@pytest.fixture
def project_service(hr_store, account_store) -> ProjectService:
    return ProjectService(hr_store, account_store)


@pytest.fixture
def dashboard_service(hr_store) -> DashboardService:
    return DashboardService(hr_store)


def make_account(
    store: AccountStore,
    email: str,
    role: Role = Role.USER,
    verified: bool = True,
    username: str | None = None,
    password: str = PASSWORD,
) -> Account:
    """Insert an account directly and return it with its id set."""
    account = Account(
        username=username or email.split("@")[0],
        email=email,
        hashed_password=hash_password(password),
        role=role,
        verified=verified,
    )
    account.id = store.create_account(account)
    return account


def drain(service: AuthService) -> None:
    """Wait for every queued fire-and-forget send to finish."""
    service._executor.submit(lambda: None).result(timeout=5)


# ---------------------------------------------------------------------------
# Integration wiring
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[AccountStore, HRStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'health').
    """
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    hr_url = f"sqlite:///file:test_hr_{db_suffix}?mode=memory&cache=shared&uri=true"
    return AccountStore(db_url=auth_url), HRStore(db_url=hr_url)


def _patch_lifespan(account_store: AccountStore, hr_store: HRStore, notifier):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores and a notifier double into app.state so
    TestClient routes see isolated test DBs and never open an SMTP
    connection. The maintenance task is a long-sleeping coroutine so
    shutdown has a real asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        tokens = TokenService(settings)
        app.state.settings = settings
        app.state.account_store = account_store
        app.state.hr_store = hr_store
        app.state.notifier = notifier
        app.state.auth = AuthService(account_store, tokens, notifier, settings)
        app.state.guard = AuthorizationGuard(account_store, tokens, app.state.auth)
        app.state.employees = EmployeeService(hr_store, account_store, settings.min_password_length)
        app.state.projects = ProjectService(hr_store, account_store)
        app.state.dashboard = DashboardService(hr_store)
        app.state.maintenance_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.maintenance_task.cancel()
        app.state.auth.close()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, admin_id) for API integration tests.

    The admin account is created before the client starts; token is a
    long-lived access token for Authorization headers. The notifier double
    is reachable as client.app.state.notifier.
    """
    account_store, hr_store = _make_test_stores("api")
    admin = make_account(account_store, "admin@peoplehub.test", role=Role.ADMIN, username="testadmin")
    token = TokenService(get_settings()).issue_pair(admin).access_token

    app.router.lifespan_context = _patch_lifespan(account_store, hr_store, RecordingNotifier())

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin.id

    hr_store.close()
    account_store.close()
