"""
api/main.py -- FastAPI application entry point for PeopleHub.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for the admin frontend origin
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (stores, services, guard, leave-accrual task) and
shutdown (cancel task, drain queued emails, close DB connections)
symmetrically.

Every service is created once here and stored on app.state; route handlers
fetch them from request.app.state. Nothing below this module constructs a
store or reads the environment.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.dashboard import router as dashboard_router
from api.routes.v1.employees import router as employees_router
from api.routes.v1.projects import router as projects_router
from auth.guard import AuthorizationGuard, get_current_principal
from auth.models import Principal
from auth.notifier import SmtpNotifier
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import TokenService
from core.config import get_settings
from core.errors import PeopleHubError
from hr.dashboard import DashboardService
from hr.employees import EmployeeService
from hr.projects import ProjectService
from hr.store import HRStore

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("peoplehub.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background maintenance task
# ---------------------------------------------------------------------------


async def _maintenance_loop(app: FastAPI) -> None:
    """Apply monthly leave accrual on the 1st and purge expired sessions.

    Wakes every leave_accrual_interval_seconds (daily by default). Accrual is
    recorded per month in the HR store, so a restart on the 1st does not
    apply it twice. CancelledError from task.cancel() during shutdown
    propagates out of asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        today = datetime.now(timezone.utc).date()
        try:
            if today.day == 1:
                app.state.employees.accrue_monthly_leave(today)
            purged = app.state.account_store.purge_expired_sessions()
            if purged:
                logger.info("Purged %d expired session(s)", purged)
        except SQLAlchemyError:
            logger.exception("Maintenance run failed; retrying next interval")
        await asyncio.sleep(app.state.settings.leave_accrual_interval_seconds)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Stores first -- every service depends on them.
      2. Auth core second -- the guard needs AuthService for silent refresh.
      3. HR services third -- they use the account store for membership.
      4. Maintenance task last -- references app.state.employees.
    """
    # Startup
    logger.info("PeopleHub API starting up")
    app.state.settings = settings
    app.state.account_store = AccountStore(settings.auth_db_url)
    app.state.hr_store = HRStore(settings.hr_db_url)
    logger.info("Stores initialized")

    tokens = TokenService(settings)
    notifier = SmtpNotifier(settings)
    if not settings.smtp_host:
        logger.warning("SMTP_HOST not set -- verification and reset emails will not be delivered")
    app.state.auth = AuthService(app.state.account_store, tokens, notifier, settings)
    app.state.guard = AuthorizationGuard(app.state.account_store, tokens, app.state.auth)

    app.state.employees = EmployeeService(app.state.hr_store, app.state.account_store, settings.min_password_length)
    app.state.projects = ProjectService(app.state.hr_store, app.state.account_store)
    app.state.dashboard = DashboardService(app.state.hr_store)
    logger.info("Services initialized (%d account(s))", app.state.account_store.count_accounts())

    app.state.maintenance_task = asyncio.create_task(_maintenance_loop(app))

    yield

    # Shutdown
    app.state.maintenance_task.cancel()
    app.state.auth.close()
    app.state.hr_store.close()
    app.state.account_store.close()
    logger.info("PeopleHub API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="PeopleHub API",
    description="HR administration backend: accounts, employees, projects and dashboard statistics.",
    version=API_VERSION,
    lifespan=lifespan,
    # Disable built-in /docs and /redoc so we can add auth protection.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.allowed_hosts,
)

# allow_credentials is required for the browser to send the auth cookies.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Query strings are not logged: they never carry secrets today, but paths
# are enough to trace a request.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(employees_router, prefix="/api/v1", tags=["Employees"])
app.include_router(projects_router, prefix="/api/v1", tags=["Projects"])
app.include_router(dashboard_router, prefix="/api/v1", tags=["Dashboard"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(principal: Principal = Depends(get_current_principal)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="PeopleHub API")


@app.get("/redoc", include_in_schema=False)
async def redoc(principal: Principal = Depends(get_current_principal)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="PeopleHub API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, errors: list[str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, errors=errors)).model_dump(),
    )


@app.exception_handler(PeopleHubError)
async def peoplehub_error_handler(request: Request, exc: PeopleHubError) -> JSONResponse:
    """Map a typed service error to its HTTP status. No logic beyond the mapping."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return _error_response(exc.status_code, exc.code, exc.message, exc.errors)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 listing each body/query problem as "field: message"."""
    errors = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())[1:]) or "body"
        errors.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return _error_response(400, "validation_error", "Request validation failed.", errors)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and the state of each backing component."""
    state = request.app.state
    components: dict[str, str] = {}
    for name, probe in (("auth_store", state.account_store.count_accounts), ("hr_store", state.hr_store.count_employees)):
        try:
            probe()
            components[name] = "ok"
        except SQLAlchemyError:
            logger.exception("Health probe failed for %s", name)
            components[name] = "error"
    components["mail"] = "configured" if state.settings.smtp_host else "disabled"
    status = "ok" if all(v != "error" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components=components)
