"""
api/main.py -- FastAPI application entry point for the note service.

Exposes registration, login, profile and note endpoints over HTTP.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost). Starlette wraps the most
recently added middleware outermost, so this is the reverse of the
registration order below:
  1. log_requests          -- one log line per request with latency
  2. sliding_refresh       -- X-New-Token when a bearer token is near expiry
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. CORSMiddleware        -- adds CORS headers for allowed browser origins
  5. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan builds every long-lived collaborator exactly once (stores, email
sender, Google verifier) and hangs it on app.state; route handlers pass them
into the workflow functions explicitly. Shutdown closes both stores.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, FieldErrorItem, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.notes import router as notes_router
from api.routes.v1.users import router as users_router
from auth.federated import build_identity_verifier
from auth.notifications import build_email_sender
from auth.store import AccountStore
from auth.tokens import issue_token, needs_refresh
from core.config import get_settings
from core.errors import AppError, ErrorKind
from notes.store import NoteStore

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("noteapp.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


def _store_kwargs(db_url: str) -> dict:
    # Empty URL means "use the store's own SQLite default".
    kwargs: dict = {"timeout": _settings.store_timeout_seconds}
    if db_url:
        kwargs["db_url"] = db_url
    return kwargs


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. Nothing here makes a network call: the Google key set is
    fetched lazily on the first /auth/google request, and SMTP connections
    are opened per message.
    """
    logger.info("Note service starting up")
    app.state.account_store = AccountStore(**_store_kwargs(_settings.accounts_db_url))
    app.state.note_store = NoteStore(**_store_kwargs(_settings.notes_db_url))
    logger.info("Stores initialized")
    app.state.email_sender = build_email_sender(_settings)
    app.state.identity_verifier = build_identity_verifier(_settings)

    yield

    app.state.note_store.close()
    app.state.account_store.close()
    logger.info("Note service shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Note Service API",
    description="Email/OTP and Google sign-in with personal note storage.",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() and @app.middleware("http") both push onto the front of
# the stack: each registration wraps everything registered before it.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["X-New-Token"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Sliding token refresh
#
# get_current_identity() leaves the verified identity on request.state. If
# the handler succeeded and that token expires within the refresh window, a
# freshly issued token rides back in X-New-Token. The original request is
# never delayed or failed by this; clients may ignore the header.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def sliding_refresh(request: Request, call_next):
    response = await call_next(request)
    identity = getattr(request.state, "identity", None)
    if _settings.sliding_refresh_enabled and identity is not None and response.status_code < 400:
        if needs_refresh(identity):
            response.headers["X-New-Token"] = issue_token(identity.account_id, identity.email)
            response.headers["Cache-Control"] = "no-store"
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time is captured around call_next so latency is
# reported on every response.
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
app.include_router(users_router, prefix="/api/v1", tags=["User"])
app.include_router(notes_router, prefix="/api/v1", tags=["Notes"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, detail: ErrorDetail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=detail).model_dump(by_alias=True, exclude_none=True),
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render a classified error raised anywhere below the routes.

    Dependency and internal kinds are server-side problems and log at ERROR;
    everything else is the client's doing and logs at INFO. Internal errors
    never echo their message outside debug mode.
    """
    if exc.kind in (ErrorKind.dependency, ErrorKind.internal):
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    else:
        logger.info("%s on %s %s", exc.code, request.method, request.url.path)

    message = exc.message
    if exc.kind is ErrorKind.internal and not _settings.debug:
        message = "An unexpected error occurred."
    return _error_response(
        exc.status_code,
        ErrorDetail(
            code=exc.code,
            message=message,
            errors=[FieldErrorItem.from_field_error(e) for e in exc.errors],
        ),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    slowapi stores this on the exception as exc.retry_after (int seconds).
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(
        429,
        ErrorDetail(
            code="RATE_LIMITED",
            message="Too many requests. Please try again later.",
            detail=str(exc),
        ),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 VALIDATION_ERROR when the body or query does not have the expected shape.

    loc is ("body", "email") or ("query", "limit"); the first element is
    dropped so the field name matches the JSON key the client sent.
    """
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append(FieldErrorItem(field=".".join(loc) or "body", message=str(err.get("msg", "Invalid value"))))
    return _error_response(
        400,
        ErrorDetail(code="VALIDATION_ERROR", message="Validation failed.", errors=errors),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for framework-raised HTTP exceptions (404 route, 405 method)."""
    return _error_response(
        exc.status_code,
        ErrorDetail(code=f"HTTP_{exc.status_code}", message=str(exc.detail)),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only. Outside debug mode the client
    receives a generic message and no detail, so store errors and stack
    frames never leak.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(
        500,
        ErrorDetail(
            code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            detail=f"{type(exc).__name__}: {exc}" if _settings.debug else None,
        ),
    )


# ---------------------------------------------------------------------------
# Health and index
#
# Defined directly in main.py (not in a router) so they are always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return liveness plus a database round-trip for both stores.

    503 with status "degraded" and database "error" when either store fails its ping.
    """
    components = {"app": "ok"}
    try:
        db_ok = request.app.state.account_store.ping() and request.app.state.note_store.ping()
    except Exception:
        logger.exception("Health check database ping failed")
        db_ok = False
    components["database"] = "ok" if db_ok else "error"
    body = HealthResponse(status="healthy" if db_ok else "degraded", version=API_VERSION, components=components)
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump(by_alias=True))


@app.get("/api", include_in_schema=False)
async def api_index() -> dict:
    """List the endpoint groups so a bare GET /api is self-describing."""
    return {
        "message": "Note Service API",
        "version": API_VERSION,
        "endpoints": {
            "auth": {
                "register": "POST /api/v1/auth/register",
                "verifyOtp": "POST /api/v1/auth/verify-otp",
                "resendOtp": "POST /api/v1/auth/resend-otp",
                "login": "POST /api/v1/auth/login",
                "google": "POST /api/v1/auth/google",
                "providers": "GET /api/v1/auth/providers",
            },
            "user": {
                "profile": "GET|PUT|PATCH /api/v1/user/profile",
                "password": "PUT /api/v1/user/password",
                "account": "DELETE /api/v1/user/account",
                "stats": "GET /api/v1/user/stats",
            },
            "notes": {
                "list": "GET /api/v1/notes",
                "search": "GET /api/v1/notes/search",
                "stats": "GET /api/v1/notes/stats",
                "create": "POST /api/v1/notes",
                "item": "GET|PUT|PATCH|DELETE /api/v1/notes/{id}",
                "deleteAll": "DELETE /api/v1/notes",
            },
            "health": "GET /api/v1/health",
        },
    }
