"""
api/main.py -- FastAPI application entry point for the self-administration add-on.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- default limits; per-route limits run in @limiter.limit

Lifespan handles startup (identity server client, mailer, registration
service, scavenger loops) and shutdown (cancel scavengers, close HTTP
sessions) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.registration import router as registration_router
from core.config import Settings, get_settings
from mail.renderer import EmailRenderer
from mail.sender import Mailer, MailSendError, SMTPSender
from onetime.scavenger import build_scavengers, run_periodically
from registration.fields import FormValidationError
from registration.service import InvalidAttributeError, RegistrationService, UserNameTakenError
from scim.client import SCIMClient
from scim.errors import ConflictError, ConnectionInitializationError, NoResultError, SCIMError, SCIMRequestError
from scim.oauth import ServiceTokenProvider

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("selfadmin.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def build_scim_client(settings: Settings) -> SCIMClient:
    """Create the SCIM client with its service token provider.

    Shared by the lifespan and the CLI so both talk to the identity server
    the same way.
    """
    token_provider = ServiceTokenProvider(
        settings.token_url,
        settings.client_id,
        settings.client_secret,
        scope=settings.client_scope,
        timeout=settings.http_timeout,
    )
    return SCIMClient(settings.scim_base_url, token_provider, timeout=settings.http_timeout)


def build_mailer(settings: Settings) -> Mailer:
    sender = SMTPSender(
        settings.smtp_host,
        settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        starttls=settings.smtp_starttls,
        timeout=settings.http_timeout,
    )
    return Mailer(EmailRenderer(settings.mail_templates_dir or None), sender)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. SCIM client first -- the registration service and scavengers use it.
      2. Registration service second -- needs the client and the mailer.
      3. Scavenger loops last -- they start sweeping after SCAVENGER_START_DELAY.
    """
    settings = get_settings()
    logger.info("Self-administration API starting up (identity server: %s)", settings.scim_base_url)
    app.state.settings = settings
    app.state.scim_client = build_scim_client(settings)
    app.state.token_provider = app.state.scim_client.token_provider
    app.state.mailer = build_mailer(settings)
    app.state.registration_service = RegistrationService(settings, app.state.scim_client, app.state.mailer)
    logger.info("Registration form fields: %s", ", ".join(app.state.registration_service.all_allowed_fields))

    app.state.scavenger_tasks = []
    if settings.scavenger_enabled:
        for task in build_scavengers(settings, app.state.scim_client):
            app.state.scavenger_tasks.append(
                asyncio.create_task(run_periodically(task, settings.scavenger_start_delay, task.timeout))
            )
        logger.info("Started %d scavenger(s)", len(app.state.scavenger_tasks))

    yield

    # Shutdown
    for task in app.state.scavenger_tasks:
        task.cancel()
    # Let the loops unwind before their SCIM session is closed.
    await asyncio.gather(*app.state.scavenger_tasks, return_exceptions=True)
    app.state.scim_client.close()
    app.state.token_provider.close()
    logger.info("Self-administration API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Self-Administration API",
    description="Self-service registration and activation in front of a SCIM 2.0 identity server.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=get_settings().allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Query strings are left out of the log line on purpose: activation links
# carry the token in the query.
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

app.include_router(registration_router, prefix="/api/v1", tags=["Registration"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After is the length of the exceeded window ("10/minute" -> 60).
    """
    retry_after = exc.limit.limit.get_expiry()
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(FormValidationError)
async def form_validation_handler(request: Request, exc: FormValidationError) -> JSONResponse:
    """Return 400 listing every invalid registration field."""
    return _error(400, "invalid_registration", "Registration form is invalid.", exc.errors)


@app.exception_handler(UserNameTakenError)
async def username_taken_handler(request: Request, exc: UserNameTakenError) -> JSONResponse:
    return _error(409, "username_taken", "This user name is already taken.")


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    """The identity server refused a duplicate created between our check and the create."""
    return _error(409, "username_taken", "This user name is already taken.")


@app.exception_handler(InvalidAttributeError)
async def invalid_attribute_handler(request: Request, exc: InvalidAttributeError) -> JSONResponse:
    """Return 400 with the error key as code.

    The message is the service's own text; it never contains a stored token.
    """
    return _error(400, exc.key, str(exc))


@app.exception_handler(NoResultError)
async def no_result_handler(request: Request, exc: NoResultError) -> JSONResponse:
    return _error(404, "not_found", "User not found.")


@app.exception_handler(SCIMError)
async def scim_error_handler(request: Request, exc: SCIMError) -> JSONResponse:
    """Identity server unreachable (503) or answered with an unexpected error (502)."""
    if isinstance(exc, ConnectionInitializationError):
        logger.warning("Identity server unavailable on %s %s: %s", request.method, request.url.path, exc)
        return _error(503, "identity_server_unavailable", "The identity server is currently unavailable.")
    status = exc.status_code if isinstance(exc, SCIMRequestError) else None
    logger.warning("Identity server error on %s %s (status=%s): %s", request.method, request.url.path, status, exc)
    return _error(502, "identity_server_error", "The identity server rejected the request.")


@app.exception_handler(MailSendError)
async def mail_error_handler(request: Request, exc: MailSendError) -> JSONResponse:
    logger.error("Mail delivery failed on %s %s: %s", request.method, request.url.path, exc)
    return _error(502, "mail_failed", "The activation email could not be sent.")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=__version__)
