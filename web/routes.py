"""
web/routes.py -- Jinja2 template routes for the self-registration web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same registration service, same SCIM client) but render pages
instead of returning JSON, so they catch the service's domain errors
themselves rather than relying on the API exception handlers.

Routes:
  GET  /registration             -- registration form
  POST /registration             -- handle the form; success page or form with errors
  GET  /registration/activation  -- activation link target from the email

The activation link mailed from POST /registration is built from this route's
own URL, so users who registered through the web UI land on the HTML
activation page.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from core.config import get_settings
from mail.sender import MailSendError
from registration.fields import CONFIRM_PASSWORD, PASSWORD, FormValidationError, split_extension_field
from registration.service import (
    ActivationTokenExpiredError,
    InvalidAttributeError,
    RegistrationService,
    UserNameTakenError,
)
from scim.errors import ConflictError, ConnectionInitializationError, NoResultError, SCIMError

logger = logging.getLogger("selfadmin.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# Whitelist mapping from error keys to page text. Exception messages are
# NEVER passed to templates -- only the text from this dict is.
_ERROR_MESSAGES: dict[str, str] = {
    "activation.exception": "This activation link is not valid.",
    "activation_expired": "This activation link has expired. Please register again.",
    "not_found": "This activation link is not valid.",
    "registration.exception.noEmail": "We could not find an email address for your account.",
    "registration.exception.noToken": "Your registration could not be completed. Please try again.",
    "username_taken": "This user name is already taken.",
    "identity_server_unavailable": "The service is temporarily unavailable. Please try again later.",
    "identity_server_error": "The request could not be processed. Please try again later.",
    "mail_failed": "Your account was created, but we could not send the activation email.",
}

_FIELD_LABELS: dict[str, str] = {
    "userName": "User name",
    "email": "Email",
    "password": "Password",
    "confirmPassword": "Confirm password",
    "formattedName": "Full name",
    "familyName": "Last name",
    "givenName": "First name",
    "middleName": "Middle name",
    "honorificPrefix": "Title (prefix)",
    "honorificSuffix": "Title (suffix)",
    "displayName": "Display name",
    "nickName": "Nickname",
    "profileUrl": "Profile URL",
    "title": "Job title",
    "preferredLanguage": "Preferred language",
    "locale": "Locale",
    "timezone": "Time zone",
    "phoneNumber": "Phone number",
}

_INPUT_TYPES: dict[str, str] = {
    "email": "email",
    "password": "password",
    "confirmPassword": "password",
    "profileUrl": "url",
    "phoneNumber": "tel",
}


def _registration_limit() -> str:
    return get_settings().registration_rate_limit


def _form_fields(service: RegistrationService) -> list[dict[str, str]]:
    """Describe every allowed field for the template: name, label, input type."""
    fields = []
    for name in service.all_allowed_fields:
        if name in _FIELD_LABELS:
            label = _FIELD_LABELS[name]
        else:
            label = split_extension_field(name)[1]
        fields.append({"name": name, "label": label, "type": _INPUT_TYPES.get(name, "text")})
    return fields


def _render_form(
    request: Request,
    service: RegistrationService,
    values: Optional[dict] = None,
    errors: Optional[dict] = None,
    status_code: int = 200,
) -> HTMLResponse:
    # Passwords are never echoed back into the form.
    safe_values = {k: v for k, v in (values or {}).items() if k not in (PASSWORD, CONFIRM_PASSWORD)}
    return templates.TemplateResponse(
        request,
        "registration.html",
        {
            "fields": _form_fields(service),
            "values": safe_values,
            "errors": errors or {},
            "password_length": service.password_length,
        },
        status_code=status_code,
    )


def _render_error(request: Request, key: str, status_code: int) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "error.html",
        {"message": _ERROR_MESSAGES.get(key, "Something went wrong. Please try again later.")},
        status_code=status_code,
    )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.get("/registration", response_class=HTMLResponse)
def registration_form(request: Request) -> HTMLResponse:
    """Render the registration form for the configured fields."""
    service: RegistrationService = request.app.state.registration_service
    return _render_form(request, service)


@router.post("/registration", response_class=HTMLResponse)
@limiter.limit(_registration_limit)
async def registration_post(request: Request) -> HTMLResponse:
    """Create the account and mail the activation link.

    Validation problems re-render the form with per-field messages (400).
    """
    service: RegistrationService = request.app.state.registration_service
    form = {k: v for k, v in (await request.form()).items() if isinstance(v, str)}

    try:
        user = await run_in_threadpool(service.register, form)
    except FormValidationError as exc:
        return _render_form(request, service, form, exc.errors, status_code=400)
    except (UserNameTakenError, ConflictError):
        field = "email" if service.username_equals_email else "userName"
        errors = {field: _ERROR_MESSAGES["username_taken"]}
        return _render_form(request, service, form, errors, status_code=409)
    except ConnectionInitializationError as exc:
        logger.warning("Registration failed, identity server unavailable: %s", exc)
        return _render_error(request, "identity_server_unavailable", 503)
    except SCIMError as exc:
        logger.warning("Registration failed, identity server error: %s", exc)
        return _render_error(request, "identity_server_error", 502)

    try:
        await run_in_threadpool(service.send_registration_email, user, str(request.url.replace(query="")))
    except MailSendError as exc:
        logger.error("Activation mail for user %s not sent: %s", user.get("id"), exc)
        return _render_error(request, "mail_failed", 502)
    except InvalidAttributeError as exc:
        return _render_error(request, exc.key, 400)

    return templates.TemplateResponse(
        request,
        "registration_success.html",
        {"user_name": user.get("userName", "")},
    )


# ---------------------------------------------------------------------------
# Activation
# ---------------------------------------------------------------------------


@router.get("/registration/activation", response_class=HTMLResponse)
def activation(
    request: Request,
    user_id: str = Query(default="", alias="userId", max_length=255),
    activation_token: str = Query(default="", alias="activationToken", max_length=255),
):
    """Activate the account from the emailed link.

    Redirects to ACTIVATION_REDIRECT_URL when configured, otherwise renders a
    confirmation page.
    """
    service: RegistrationService = request.app.state.registration_service
    try:
        user = service.activate_user(user_id, activation_token)
    except ActivationTokenExpiredError:
        return _render_error(request, "activation_expired", 400)
    except InvalidAttributeError as exc:
        return _render_error(request, exc.key, 400)
    except NoResultError:
        return _render_error(request, "not_found", 404)
    except ConnectionInitializationError as exc:
        logger.warning("Activation failed, identity server unavailable: %s", exc)
        return _render_error(request, "identity_server_unavailable", 503)
    except SCIMError as exc:
        logger.warning("Activation failed, identity server error: %s", exc)
        return _render_error(request, "identity_server_error", 502)

    redirect_url = get_settings().activation_redirect_url
    if redirect_url:
        return RedirectResponse(redirect_url, status_code=303)

    response = templates.TemplateResponse(
        request,
        "activation_success.html",
        {"user_name": user.get("userName", "")},
    )
    response.headers["Cache-Control"] = "no-store"
    return response
