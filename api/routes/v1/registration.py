"""
api/routes/v1/registration.py -- Self-registration REST endpoints.

Routes:
  GET  /api/v1/registration/fields      -- form configuration (public)
  POST /api/v1/registration             -- register; mails the activation link
  GET  /api/v1/registration/activation  -- activate with ?userId=&activationToken=

All three are public: the caller is by definition someone without an account.
The service token used against the identity server never leaves the process.

Errors raised by the registration service (FormValidationError,
UserNameTakenError, InvalidAttributeError, SCIMError, MailSendError) are not
caught here. api/main.py maps them onto the shared error envelope.

Security:
  POST /registration is rate-limited per IP (REGISTRATION_RATE_LIMIT) to curb
  account-creation spam and user-name probing.
  Cache-Control: no-store on activation responses; the URL carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request, Response

from api.limiter import limiter
from api.models import RegistrationFieldsResponse, RegistrationRequest, UserSummary
from core.config import get_settings
from registration.service import RegistrationService

router = APIRouter()


def _registration_limit() -> str:
    return get_settings().registration_rate_limit


@router.get("/registration/fields", response_model=RegistrationFieldsResponse)
def registration_fields(request: Request) -> RegistrationFieldsResponse:
    """Return which fields the registration form accepts and the password policy."""
    service: RegistrationService = request.app.state.registration_service
    return RegistrationFieldsResponse(
        fields=service.all_allowed_fields,
        password_length=service.password_length,
        username_equals_email=service.username_equals_email,
        confirm_password_required=service.confirm_password_required,
    )


@router.post("/registration", response_model=UserSummary, status_code=201)
@limiter.limit(_registration_limit)
def register(request: Request, body: RegistrationRequest) -> UserSummary:
    """Create an inactive account and mail the activation link.

    The link points at GET /api/v1/registration/activation on this host. If
    the mail cannot be delivered the account still exists; it stays inactive
    and the scavenger expires its token.
    """
    service: RegistrationService = request.app.state.registration_service
    user = service.register(body.to_form())
    service.send_registration_email(user, str(request.url.replace(query="")))
    return UserSummary.from_scim(user)


@router.get("/registration/activation", response_model=UserSummary)
def activate(
    request: Request,
    response: Response,
    user_id: str = Query(default="", alias="userId", max_length=255),
    activation_token: str = Query(default="", alias="activationToken", max_length=255),
) -> UserSummary:
    """Activate the account identified by userId if activationToken matches."""
    service: RegistrationService = request.app.state.registration_service
    user = service.activate_user(user_id, activation_token)
    response.headers["Cache-Control"] = "no-store"
    return UserSummary.from_scim(user)
