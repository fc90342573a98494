"""
registration/service.py -- Self-registration and account activation.

Flow:
  1. register(form)                 -- validate, reject taken user names, create
                                       an inactive user carrying an activation token
  2. send_registration_email(user)  -- mail a link with userId + activationToken
  3. activate_user(id, token)       -- check the token, then delete it and set
                                       active=true in one PATCH

Tokens live in the internal SCIM extension (SCIM_EXTENSION_URN) as
"<token>:<issued_ms>". Expired tokens are deleted on sight here, and swept in
bulk by onetime.scavenger.

Security:
  The stored token is never put in an exception message, a log line or a
  response. A mismatch says "mismatch" and nothing more.

  The internal extension is always replaced wholesale on create, so a form
  field can never smuggle values into it.

Layer rule: no imports from api/ or web/. Errors are domain exceptions; the
API and web layers decide how they look on the wire.
"""

from __future__ import annotations

import logging
from typing import Any

from core.config import Settings
from core.helpers import create_link_for_email, get_locale
from mail.sender import Mailer
from onetime.token import OneTimeToken
from registration.fields import RegistrationFields
from scim.client import SCIMClient
from scim.resources import PatchBuilder, get_extension_field, primary_or_first_email, quote_filter_value

logger = logging.getLogger("selfadmin.registration")

_USER_ROLE = "USER"


class InvalidAttributeError(ValueError):
    """A request attribute is missing or wrong.

    key is a stable message key ("activation.exception", ...) that callers
    map to user-facing text.
    """

    def __init__(self, message: str, key: str) -> None:
        self.key = key
        super().__init__(message)


class ActivationTokenExpiredError(InvalidAttributeError):
    """The stored activation token is past its lifetime. It has been deleted."""

    def __init__(self) -> None:
        super().__init__("Activation token is expired", "activation.exception")


class UserNameTakenError(InvalidAttributeError):
    def __init__(self, user_name: str) -> None:
        super().__init__(f"The user name {user_name!r} is already taken.", "registration.exception.userNameTaken")


class RegistrationService:
    def __init__(self, settings: Settings, scim_client: SCIMClient, mailer: Mailer) -> None:
        self.scim_client = scim_client
        self.mailer = mailer
        self.from_address = settings.mail_from
        self.extension_urn = settings.scim_extension_urn
        self.activation_token_field = settings.activation_token_field
        self.activation_token_timeout = settings.activation_token_timeout
        self.default_locale = settings.default_locale
        self.fields = RegistrationFields.from_config(
            settings.form_fields,
            settings.form_extensions,
            username_equals_email=settings.username_equals_email,
            password_length=settings.password_length,
        )

    # ------------------------------------------------------------------
    # Form configuration
    # ------------------------------------------------------------------

    @property
    def all_allowed_fields(self) -> list[str]:
        return list(self.fields.all_allowed_fields)

    @property
    def password_length(self) -> int:
        return self.fields.password_length

    @property
    def username_equals_email(self) -> bool:
        return self.fields.username_equals_email

    @property
    def confirm_password_required(self) -> bool:
        return self.fields.confirm_password_required

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def is_username_taken(self, user_name: str) -> bool:
        result = self.scim_client.search_users(f"userName eq {quote_filter_value(user_name)}", count=1)
        return result.total_results != 0

    def save_registration_user(self, user: dict[str, Any]) -> dict[str, Any]:
        """Create `user` as an inactive USER with a fresh activation token."""
        registration_user = dict(user)
        schemas = list(registration_user.get("schemas") or [])
        if self.extension_urn not in schemas:
            schemas.append(self.extension_urn)
        registration_user["schemas"] = schemas
        registration_user[self.extension_urn] = {self.activation_token_field: str(OneTimeToken.generate())}
        registration_user["active"] = False
        roles = [r for r in registration_user.get("roles") or [] if r.get("value") != _USER_ROLE]
        registration_user["roles"] = [*roles, {"value": _USER_ROLE}]
        return self.scim_client.create_user(registration_user)

    def register(self, form: dict[str, Any]) -> dict[str, Any]:
        """Validate the submitted form and create the inactive user.

        Raises FormValidationError for invalid input and UserNameTakenError
        when the user name exists already.
        """
        values = self.fields.clean(form)
        user = self.fields.to_scim_user(values)
        if self.is_username_taken(user["userName"]):
            raise UserNameTakenError(user["userName"])
        created = self.save_registration_user(user)
        logger.info("Registered user %s (inactive)", created.get("id"))
        return created

    def send_registration_email(self, user: dict[str, Any], request_url: str) -> None:
        """Mail the activation link. request_url is the registration URL the form was posted to."""
        email = primary_or_first_email(user)
        if email is None:
            raise InvalidAttributeError(
                f"Could not register user. No email of user {user.get('userName')} found!",
                "registration.exception.noEmail",
            )

        stored = get_extension_field(user, self.extension_urn, self.activation_token_field)
        try:
            activation_token = OneTimeToken.from_string(stored)
        except ValueError as exc:
            raise InvalidAttributeError(
                f"User {user.get('id')} has no activation token.", "registration.exception.noToken"
            ) from exc

        registration_link = create_link_for_email(
            request_url.rstrip("/") + "/activation",
            user["id"],
            "activationToken",
            activation_token.token,
        )
        locale = get_locale(user.get("locale"), self.default_locale)
        self.mailer.render_and_send(
            "registration",
            self.from_address,
            email,
            locale,
            {"registrationLink": registration_link, "user": user},
        )

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def activate_user(self, user_id: str | None, activation_token: str | None) -> dict[str, Any]:
        """Activate the user if activation_token matches the stored one.

        An already active user is returned unchanged. An expired token is
        deleted before the error is raised.
        """
        if not user_id:
            raise InvalidAttributeError("Can't confirm the user. The userId is empty", "activation.exception")
        if not activation_token:
            raise InvalidAttributeError(
                f"Can't confirm the user {user_id}. The activation token is empty", "activation.exception"
            )

        user = self.scim_client.get_user(user_id)
        if user.get("active"):
            return user

        stored = get_extension_field(user, self.extension_urn, self.activation_token_field)
        if stored is None:
            raise InvalidAttributeError(f"No activation token stored for user {user_id}", "activation.exception")
        try:
            stored_token = OneTimeToken.from_string(stored)
        except ValueError as exc:
            raise InvalidAttributeError(
                f"Stored activation token of user {user_id} is unreadable", "activation.exception"
            ) from exc

        if stored_token.is_expired(self.activation_token_timeout):
            patch = PatchBuilder().delete_extension_field(self.extension_urn, self.activation_token_field).build()
            self.scim_client.update_user(user_id, patch)
            raise ActivationTokenExpiredError()

        if not stored_token.matches(activation_token):
            raise InvalidAttributeError(f"Activation token mismatch for user {user_id}", "activation.exception")

        patch = (
            PatchBuilder()
            .delete_extension_field(self.extension_urn, self.activation_token_field)
            .update_active(True)
            .build()
        )
        activated = self.scim_client.update_user(user_id, patch)
        logger.info("Activated user %s", user_id)
        return activated
