"""
registration/fields.py -- Which form fields a registration may carry, and
how they map onto a SCIM User.

The deployment decides which fields appear on the form (FORM_FIELDS,
FORM_EXTENSIONS). email and password are always there. userName is derived
from the email unless USERNAME_EQUALS_EMAIL=false, in which case it becomes a
form field of its own. confirmPassword is optional and, when configured, must
repeat the password.

Submitted values for fields that are not allowed are dropped, never passed on
to the identity server.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from scim.resources import USER_SCHEMA

USER_NAME = "userName"
EMAIL = "email"
PASSWORD = "password"
CONFIRM_PASSWORD = "confirmPassword"

# form field -> key inside the SCIM "name" complex attribute
_NAME_FIELDS = {
    "formattedName": "formatted",
    "familyName": "familyName",
    "givenName": "givenName",
    "middleName": "middleName",
    "honorificPrefix": "honorificPrefix",
    "honorificSuffix": "honorificSuffix",
}

# form fields copied 1:1 to top-level User attributes
_SIMPLE_FIELDS = (
    "displayName",
    "nickName",
    "profileUrl",
    "title",
    "preferredLanguage",
    "locale",
    "timezone",
)

SUPPORTED_FIELDS = frozenset(
    {USER_NAME, EMAIL, PASSWORD, CONFIRM_PASSWORD, "phoneNumber", *_NAME_FIELDS, *_SIMPLE_FIELDS}
)

# Deliberately loose: the identity server and the activation mail are the real check.
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class FormValidationError(ValueError):
    """One or more submitted fields are invalid. errors maps field -> message."""

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = errors
        super().__init__("Invalid registration: " + ", ".join(sorted(errors)))


def split_extension_field(entry: str) -> tuple[str, str]:
    """Split "<urn>:<field>" at the last colon."""
    urn, _, name = entry.rpartition(":")
    if not urn or not name:
        raise ValueError(f"Extension form field must look like '<urn>:<field>', got {entry!r}")
    return urn, name


@dataclass
class RegistrationFields:
    """Allowed-field configuration computed once from settings."""

    allowed_fields: list[str]
    extension_fields: list[str] = field(default_factory=list)
    username_equals_email: bool = True
    password_length: int = 8
    confirm_password_required: bool = False

    @classmethod
    def from_config(
        cls,
        form_fields: list[str],
        form_extensions: list[str],
        username_equals_email: bool = True,
        password_length: int = 8,
    ) -> RegistrationFields:
        allowed = [f.strip() for f in form_fields if f.strip()]
        if EMAIL not in allowed:
            allowed.append(EMAIL)
        if PASSWORD not in allowed:
            allowed.append(PASSWORD)
        confirm_password_required = CONFIRM_PASSWORD in allowed

        if not username_equals_email and USER_NAME not in allowed:
            allowed.append(USER_NAME)
        elif username_equals_email and USER_NAME in allowed:
            allowed.remove(USER_NAME)

        unknown = [f for f in allowed if f not in SUPPORTED_FIELDS]
        if unknown:
            raise ValueError(f"Unsupported registration form field(s): {', '.join(unknown)}")

        extensions = [e.strip() for e in form_extensions if e.strip()]
        for entry in extensions:
            split_extension_field(entry)

        return cls(
            allowed_fields=allowed,
            extension_fields=extensions,
            username_equals_email=username_equals_email,
            password_length=password_length,
            confirm_password_required=confirm_password_required,
        )

    @property
    def all_allowed_fields(self) -> list[str]:
        return [*self.allowed_fields, *self.extension_fields]

    def clean(self, form: dict[str, Any]) -> dict[str, str]:
        """Validate submitted values and return only the allowed, non-empty ones.

        Raises FormValidationError listing every problem at once.
        """
        allowed = set(self.all_allowed_fields)
        values = {
            k: str(v).strip() if k not in (PASSWORD, CONFIRM_PASSWORD) else str(v)
            for k, v in form.items()
            if k in allowed and v is not None and str(v) != ""
        }
        errors: dict[str, str] = {}

        email = values.get(EMAIL, "")
        if not email:
            errors[EMAIL] = "Email is required."
        elif not _EMAIL_RE.match(email):
            errors[EMAIL] = "Email is not a valid address."

        password = values.get(PASSWORD, "")
        if len(password) < self.password_length:
            errors[PASSWORD] = f"Password must be at least {self.password_length} characters."

        if self.confirm_password_required and values.get(CONFIRM_PASSWORD, "") != password:
            errors[CONFIRM_PASSWORD] = "Passwords do not match."

        if self.username_equals_email:
            if email:
                values[USER_NAME] = email
        elif not values.get(USER_NAME):
            errors[USER_NAME] = "User name is required."

        if errors:
            raise FormValidationError(errors)
        return values

    def to_scim_user(self, values: dict[str, str]) -> dict[str, Any]:
        """Map cleaned form values onto a SCIM User resource."""
        user: dict[str, Any] = {"schemas": [USER_SCHEMA], USER_NAME: values[USER_NAME]}
        user["emails"] = [{"value": values[EMAIL], "primary": True}]
        user[PASSWORD] = values[PASSWORD]

        name = {scim_key: values[form_key] for form_key, scim_key in _NAME_FIELDS.items() if form_key in values}
        if name:
            user["name"] = name
        for key in _SIMPLE_FIELDS:
            if key in values:
                user[key] = values[key]
        if "phoneNumber" in values:
            user["phoneNumbers"] = [{"value": values["phoneNumber"], "primary": True}]

        for entry in self.extension_fields:
            if entry not in values:
                continue
            urn, ext_field = split_extension_field(entry)
            user.setdefault(urn, {})[ext_field] = values[entry]
            if urn not in user["schemas"]:
                user["schemas"].append(urn)
        return user
