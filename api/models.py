"""
API request and response models for the self-administration REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
Users themselves stay plain SCIM dicts inside the service layer; route
handlers map them onto the response models here.

Field names use the SCIM / form spelling on the wire (camelCase aliases) so
the JSON API and the HTML form accept the same keys.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from scim.resources import primary_or_first_email

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegistrationRequest(BaseModel):
    """Request body for POST /api/v1/registration.

    Every field is optional at this layer. Which fields are required or even
    allowed depends on the deployment's form configuration, and is enforced
    by RegistrationFields.clean() so the JSON API and HTML form share one
    rule set.

    extensions maps "<urn>:<field>" (as listed in FORM_EXTENSIONS) to a value.
    """

    # Passwords are passed on verbatim; RegistrationFields.clean() strips the rest.
    model_config = ConfigDict(populate_by_name=True)

    user_name: Optional[str] = Field(default=None, alias="userName", max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    # max_length keeps inputs well clear of what any sane identity server accepts.
    password: Optional[str] = Field(default=None, max_length=255)
    confirm_password: Optional[str] = Field(default=None, alias="confirmPassword", max_length=255)
    formatted_name: Optional[str] = Field(default=None, alias="formattedName", max_length=255)
    family_name: Optional[str] = Field(default=None, alias="familyName", max_length=255)
    given_name: Optional[str] = Field(default=None, alias="givenName", max_length=255)
    middle_name: Optional[str] = Field(default=None, alias="middleName", max_length=255)
    honorific_prefix: Optional[str] = Field(default=None, alias="honorificPrefix", max_length=50)
    honorific_suffix: Optional[str] = Field(default=None, alias="honorificSuffix", max_length=50)
    display_name: Optional[str] = Field(default=None, alias="displayName", max_length=255)
    nick_name: Optional[str] = Field(default=None, alias="nickName", max_length=255)
    profile_url: Optional[str] = Field(default=None, alias="profileUrl", max_length=1024)
    title: Optional[str] = Field(default=None, max_length=255)
    preferred_language: Optional[str] = Field(default=None, alias="preferredLanguage", max_length=35)
    locale: Optional[str] = Field(default=None, max_length=35)
    timezone: Optional[str] = Field(default=None, max_length=64)
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber", max_length=64)
    extensions: dict[str, str] = Field(default_factory=dict, max_length=50)

    def to_form(self) -> dict[str, str]:
        """Flatten into the form-field dict RegistrationService.register() expects."""
        form = self.model_dump(by_alias=True, exclude_none=True, exclude={"extensions"})
        form.update(self.extensions)
        return form


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class RegistrationFieldsResponse(BaseModel):
    """Response for GET /api/v1/registration/fields -- drives client-side forms."""

    model_config = ConfigDict(frozen=True)

    fields: list[str]
    password_length: int
    username_equals_email: bool
    confirm_password_required: bool


class UserSummary(BaseModel):
    """Public view of a registered user. Never includes the extension or password."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_name: str
    active: bool
    email: Optional[str] = None

    @classmethod
    def from_scim(cls, user: dict[str, Any]) -> "UserSummary":
        return cls(
            id=str(user.get("id", "")),
            user_name=str(user.get("userName", "")),
            active=bool(user.get("active", False)),
            email=primary_or_first_email(user),
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
