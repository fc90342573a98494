"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the self-administration add-on happen
here. No module should call os.getenv() or os.environ.get() directly --
import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. client_secret -> CLIENT_SECRET). Type coercion and validation are
      built in.

  NoDecode list fields: FORM_FIELDS, FORM_EXTENSIONS and ALLOWED_HOSTS are
      written as comma-separated strings in the environment, not JSON. The
      field validators split them.

Duration fields accept anything pydantic accepts for a timedelta (seconds,
ISO 8601 "P1D") plus the "<n><unit>" shorthand ("24h", "30m", "500ms").

Layer rule: core/ is the kernel. This module may not import from api/, web/,
scim/, onetime/, registration/, or mail/.
"""

import logging
from datetime import timedelta
from functools import lru_cache
from typing import Annotated

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from core.helpers import parse_duration

logger = logging.getLogger("selfadmin.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    allowed_hosts: Annotated[list[str], NoDecode] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Identity server (SCIM + OAuth2 client credentials)
    # ------------------------------------------------------------------

    scim_base_url: str = "http://localhost:8080/scim/v2"
    token_url: str = "http://localhost:8080/oauth/token"
    client_id: str = "addon-self-administration-client"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either warns (debug) or refuses to start.
    client_secret: str = ""
    client_scope: str = "ADMIN"
    http_timeout: int = 10

    # ------------------------------------------------------------------
    # Internal SCIM extension holding the one-time tokens
    # ------------------------------------------------------------------

    scim_extension_urn: str = "urn:org.osiam:scim:extensions:addon-self-administration"
    activation_token_field: str = "activationToken"
    one_time_password_field: str = "oneTimePassword"
    confirmation_token_field: str = "emailConfirmToken"
    temp_email_field: str = "tempMail"

    activation_token_timeout: timedelta = timedelta(hours=24)
    one_time_password_timeout: timedelta = timedelta(hours=24)
    confirmation_token_timeout: timedelta = timedelta(hours=24)

    # ------------------------------------------------------------------
    # Scavenger
    # ------------------------------------------------------------------

    scavenger_enabled: bool = True
    scavenger_start_delay: timedelta = timedelta(minutes=1)

    # ------------------------------------------------------------------
    # Registration form
    # ------------------------------------------------------------------

    form_fields: Annotated[list[str], NoDecode] = []
    form_extensions: Annotated[list[str], NoDecode] = []
    username_equals_email: bool = True
    password_length: int = 8
    activation_redirect_url: str = ""
    registration_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Mail
    # ------------------------------------------------------------------

    mail_from: str = "noreply@localhost"
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_starttls: bool = False
    mail_templates_dir: str = ""
    default_locale: str = "en"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("allowed_hosts", "form_fields", "form_extensions", mode="before")
    @classmethod
    def split_comma_list(cls, value):
        """Accept "a, b, c" from the environment as well as real lists."""
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator(
        "activation_token_timeout",
        "one_time_password_timeout",
        "confirmation_token_timeout",
        "scavenger_start_delay",
        mode="before",
    )
    @classmethod
    def parse_shorthand_duration(cls, value):
        """Turn "24h" style values into timedelta; leave everything else to pydantic."""
        if isinstance(value, str):
            try:
                return parse_duration(value)
            except ValueError:
                return value
        return value

    @model_validator(mode="after")
    def validate_client_secret(self) -> "Settings":
        """Refuse to start in production without identity server credentials.

        Dev mode (DEBUG=true): log a warning. Calls to the identity server
            will fail with a connection error until CLIENT_SECRET is set.

        Production mode (DEBUG=false or not set): raise. Every registration,
            activation and scavenger run needs a service token.
        """
        if not self.client_secret:
            if self.debug:
                logger.warning("CLIENT_SECRET is not set. Identity server calls will fail to authenticate.")
            else:
                raise ValueError(
                    "CLIENT_SECRET is required in production mode. "
                    "Set CLIENT_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if self.password_length < 1:
            raise ValueError("PASSWORD_LENGTH must be at least 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
