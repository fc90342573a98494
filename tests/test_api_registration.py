"""
tests/test_api_registration.py -- Integration tests for the registration REST API.

These tests exercise the full stack: FastAPI routing -> request model ->
RegistrationService -> FakeSCIMClient / FakeMailer -> response model and the
shared error envelope from api/main.py.

Coverage:
  - GET /api/v1/registration/fields
  - POST /api/v1/registration: 201, 400 invalid form, 409 taken, 422 oversized,
    429 rate limited, 502 mail failure, 503 identity server down; passwords
    reach the identity server unmodified
  - GET /api/v1/registration/activation: 200 + no-store, 400 mismatch/expired/empty,
    404 unknown user

Fixtures used (from conftest.py):
  - api_client: (client, scim, mailer) -- module-scoped TestClient with fakes
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest

from api.limiter import limiter
from core.config import get_settings
from scim.errors import ConnectionInitializationError

REGISTER = "/api/v1/registration"
ACTIVATE = "/api/v1/registration/activation"


def _register(client, email: str):
    return client.post(REGISTER, json={"email": email, "password": "secret123"})


def _activation_params(mailer, email: str) -> dict[str, str]:
    mail = next(m for m in reversed(mailer.sent) if m["to"] == email)
    query = parse_qs(urlsplit(mail["variables"]["registrationLink"]).query)
    return {"userId": query["userId"][0], "activationToken": query["activationToken"][0]}


class TestRegistrationFields:
    def test_default_form_configuration(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/v1/registration/fields")
        assert resp.status_code == 200
        assert resp.json() == {
            "fields": ["email", "password"],
            "password_length": 8,
            "username_equals_email": True,
            "confirm_password_required": False,
        }


class TestRegister:
    def test_register_creates_inactive_user_and_mails_link(self, api_client) -> None:
        client, scim, mailer = api_client
        resp = _register(client, "api-alice@example.com")

        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["user_name"] == "api-alice@example.com"
        assert data["email"] == "api-alice@example.com"
        assert data["active"] is False
        assert "password" not in data
        assert data["id"] in scim.users

        link = mailer.sent[-1]["variables"]["registrationLink"]
        assert link.startswith("http://testserver/api/v1/registration/activation?userId=")

    def test_username_taken(self, api_client) -> None:
        client, _, _ = api_client
        assert _register(client, "api-dup@example.com").status_code == 201
        resp = _register(client, "api-dup@example.com")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "username_taken"

    def test_invalid_form_lists_fields(self, api_client) -> None:
        client, scim, _ = api_client
        created_before = len(scim.created)
        resp = client.post(REGISTER, json={"email": "nope", "password": "short"})
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "invalid_registration"
        assert set(error["detail"]) == {"email", "password"}
        assert len(scim.created) == created_before

    def test_oversized_field_is_422(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post(REGISTER, json={"email": "a" * 300 + "@example.com", "password": "secret123"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_mail_failure_is_502_and_user_stays_inactive(self, api_client) -> None:
        client, scim, mailer = api_client
        mailer.fail = True
        try:
            resp = _register(client, "api-nomail@example.com")
        finally:
            mailer.fail = False
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "mail_failed"
        [user] = [u for u in scim.users.values() if u["userName"] == "api-nomail@example.com"]
        assert user["active"] is False

    def test_identity_server_down_is_503(self, api_client, monkeypatch) -> None:
        client, scim, _ = api_client

        def _down(*args, **kwargs):
            raise ConnectionInitializationError("Could not reach identity server at http://idp: refused")

        monkeypatch.setattr(scim, "search_users", _down)
        resp = _register(client, "api-down@example.com")
        assert resp.status_code == 503
        error = resp.json()["error"]
        assert error["code"] == "identity_server_unavailable"
        assert "idp" not in error["message"]

    def test_password_reaches_identity_server_unmodified(self, api_client) -> None:
        client, scim, _ = api_client
        resp = client.post(
            REGISTER,
            json={"email": "  api-spaces@example.com ", "password": "  secret123  "},
        )
        assert resp.status_code == 201, resp.text
        assert scim.created[-1]["password"] == "  secret123  "
        assert scim.created[-1]["userName"] == "api-spaces@example.com"

    def test_registration_is_rate_limited(self, api_client, monkeypatch) -> None:
        client, _, _ = api_client
        monkeypatch.setattr(get_settings(), "registration_rate_limit", "2/hour")
        limiter.reset()
        try:
            statuses = [_register(client, f"api-limit-{i}@example.com").status_code for i in range(4)]
            resp = _register(client, "api-limit-last@example.com")
        finally:
            limiter.reset()

        assert statuses == [201, 201, 429, 429]
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
        # Retry-After covers the whole configured window.
        assert resp.headers["Retry-After"] == "3600"


class TestActivation:
    def test_activation_happy_path(self, api_client) -> None:
        client, scim, mailer = api_client
        _register(client, "api-activate@example.com")
        params = _activation_params(mailer, "api-activate@example.com")

        resp = client.get(ACTIVATE, params=params)
        assert resp.status_code == 200, resp.text
        assert resp.json()["active"] is True
        assert resp.headers["Cache-Control"] == "no-store"
        assert scim.users[params["userId"]]["active"] is True

    def test_wrong_token(self, api_client) -> None:
        client, scim, mailer = api_client
        _register(client, "api-wrong@example.com")
        params = _activation_params(mailer, "api-wrong@example.com")
        real_token = params["activationToken"]

        resp = client.get(ACTIVATE, params={"userId": params["userId"], "activationToken": "guess"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "activation.exception"
        assert real_token not in resp.text
        assert scim.users[params["userId"]]["active"] is False

    def test_expired_token(self, api_client) -> None:
        client, scim, mailer = api_client
        _register(client, "api-expired@example.com")
        params = _activation_params(mailer, "api-expired@example.com")
        settings = client.app.state.settings
        extension = scim.users[params["userId"]][settings.scim_extension_urn]
        extension[settings.activation_token_field] = f"{params['activationToken']}:0"

        resp = client.get(ACTIVATE, params=params)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "activation.exception"
        assert resp.json()["error"]["message"] == "Activation token is expired"
        assert settings.activation_token_field not in extension

    @pytest.mark.parametrize("params", [{}, {"userId": "user-1"}, {"activationToken": "t"}])
    def test_missing_parameters(self, api_client, params) -> None:
        client, _, _ = api_client
        resp = client.get(ACTIVATE, params=params)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "activation.exception"

    def test_unknown_user(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get(ACTIVATE, params={"userId": "does-not-exist", "activationToken": "t"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"
