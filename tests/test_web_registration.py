"""
tests/test_web_registration.py -- Integration tests for the HTML registration pages.

Coverage:
  - GET /registration renders one input per configured field
  - POST /registration: success page, 400 with field errors (passwords not
    echoed), 409 for a taken user name, 429 when rate limited, 502 on mail failure
  - GET /registration/activation: success page, redirect when
    ACTIVATION_REDIRECT_URL is set, expired-link page, 400/404 pages that
    never show internals

Fixtures used (from conftest.py):
  - web_client: (client, scim, mailer) -- follow_redirects=False
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

from api.limiter import limiter
from core.config import get_settings

FORM_URL = "/registration"
ACTIVATE_URL = "/registration/activation"


def _activation_link(mailer, email: str) -> str:
    mail = next(m for m in reversed(mailer.sent) if m["to"] == email)
    return mail["variables"]["registrationLink"]


def test_form_renders_configured_fields(web_client) -> None:
    client, _, _ = web_client
    resp = client.get(FORM_URL)
    assert resp.status_code == 200
    assert "text/html" in resp.headers["content-type"]
    assert 'name="email"' in resp.text
    assert 'name="password"' in resp.text
    assert 'name="userName"' not in resp.text


def test_register_success_page_and_link_to_web_activation(web_client) -> None:
    client, scim, mailer = web_client
    resp = client.post(FORM_URL, data={"email": "web-alice@example.com", "password": "secret123"})

    assert resp.status_code == 200, resp.text
    assert "Almost done" in resp.text
    link = _activation_link(mailer, "web-alice@example.com")
    assert link.startswith("http://testserver/registration/activation?userId=")
    assert any(u["userName"] == "web-alice@example.com" for u in scim.users.values())


def test_invalid_form_rerendered_without_password(web_client) -> None:
    client, _, _ = web_client
    resp = client.post(FORM_URL, data={"email": "web-bad@example.com", "password": "tiny7"})
    assert resp.status_code == 400
    assert "Password must be at least 8 characters." in resp.text
    assert 'value="web-bad@example.com"' in resp.text
    assert "tiny7" not in resp.text


def test_taken_username_shown_on_email_field(web_client) -> None:
    client, _, _ = web_client
    form = {"email": "web-dup@example.com", "password": "secret123"}
    assert client.post(FORM_URL, data=form).status_code == 200
    resp = client.post(FORM_URL, data=form)
    assert resp.status_code == 409
    assert "already taken" in resp.text


def test_mail_failure_page(web_client) -> None:
    client, _, mailer = web_client
    mailer.fail = True
    try:
        resp = client.post(FORM_URL, data={"email": "web-nomail@example.com", "password": "secret123"})
    finally:
        mailer.fail = False
    assert resp.status_code == 502
    assert "could not send the activation email" in resp.text
    assert "smtp.test" not in resp.text


def test_activation_success_page(web_client) -> None:
    client, scim, mailer = web_client
    client.post(FORM_URL, data={"email": "web-activate@example.com", "password": "secret123"})
    link = _activation_link(mailer, "web-activate@example.com")

    resp = client.get(link)
    assert resp.status_code == 200
    assert "Account activated" in resp.text
    assert resp.headers["Cache-Control"] == "no-store"
    user_id = parse_qs(urlsplit(link).query)["userId"][0]
    assert scim.users[user_id]["active"] is True


def test_activation_redirects_when_configured(web_client, monkeypatch) -> None:
    client, _, mailer = web_client
    client.post(FORM_URL, data={"email": "web-redirect@example.com", "password": "secret123"})
    link = _activation_link(mailer, "web-redirect@example.com")
    monkeypatch.setattr(get_settings(), "activation_redirect_url", "https://portal.example.com/login")

    resp = client.get(link)
    assert resp.status_code == 303
    assert resp.headers["location"] == "https://portal.example.com/login"


def test_activation_wrong_token_page(web_client) -> None:
    client, _, mailer = web_client
    client.post(FORM_URL, data={"email": "web-wrong@example.com", "password": "secret123"})
    link = _activation_link(mailer, "web-wrong@example.com")
    query = parse_qs(urlsplit(link).query)
    real_token = query["activationToken"][0]

    resp = client.get(ACTIVATE_URL, params={"userId": query["userId"][0], "activationToken": "guess"})
    assert resp.status_code == 400
    assert "This activation link is not valid." in resp.text
    assert real_token not in resp.text


def test_activation_unknown_user_page(web_client) -> None:
    client, _, _ = web_client
    resp = client.get(ACTIVATE_URL, params={"userId": "nobody", "activationToken": "t"})
    assert resp.status_code == 404
    assert "This activation link is not valid." in resp.text


def test_activation_expired_link_page(web_client) -> None:
    client, scim, mailer = web_client
    client.post(FORM_URL, data={"email": "web-expired@example.com", "password": "secret123"})
    link = _activation_link(mailer, "web-expired@example.com")
    query = parse_qs(urlsplit(link).query)
    settings = get_settings()
    extension = scim.users[query["userId"][0]][settings.scim_extension_urn]
    extension[settings.activation_token_field] = f"{query['activationToken'][0]}:0"

    resp = client.get(link)
    assert resp.status_code == 400
    assert "This activation link has expired." in resp.text
    assert settings.activation_token_field not in extension


def test_password_whitespace_kept(web_client) -> None:
    client, scim, _ = web_client
    resp = client.post(FORM_URL, data={"email": "web-spaces@example.com", "password": "  secret123  "})
    assert resp.status_code == 200
    assert scim.created[-1]["password"] == "  secret123  "


def test_registration_post_is_rate_limited(web_client, monkeypatch) -> None:
    client, _, _ = web_client
    monkeypatch.setattr(get_settings(), "registration_rate_limit", "2/minute")
    limiter.reset()
    try:
        statuses = [
            client.post(FORM_URL, data={"email": f"web-limit-{i}@example.com", "password": "secret123"}).status_code
            for i in range(4)
        ]
        resp = client.post(FORM_URL, data={"email": "web-limit-last@example.com", "password": "secret123"})
    finally:
        limiter.reset()

    assert statuses == [200, 200, 429, 429]
    assert resp.status_code == 429
    assert resp.json()["error"]["code"] == "rate_limited"
    assert resp.headers["Retry-After"] == "60"
