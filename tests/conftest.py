"""
tests/conftest.py -- Shared test fixtures for the self-administration tests.

This module provides:
  - FakeSCIMClient: in-memory stand-in for scim.client.SCIMClient
  - FakeMailer: records rendered mails instead of talking to SMTP
  - _patch_lifespan(): wires the fakes into app.state, bypassing real startup
  - api_client: TestClient for JSON API tests
  - web_client: TestClient with follow_redirects=False for web route tests

The fakes understand exactly the filters the add-on sends:
  userName eq "<value>"
  <urn>:<field> pr

Environment variables must be set before any core/api import: get_settings()
is cached on first use, and api/main.py reads ALLOWED_HOSTS at import time.
"""

from __future__ import annotations

import copy
import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Any

# CRITICAL: Set before any core/api import so the cached Settings see them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", "testserver,localhost")
os.environ.setdefault("REGISTRATION_RATE_LIMIT", "1000/minute")
os.environ.setdefault("SCAVENGER_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from core.config import Settings, get_settings
from mail.sender import MailSendError
from registration.service import RegistrationService
from scim.errors import ConflictError, NoResultError
from scim.resources import SearchResult, get_extension_field

_EQ_FILTER = re.compile(r'^userName eq "((?:[^"\\]|\\.)*)"$')
_PR_FILTER = re.compile(r"^(\S+) pr$")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeSCIMClient:
    """In-memory identity server. Stores users by id, applies PatchOp bodies."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.created: list[dict[str, Any]] = []
        self.patches: list[tuple[str, dict[str, Any]]] = []
        self._next_id = 1

    def _matches(self, user: dict[str, Any], filter_expr: str) -> bool:
        eq = _EQ_FILTER.match(filter_expr)
        if eq:
            value = re.sub(r"\\(.)", r"\1", eq.group(1))
            return user.get("userName") == value
        pr = _PR_FILTER.match(filter_expr)
        if pr:
            urn, _, field_name = pr.group(1).rpartition(":")
            return get_extension_field(user, urn, field_name) is not None
        raise AssertionError(f"FakeSCIMClient does not understand filter {filter_expr!r}")

    def search_users(self, filter_expr: str, count: int | None = None, start_index: int = 1) -> SearchResult:
        matches = [u for u in self.users.values() if self._matches(u, filter_expr)]
        page = matches[start_index - 1 :]
        if count is not None:
            page = page[:count]
        return SearchResult(
            total_results=len(matches),
            resources=copy.deepcopy(page),
            start_index=start_index,
            items_per_page=len(page),
        )

    def iter_users(self, filter_expr: str, page_size: int = 100):
        yield from self.search_users(filter_expr).resources

    def get_user(self, user_id: str) -> dict[str, Any]:
        if user_id not in self.users:
            raise NoResultError(404, f"User {user_id} not found")
        return copy.deepcopy(self.users[user_id])

    def create_user(self, user: dict[str, Any]) -> dict[str, Any]:
        self.created.append(copy.deepcopy(user))
        if any(u.get("userName") == user.get("userName") for u in self.users.values()):
            raise ConflictError(409, "userName is not unique")
        stored = copy.deepcopy(user)
        stored.pop("password", None)
        stored["id"] = f"user-{self._next_id}"
        self._next_id += 1
        self.users[stored["id"]] = stored
        return copy.deepcopy(stored)

    def update_user(self, user_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        if user_id not in self.users:
            raise NoResultError(404, f"User {user_id} not found")
        self.patches.append((user_id, copy.deepcopy(patch)))
        user = self.users[user_id]
        for operation in patch["Operations"]:
            path = operation["path"]
            if operation["op"] == "remove":
                urn, _, field_name = path.rpartition(":")
                user.get(urn, {}).pop(field_name, None)
            elif operation["op"] == "replace":
                user[path] = operation["value"]
        return copy.deepcopy(user)

    def close(self) -> None:
        pass


class FakeMailer:
    """Captures render_and_send() calls. Set fail=True to simulate SMTP trouble."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = False

    def render_and_send(
        self,
        template: str,
        from_addr: str,
        to_addr: str,
        locale: str,
        variables: dict[str, Any],
    ) -> None:
        if self.fail:
            raise MailSendError("Could not send mail via smtp.test:25: connection refused")
        self.sent.append(
            {"template": template, "from": from_addr, "to": to_addr, "locale": locale, "variables": variables}
        )


# ---------------------------------------------------------------------------
# Unit test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings() -> Settings:
    return get_settings()


@pytest.fixture()
def fake_scim() -> FakeSCIMClient:
    return FakeSCIMClient()


@pytest.fixture()
def fake_mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture()
def service(settings: Settings, fake_scim: FakeSCIMClient, fake_mailer: FakeMailer) -> RegistrationService:
    return RegistrationService(settings, fake_scim, fake_mailer)


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(scim_client: FakeSCIMClient, mailer: FakeMailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the fakes into app.state so TestClient routes never reach a real
    identity server or SMTP server. No scavenger loops are started.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        app.state.settings = settings
        app.state.scim_client = scim_client
        app.state.mailer = mailer
        app.state.registration_service = RegistrationService(settings, scim_client, mailer)
        app.state.scavenger_tasks = []
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, FakeSCIMClient, FakeMailer], None, None]:
    """Yield (client, scim, mailer) for API integration tests.

    One TestClient per test module for speed. Tests register distinct email
    addresses so they do not trip over each other's users.
    """
    scim_client, mailer = FakeSCIMClient(), FakeMailer()
    app.router.lifespan_context = _patch_lifespan(scim_client, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, scim_client, mailer


@pytest.fixture(scope="module")
def web_client() -> Generator[tuple[TestClient, FakeSCIMClient, FakeMailer], None, None]:
    """Yield (client, scim, mailer) for web route integration tests.

    follow_redirects=False is essential: the activation redirect is asserted
    on its Location header, which is invisible once the client follows it.
    """
    scim_client, mailer = FakeSCIMClient(), FakeMailer()
    app.router.lifespan_context = _patch_lifespan(scim_client, mailer)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, scim_client, mailer
