"""
scim/client.py -- requests-based client for the identity server's SCIM API.

Only the operations the add-on needs: search, get, create and PATCH of Users.

Key behaviors:
- Bearer token from ServiceTokenProvider; one retry with a fresh token on 401
- Transport failures (connection refused, timeout) -> ConnectionInitializationError
- Error statuses -> SCIMRequestError / NoResultError (404) / ConflictError (409)
- iter_users() pages through startIndex until totalResults is reached

Layer rule: no imports from api/, web/, registration/, or mail/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any
from urllib.parse import quote

import requests

from scim.errors import ConflictError, ConnectionInitializationError, NoResultError, SCIMRequestError
from scim.oauth import ServiceTokenProvider
from scim.resources import SearchResult

logger = logging.getLogger("selfadmin.scim")

_SCIM_JSON = "application/scim+json"
_DEFAULT_PAGE_SIZE = 100


class SCIMClient:
    """HTTP client for the identity server.

    Args:
        base_url:        Root URL of the SCIM endpoint (e.g. ``https://idp.example.com/scim/v2``)
        token_provider:  Source of the bearer token
        timeout:         Per-request timeout in seconds
        session:         Optional pre-configured requests.Session (tests, custom TLS)
    """

    def __init__(
        self,
        base_url: str,
        token_provider: ServiceTokenProvider,
        timeout: int = 10,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout = timeout
        self._session = session or requests.Session()
        # The identity server is a known host; no reason to follow long redirect chains.
        self._session.max_redirects = 3

    # -- Public API ----------------------------------------------------------

    def search_users(self, filter_expr: str, count: int | None = None, start_index: int = 1) -> SearchResult:
        """Run a filtered search and return one page of results."""
        params: dict[str, Any] = {"filter": filter_expr, "startIndex": start_index}
        if count is not None:
            params["count"] = count
        body = self._request("GET", "/Users", params=params)
        return SearchResult.from_response(body or {})

    def iter_users(self, filter_expr: str, page_size: int = _DEFAULT_PAGE_SIZE) -> Iterator[dict[str, Any]]:
        """Yield every user matching filter_expr across all result pages."""
        start_index = 1
        seen = 0
        while True:
            page = self.search_users(filter_expr, count=page_size, start_index=start_index)
            yield from page.resources
            seen += len(page.resources)
            if not page.resources or seen >= page.total_results:
                return
            start_index += len(page.resources)

    def get_user(self, user_id: str) -> dict[str, Any]:
        return self._request("GET", f"/Users/{quote(user_id, safe='')}")

    def create_user(self, user: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/Users", payload=user)

    def update_user(self, user_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Apply a PatchOp body (see scim.resources.PatchBuilder) and return the updated user.

        Servers may answer 204 No Content; the user is then fetched again.
        """
        body = self._request("PATCH", f"/Users/{quote(user_id, safe='')}", payload=patch)
        if body is None:
            return self.get_user(user_id)
        return body

    def close(self) -> None:
        self._session.close()

    # -- Internals -----------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": _SCIM_JSON,
            "Content-Type": _SCIM_JSON,
            "Authorization": f"Bearer {self.token_provider.get_token()}",
        }

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body (None for an empty body)."""
        url = f"{self.base_url}{path}"
        resp = self._send(method, url, params, payload)
        if resp.status_code == 401:
            # Token revoked or expired early on the server side.
            logger.info("%s %s returned 401, retrying with a fresh token", method, path)
            self.token_provider.invalidate()
            resp = self._send(method, url, params, payload)

        if resp.status_code >= 400:
            detail = _error_detail(resp)
            if resp.status_code == 404:
                raise NoResultError(resp.status_code, detail)
            if resp.status_code == 409:
                raise ConflictError(resp.status_code, detail)
            raise SCIMRequestError(resp.status_code, detail)

        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise SCIMRequestError(resp.status_code, "Response body is not valid JSON.") from exc

    def _send(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        payload: dict[str, Any] | None,
    ) -> requests.Response:
        try:
            return self._session.request(
                method,
                url,
                params=params,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ConnectionInitializationError(f"Could not reach identity server at {self.base_url}: {exc}") from exc


def _error_detail(resp: requests.Response) -> str:
    """Extract the SCIM error "detail" (RFC 7644 section 3.12), falling back to raw text."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("message") or "")
    return ""
