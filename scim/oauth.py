"""
scim/oauth.py -- Service access token for the identity server.

The add-on talks to the SCIM API as itself, not on behalf of the end user, so
it uses the OAuth 2.0 client credentials grant (RFC 6749 section 4.4). authlib's
requests OAuth2Session performs the token request; this module caches the
token until it expires and turns every way of not getting one into
ConnectionInitializationError.

Thread safety: scavenger runs execute in worker threads while request handlers
run in the threadpool, so the cached token is guarded by a lock.
"""

from __future__ import annotations

import logging
import threading

import requests
from authlib.integrations.base_client import OAuthError
from authlib.integrations.requests_client import OAuth2Session

from scim.errors import ConnectionInitializationError

logger = logging.getLogger("selfadmin.scim.oauth")


class ServiceTokenProvider:
    """Fetches and caches a client-credentials access token.

    Usage:
        provider = ServiceTokenProvider(token_url, client_id, client_secret, scope="ADMIN")
        headers = {"Authorization": f"Bearer {provider.get_token()}"}
        provider.invalidate()   # after a 401 from the resource server
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: str = "",
        timeout: int = 10,
    ) -> None:
        self.token_url = token_url
        self.timeout = timeout
        self._session = OAuth2Session(client_id, client_secret, scope=scope or None)
        self._token = None
        self._lock = threading.Lock()

    def get_token(self) -> str:
        """Return a valid access token, fetching a new one when needed."""
        with self._lock:
            if self._token is None or self._token.is_expired():
                self._token = self._fetch()
            return self._token["access_token"]

    def invalidate(self) -> None:
        with self._lock:
            self._token = None

    def close(self) -> None:
        self._session.close()

    def _fetch(self):
        try:
            token = self._session.fetch_token(
                self.token_url,
                grant_type="client_credentials",
                timeout=self.timeout,
            )
        except (OAuthError, requests.RequestException, ValueError) as exc:
            logger.warning("Could not retrieve access token from %s: %s", self.token_url, exc)
            raise ConnectionInitializationError(f"Unable to retrieve access token: {exc}") from exc
        if "access_token" not in token:
            raise ConnectionInitializationError("Token response did not contain an access_token.")
        logger.debug("Retrieved service access token (expires_at=%s)", token.get("expires_at"))
        return token
