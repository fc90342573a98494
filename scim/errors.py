"""
scim/errors.py -- Exceptions raised by the SCIM client.

  SCIMError
    ConnectionInitializationError  -- no token, connection refused, timeout
    SCIMRequestError               -- the server answered with an error status
      NoResultError                -- 404
      ConflictError                -- 409
"""

from __future__ import annotations


class SCIMError(Exception):
    """Base class for every identity server failure."""


class ConnectionInitializationError(SCIMError):
    """The identity server could not be reached or refused our credentials."""


class SCIMRequestError(SCIMError):
    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        message = f"SCIM request failed with status {status_code}"
        super().__init__(f"{message}: {detail}" if detail else message)


class NoResultError(SCIMRequestError):
    pass


class ConflictError(SCIMRequestError):
    pass
