"""
onetime/token.py -- One-time tokens stored in a user's SCIM extension.

Wire format: "<token>:<issued_ms>" -- a random UUID followed by the issue
time in milliseconds since the epoch. The timestamp travels with the token so
expiry can be decided from the stored value alone, without a side table.

Security:
  matches() compares with hmac.compare_digest so a mismatch does not leak how
  many leading characters were right.

  __repr__ hides the token value; only str() produces the wire format.
"""

from __future__ import annotations

import hmac
import time
import uuid
from dataclasses import dataclass
from datetime import timedelta

_DELIMITER = ":"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class OneTimeToken:
    """A random token plus the time it was issued.

    issued_at_ms is None for legacy values stored without a timestamp. Such
    tokens have an unknown age and are treated as expired.
    """

    token: str
    issued_at_ms: int | None

    @classmethod
    def generate(cls) -> OneTimeToken:
        return cls(token=str(uuid.uuid4()), issued_at_ms=_now_ms())

    @classmethod
    def from_string(cls, value: str | None) -> OneTimeToken:
        """Parse the stored "<token>:<issued_ms>" form.

        Raises ValueError for empty input or a non-numeric timestamp.
        """
        if not value or not value.strip():
            raise ValueError("One-time token value must not be empty.")
        token, delimiter, issued = value.strip().rpartition(_DELIMITER)
        if not delimiter:
            return cls(token=issued, issued_at_ms=None)
        if not token:
            raise ValueError("One-time token value has no token part.")
        try:
            issued_at_ms = int(issued)
        except ValueError:
            raise ValueError("One-time token timestamp is not a number.") from None
        return cls(token=token, issued_at_ms=issued_at_ms)

    def is_expired(self, timeout: timedelta, now_ms: int | None = None) -> bool:
        if self.issued_at_ms is None:
            return True
        now = _now_ms() if now_ms is None else now_ms
        timeout_ms = int(timeout.total_seconds() * 1000)
        return now > self.issued_at_ms + timeout_ms

    def matches(self, candidate: str | None) -> bool:
        if not candidate:
            return False
        return hmac.compare_digest(self.token.encode("utf-8"), candidate.encode("utf-8"))

    def __str__(self) -> str:
        if self.issued_at_ms is None:
            return self.token
        return f"{self.token}{_DELIMITER}{self.issued_at_ms}"

    def __repr__(self) -> str:
        return f"OneTimeToken(token='***', issued_at_ms={self.issued_at_ms})"
