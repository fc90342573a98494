"""
core/helpers.py -- Small pure helpers shared by config, registration and mail.

No side effects, no I/O. Safe to import from anywhere.
"""

import re
from datetime import timedelta
from urllib.parse import urlencode

_DURATION_RE = re.compile(r"^\s*(\d+)\s*(ms|s|m|h|d)\s*$", re.IGNORECASE)

_UNITS = {
    "ms": "milliseconds",
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
}


def parse_duration(value: str) -> timedelta:
    """Parse a "<n><unit>" duration such as "24h", "30m" or "500ms".

    Raises ValueError for anything else.
    """
    match = _DURATION_RE.match(value)
    if match is None:
        raise ValueError(f"Invalid duration: {value!r}. Expected e.g. '24h', '30m', '90s', '2d', '500ms'.")
    amount, unit = match.groups()
    return timedelta(**{_UNITS[unit.lower()]: int(amount)})


def create_link_for_email(url: str, user_id: str, param_name: str, token: str) -> str:
    """Build the link mailed to the user: url?userId=<id>&<param_name>=<token>."""
    separator = "&" if "?" in url else "?"
    return url + separator + urlencode({"userId": user_id, param_name: token})


def get_locale(value: str | None, default: str = "en") -> str:
    """Normalize a user locale ("de-DE", "de_de", "de") to "de_DE" / "de".

    Empty or missing values return default.
    """
    if not value or not value.strip():
        return default
    parts = re.split(r"[-_]", value.strip(), maxsplit=1)
    language = parts[0].lower()
    if not language.isalpha():
        return default
    if len(parts) == 2 and parts[1]:
        return f"{language}_{parts[1].upper()}"
    return language
