"""
scim/resources.py -- SCIM 2.0 resource helpers.

Users travel through the add-on as plain dicts exactly as the identity server
returns them (RFC 7643 JSON). This module holds the few pieces of structure
the add-on needs on top of that: search results, PATCH construction, and
accessors for the internal extension and email list.

Extension attributes are addressed as "<urn>:<field>" both in filters and in
PATCH paths (RFC 7644 section 3.10).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
PATCH_OP_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"
LIST_RESPONSE_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:ListResponse"


@dataclass
class SearchResult:
    """One page of a SCIM ListResponse."""

    total_results: int
    resources: list[dict[str, Any]] = field(default_factory=list)
    start_index: int = 1
    items_per_page: int = 0

    @classmethod
    def from_response(cls, body: dict[str, Any]) -> SearchResult:
        resources = body.get("Resources") or []
        return cls(
            total_results=int(body.get("totalResults", len(resources))),
            resources=list(resources),
            start_index=int(body.get("startIndex", 1)),
            items_per_page=int(body.get("itemsPerPage", len(resources))),
        )


def extension_path(urn: str, field_name: str) -> str:
    return f"{urn}:{field_name}"


def quote_filter_value(value: str) -> str:
    """Return value as a quoted SCIM filter string literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def get_extension_field(user: dict[str, Any], urn: str, field_name: str) -> str | None:
    """Return a field of the given extension as a string, or None if absent."""
    extension = user.get(urn)
    if not isinstance(extension, dict):
        return None
    value = extension.get(field_name)
    if value is None or value == "":
        return None
    return str(value)


def primary_or_first_email(user: dict[str, Any]) -> str | None:
    """Return the primary email address, else the first one, else None."""
    emails = [e for e in user.get("emails") or [] if isinstance(e, dict) and e.get("value")]
    for email in emails:
        if email.get("primary"):
            return email["value"]
    return emails[0]["value"] if emails else None


class PatchBuilder:
    """Builds a SCIM 2.0 PatchOp request body.

    Usage:
        patch = PatchBuilder().delete_extension_field(urn, "activationToken").update_active(True).build()
    """

    def __init__(self) -> None:
        self._operations: list[dict[str, Any]] = []

    def delete_extension_field(self, urn: str, field_name: str) -> PatchBuilder:
        self._operations.append({"op": "remove", "path": extension_path(urn, field_name)})
        return self

    def update_active(self, active: bool) -> PatchBuilder:
        self._operations.append({"op": "replace", "path": "active", "value": active})
        return self

    def build(self) -> dict[str, Any]:
        if not self._operations:
            raise ValueError("A PATCH request needs at least one operation.")
        return {"schemas": [PATCH_OP_SCHEMA], "Operations": list(self._operations)}
