"""
Who is asking, and what are they allowed to see.

A `Requester` is resolved once per request (see `recollect.auth`) and passed
explicitly to every service call. The visibility rule is deliberately a
single predicate:

    privileged requester  -> every row
    anyone else           -> item.is_public AND collection.is_public

The same rule is used for list filtering, facet counting, search and
single-entity fetches, so the public site can never see a row that a list
endpoint would hide.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from recollect.errors import Forbidden, ValidationError


@dataclass(frozen=True)
class Requester:
    user_id: int | None = None
    email: str | None = None
    role: str | None = None

    @property
    def is_privileged(self) -> bool:
        return self.user_id is not None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.user_id, "email": self.email, "role": self.role}


ANONYMOUS = Requester()


def restrict_to_public(requester: Requester) -> bool:
    """True when row-level filtering must apply the public gate."""
    return not requester.is_privileged


def public_clause(item_alias: str = "i", collection_alias: str = "c") -> str:
    """SQL fragment for the public gate; no bound values."""
    return f"{item_alias}.is_public = :vis_true AND {collection_alias}.is_public = :vis_true"


PUBLIC_PARAMS = {"vis_true": True}


def ensure_item_visible(requester: Requester, item_public: bool, collection_public: bool) -> None:
    """Raise `Forbidden` when an unprivileged requester fetches a private item."""
    if restrict_to_public(requester) and not (item_public and collection_public):
        raise Forbidden("Unauthorized")


def ensure_collection_visible(requester: Requester, collection_public: bool) -> None:
    if restrict_to_public(requester) and not collection_public:
        raise Forbidden("Unauthorized")


def public_flag(value: Any) -> bool:
    """
    Accept an `is_public` value from a request body.

    Only JSON booleans count; strings such as "false" are rejected instead of
    being coerced by truthiness.
    """
    if not isinstance(value, bool):
        raise ValidationError("is_public must be a boolean")
    return value


def cache_control(requester: Requester, item_public: bool, collection_public: bool) -> str:
    """Shared caches may only keep responses that anyone could have fetched."""
    if restrict_to_public(requester) and item_public and collection_public:
        return "public, max-age=300"
    return "private, no-store"
