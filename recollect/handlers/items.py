"""
Items handlers.

Public surface
--------------
GET    /api/items            filtered, paginated listing (+ optional facets)
GET    /api/items/{item_id}  one item with tags, metadata and related items

Admin surface (privileged)
--------------------------
POST   /api/items
PUT    /api/items/{item_id}
DELETE /api/items/{item_id}

Visibility: anonymous callers only ever see items that are public *and* sit
in a public collection. A private item fetched by id answers 403, a missing
one 404.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import request

from recollect import gateway
from recollect.auth import require_privileged
from recollect.context import current_requester, services
from recollect.errors import NotFound, ValidationError, json_errors
from recollect.filters import compile_filters, parse_page
from recollect.kinds import ItemKind
from recollect.storage import delete_media
from recollect.visibility import cache_control, ensure_item_visible, public_flag, restrict_to_public

logger = logging.getLogger(__name__)

# Columns a PUT may change directly.
UPDATABLE_FIELDS = (
    "title",
    "description",
    "item_type",
    "media_url",
    "thumbnail_url",
    "metadata",
    "rights_statement",
    "is_public",
)
# Keys a PUT may carry besides the columns above.
UPDATABLE_RELATIONS = ("tags", "metadata_fields", "content")


def _kind(value: Any) -> str:
    kind = ItemKind.parse(value)
    if kind is None:
        raise ValidationError(f"item_type must be one of: {', '.join(ItemKind.values())}")
    return kind.value


def _tags(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("tags must be a list of strings")
    return [str(v) for v in value]


def _fields(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError("metadata_fields must be an object")
    return value


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------

@json_errors("Failed to fetch items")
def list_items() -> Dict[str, Any]:
    """
    GET /api/items?collection=&type=&tag=&meta_<field>=&limit=&offset=&facets=

    Returns
    -------
    dict
        { "items": [...], "pagination": {...}, "facets": {...} | null }
    """
    args = request.args
    public_only = restrict_to_public(current_requester())
    compiled = compile_filters(args)
    page = parse_page(args)

    with services().unit_of_work() as session:
        return gateway.list_items(
            session,
            compiled,
            page,
            public_only,
            with_facets=args.get("facets") == "true",
        )


@json_errors("Failed to fetch item")
def get_item(item_id: int):
    """
    GET /api/items/{item_id}

    Side effect: the item's view_count goes up by one on every successful
    fetch, whoever the caller is.
    """
    requester = current_requester()
    with services().unit_of_work() as session:
        found = gateway.find_item(session, item_id)
        if not found:
            raise NotFound("Item not found")
        item, collection = found
        visible = (bool(item.is_public), bool(collection.is_public))
        ensure_item_visible(requester, *visible)

        data = gateway.item_detail(session, item, collection)
        gateway.increment_views(session, item.id)

    return data, 200, {"Cache-Control": cache_control(requester, *visible)}


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

@json_errors("Failed to create item")
def create_item(body: Optional[Dict[str, Any]] = None):
    """
    POST /api/items

    Body:
      {
        "collection_id": 1, "title": "...", "item_type": "image",
        "media_url": "/media/...", "thumbnail_url": "...", "description": "...",
        "metadata": {...}, "rights_statement": "...", "is_public": true,
        "tags": ["Architecture"], "metadata_fields": {"creator": "..."},
        "content": "free text for search"
      }
    """
    requester = require_privileged(current_requester())
    body = body or {}

    if not body.get("collection_id") or not body.get("title") or not body.get("item_type"):
        raise ValidationError("collection_id, title, and item_type are required")
    kind = _kind(body["item_type"])
    tags = _tags(body.get("tags"))
    fields = _fields(body.get("metadata_fields"))

    with services().unit_of_work() as session:
        collection = gateway.find_collection_by_id(session, body["collection_id"])
        if collection is None:
            raise NotFound("Collection not found")

        media_url = body.get("media_url")
        item = gateway.insert_item(
            session,
            {
                "collection_id": collection.id,
                "title": body["title"],
                "description": body.get("description"),
                "item_type": kind,
                "media_url": media_url,
                # Without an explicit thumbnail the media itself is the preview.
                "thumbnail_url": body.get("thumbnail_url") or media_url,
                "meta": body.get("metadata") or {},
                "rights_statement": body.get("rights_statement"),
                "is_public": public_flag(body.get("is_public", True)),
                "created_by": requester.user_id,
            },
        )
        gateway.set_tags(session, item.id, tags)
        gateway.upsert_metadata_values(session, item.id, fields)
        gateway.write_search_entry(session, item, body.get("content"))

        data = gateway.item_detail(session, item, collection)

    logger.info("Created item %s in collection %s", data["id"], data["collection_id"])
    return data, 201


@json_errors("Failed to update item")
def update_item(item_id: int, body: Optional[Dict[str, Any]] = None):
    """
    PUT /api/items/{item_id}

    Partial update. Unknown keys are ignored; a body without any
    recognized key is rejected.
    """
    require_privileged(current_requester())
    body = body or {}

    columns = {k: body[k] for k in UPDATABLE_FIELDS if k in body}
    relations = {k: body[k] for k in UPDATABLE_RELATIONS if k in body}
    if not columns and not relations:
        raise ValidationError("No fields to update")

    if "item_type" in columns:
        columns["item_type"] = _kind(columns["item_type"])
    if "is_public" in columns:
        columns["is_public"] = public_flag(columns["is_public"])
    if "metadata" in columns:
        columns["meta"] = columns.pop("metadata") or {}

    with services().unit_of_work() as session:
        found = gateway.find_item(session, item_id)
        if not found:
            raise NotFound("Item not found")
        item, collection = found

        for key, value in columns.items():
            setattr(item, key, value)
        session.flush()

        if "tags" in relations:
            gateway.set_tags(session, item.id, _tags(relations["tags"]))
        if "metadata_fields" in relations:
            gateway.upsert_metadata_values(session, item.id, _fields(relations["metadata_fields"]))
        if {"title", "description"} & columns.keys() or "content" in relations:
            gateway.write_search_entry(session, item, relations.get("content"))

        data = gateway.item_detail(session, item, collection)

    return data, 200


@json_errors("Failed to delete item")
def delete_item(item_id: int):
    """
    DELETE /api/items/{item_id}

    Media blobs go first (best-effort), then the item and everything that
    hangs off it.
    """
    require_privileged(current_requester())
    svc = services()

    with svc.unit_of_work() as session:
        found = gateway.find_item(session, item_id)
        if not found:
            raise NotFound("Item not found")
        item, _ = found

        if svc.settings.delete_blobs_on_delete:
            delete_media(svc.blobs, item.media_url, item.thumbnail_url)
        gateway.delete_item_rows(session, [item.id])

    return {"success": True}, 200
