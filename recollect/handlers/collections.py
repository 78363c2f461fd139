"""
Collections handlers.

Collections group items and carry their own public/private flag. Every
collection has a unique slug derived from its title; the slug is what the
public site uses in URLs, so `GET /api/collections/{cid}` accepts either the
numeric id or the slug.

Design notes
------------
* The slug is regenerated whenever the title changes and re-checked for
  collisions against *other* collections.
* Deleting a collection removes its items' blobs (best-effort) and then
  cascades through the gateway: items, tag links, metadata values, search
  entries, the collection row.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import request

from recollect import gateway
from recollect.auth import require_privileged
from recollect.context import current_requester, services
from recollect.errors import Conflict, NotFound, ValidationError, json_errors
from recollect.filters import parse_page
from recollect.slugs import slugify
from recollect.storage import delete_media
from recollect.visibility import ensure_collection_visible, public_flag, restrict_to_public

logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "Collection with this title already exists"


def _slug_for(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title is required")
    slug = slugify(title)
    if not slug:
        raise ValidationError("Title must contain at least one letter or digit")
    return slug


# ---------------------------------------------------------------------------
# Collections (HTTP handlers)
# ---------------------------------------------------------------------------

@json_errors("Failed to fetch collections")
def list_collections() -> Dict[str, Any]:
    """
    GET /api/collections?limit=&offset=
    Newest first; anonymous callers only see public collections.
    """
    public_only = restrict_to_public(current_requester())
    page = parse_page(request.args)
    with services().unit_of_work() as session:
        return gateway.list_collections(session, page, public_only)


@json_errors("Failed to fetch collection")
def get_collection(cid: str):
    """
    GET /api/collections/{cid}
    Fetch a collection by *slug* or *id* (string), with its item count.
    """
    requester = current_requester()
    with services().unit_of_work() as session:
        collection = gateway.find_collection(session, cid)
        if collection is None:
            raise NotFound("Collection not found")
        ensure_collection_visible(requester, bool(collection.is_public))

        data = gateway.collection_to_dict(collection)
        data["item_count"] = gateway.count_collection_items(
            session, collection.id, restrict_to_public(requester)
        )
    return data, 200


@json_errors("Failed to create collection")
def create_collection(body: Optional[Dict[str, Any]] = None):
    """
    POST /api/collections

    Body:
      { "title": "Historical Photos", "description": "optional",
        "metadata": {...}, "is_public": true, "thumbnail_url": "..." }

    Returns (object, status_code):
      ({ "id": <int>, "slug": "historical-photos", ... }, 201)
    """
    requester = require_privileged(current_requester())
    body = body or {}
    slug = _slug_for(body.get("title"))

    with services().unit_of_work() as session:
        # Enforce uniqueness on slug
        if gateway.slug_taken(session, slug):
            raise Conflict(DUPLICATE_MESSAGE)

        collection = gateway.insert_collection(
            session,
            {
                "slug": slug,
                "title": body["title"],
                "description": body.get("description"),
                "meta": body.get("metadata") or {},
                "thumbnail_url": body.get("thumbnail_url"),
                "is_public": public_flag(body.get("is_public", True)),
                "created_by": requester.user_id,
            },
        )
        data = gateway.collection_to_dict(collection)

    logger.info("Created collection %s (%s)", data["id"], slug)
    return data, 201


@json_errors("Failed to update collection")
def update_collection(cid: str, body: Optional[Dict[str, Any]] = None):
    """
    PUT /api/collections/{cid}
    Partial update of title/description/thumbnail_url/metadata/is_public.
    """
    require_privileged(current_requester())
    body = body or {}

    with services().unit_of_work() as session:
        collection = gateway.find_collection(session, cid)
        if collection is None:
            raise NotFound("Collection not found")

        changed = False
        if "title" in body:
            slug = _slug_for(body["title"])
            if gateway.slug_taken(session, slug, exclude_id=collection.id):
                raise Conflict(DUPLICATE_MESSAGE)
            collection.title = body["title"]
            collection.slug = slug
            changed = True
        if "description" in body:
            collection.description = body["description"]
            changed = True
        if "thumbnail_url" in body:
            collection.thumbnail_url = body["thumbnail_url"]
            changed = True
        if "metadata" in body:
            collection.meta = body["metadata"] or {}
            changed = True
        if "is_public" in body:
            collection.is_public = public_flag(body["is_public"])
            changed = True

        if not changed:
            raise ValidationError("No fields to update")

        session.flush()
        data = gateway.collection_to_dict(collection)
    return data, 200


@json_errors("Failed to delete collection")
def delete_collection(cid: str):
    """
    DELETE /api/collections/{cid}
    Delete a collection (by slug or id) and all its items.
    """
    require_privileged(current_requester())
    svc = services()

    with svc.unit_of_work() as session:
        collection = gateway.find_collection(session, cid)
        if collection is None:
            raise NotFound("Collection not found")

        if svc.settings.delete_blobs_on_delete:
            for media, thumb in gateway.collection_media_urls(session, collection.id):
                delete_media(svc.blobs, media, thumb)
        gateway.delete_collection_rows(session, collection.id)

    return {"success": True}, 200
