"""
Persistence gateway.

All SQL the API runs lives here. Helpers take an open SQLAlchemy `Session`
(the handler owns the unit of work). Read helpers return plain dicts shaped
for JSON; lookups used before a write return the ORM rows themselves.

Design notes
------------
* Listing and counting share the *same* WHERE clause built by
  `recollect.filters`; only the projection, ORDER BY and LIMIT/OFFSET differ.
* Cascades are explicit: deleting an item removes its tag links, metadata
  values and search entry first; deleting a collection does that for every
  item it owns. The backing database does not need ON DELETE CASCADE.
* Everything is parameterized. Clause text from `recollect.filters` only
  contains fixed SQL and bind names.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Iterable, Sequence

from sqlalchemy import String, cast, delete, func, or_, select, text, update
from sqlalchemy.orm import Session, aliased

from recollect.facets import compute_facets
from recollect.filters import CompiledFilter, Page
from recollect.kinds import ItemKind, media_element
from recollect.models import (
    Collection,
    Item,
    ItemMetadata,
    ItemTag,
    MetadataField,
    SearchIndexEntry,
    Tag,
    User,
)
from recollect.slugs import tag_slug
from recollect.visibility import PUBLIC_PARAMS, public_clause

logger = logging.getLogger(__name__)

RELATED_LIMIT = 6

# Aliases matching the names used in filter clause SQL ("i." / "c.").
_i = aliased(Item, name="i")
_c = aliased(Collection, name="c")


# ---------------------------------------------------------------------------
# Result shaping
# ---------------------------------------------------------------------------

def _iso(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _json(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value if value is not None else {}


def collection_to_dict(c: Collection) -> dict[str, Any]:
    return {
        "id": c.id,
        "slug": c.slug,
        "title": c.title,
        "description": c.description,
        "metadata": _json(c.meta),
        "thumbnail_url": c.thumbnail_url,
        "is_public": bool(c.is_public),
        "created_by": c.created_by,
        "created_at": _iso(c.created_at),
        "updated_at": _iso(c.updated_at),
    }


def item_to_dict(item: Item, collection_title: str | None, collection_slug: str | None) -> dict[str, Any]:
    kind = ItemKind.parse(item.item_type)
    return {
        "id": item.id,
        "collection_id": item.collection_id,
        "collection_title": collection_title,
        "collection_slug": collection_slug,
        "title": item.title,
        "description": item.description,
        "item_type": item.item_type,
        "media_element": media_element(kind) if kind else None,
        "media_url": item.media_url,
        "thumbnail_url": item.thumbnail_url,
        "metadata": _json(item.meta),
        "rights_statement": item.rights_statement,
        "is_public": bool(item.is_public),
        "view_count": item.view_count or 0,
        "created_by": item.created_by,
        "created_at": _iso(item.created_at),
        "updated_at": _iso(item.updated_at),
    }


def tag_to_dict(t: Tag) -> dict[str, Any]:
    return {"id": t.id, "name": t.name, "slug": t.slug}


# ---------------------------------------------------------------------------
# Item listing
# ---------------------------------------------------------------------------

def _where(compiled: CompiledFilter, public_only: bool):
    sql, params = compiled.where(public_only)
    return text(sql).bindparams(**params)


def count_items(session: Session, compiled: CompiledFilter, public_only: bool) -> int:
    stmt = (
        select(func.count())
        .select_from(_i)
        .join(_c, _c.id == _i.collection_id)
        .where(_where(compiled, public_only))
    )
    return int(session.execute(stmt).scalar_one())


def select_items(session: Session, compiled: CompiledFilter, public_only: bool, page: Page | None):
    """Rows of (Item, collection title, collection slug) in listing order."""
    stmt = (
        select(_i, _c.title, _c.slug)
        .join(_c, _c.id == _i.collection_id)
        .where(_where(compiled, public_only))
        .order_by(_i.created_at.desc(), _i.id.desc())
    )
    if page is not None:
        stmt = stmt.limit(page.limit).offset(page.offset)
    return session.execute(stmt).all()


def tags_for_items(session: Session, item_ids: Sequence[int]) -> dict[int, list[dict[str, Any]]]:
    out: dict[int, list[dict[str, Any]]] = {item_id: [] for item_id in item_ids}
    if not item_ids:
        return out
    rows = session.execute(
        select(ItemTag.item_id, Tag)
        .join(Tag, Tag.id == ItemTag.tag_id)
        .where(ItemTag.item_id.in_(list(item_ids)))
        .order_by(Tag.name)
    ).all()
    for item_id, tag in rows:
        out[item_id].append(tag_to_dict(tag))
    return out


def list_items(
    session: Session,
    compiled: CompiledFilter,
    page: Page,
    public_only: bool,
    with_facets: bool = False,
) -> dict[str, Any]:
    rows = select_items(session, compiled, public_only, page)
    total = count_items(session, compiled, public_only)

    items = [item_to_dict(item, title, slug) for item, title, slug in rows]
    tags = tags_for_items(session, [it["id"] for it in items])
    for it in items:
        it["tags"] = tags[it["id"]]

    return {
        "items": items,
        "pagination": page.envelope(total),
        "facets": compute_facets(session, public_only) if with_facets else None,
    }


# ---------------------------------------------------------------------------
# Single item
# ---------------------------------------------------------------------------

def find_item(session: Session, item_id: int) -> tuple[Item, Collection] | None:
    row = session.execute(
        select(Item, Collection)
        .join(Collection, Collection.id == Item.collection_id)
        .where(Item.id == item_id)
    ).first()
    return (row[0], row[1]) if row else None


def metadata_values(session: Session, item_id: int) -> list[dict[str, Any]]:
    rows = session.execute(
        select(MetadataField.name, MetadataField.field_type, ItemMetadata.value)
        .join(MetadataField, MetadataField.id == ItemMetadata.field_id)
        .where(ItemMetadata.item_id == item_id)
        .order_by(MetadataField.display_order, MetadataField.id)
    ).all()
    return [{"name": n, "field_type": t, "value": v} for n, t, v in rows]


def related_items(session: Session, item: Item) -> list[dict[str, Any]]:
    """Up to six public items sharing the collection or a tag."""
    rows = session.execute(
        text(
            "SELECT i.id AS id, i.title AS title, i.thumbnail_url AS thumbnail_url, "
            "i.item_type AS item_type "
            "FROM items i JOIN collections c ON i.collection_id = c.id "
            f"WHERE i.id != :item_id AND {public_clause()} "
            "AND (i.collection_id = :collection_id OR EXISTS ("
            "  SELECT 1 FROM item_tags it1 JOIN item_tags it2 ON it1.tag_id = it2.tag_id "
            "  WHERE it1.item_id = i.id AND it2.item_id = :item_id)) "
            "ORDER BY i.created_at DESC, i.id DESC "
            "LIMIT :lim"
        ),
        {"item_id": item.id, "collection_id": item.collection_id, "lim": RELATED_LIMIT, **PUBLIC_PARAMS},
    ).mappings().all()
    return [dict(r) for r in rows]


def item_detail(session: Session, item: Item, collection: Collection) -> dict[str, Any]:
    data = item_to_dict(item, collection.title, collection.slug)
    data["tags"] = tags_for_items(session, [item.id])[item.id]
    data["metadata_fields"] = metadata_values(session, item.id)
    data["related_items"] = related_items(session, item)
    return data


def increment_views(session: Session, item_id: int) -> None:
    # Read-then-increment without locking; concurrent fetches may under-count.
    session.execute(update(Item).where(Item.id == item_id).values(view_count=Item.view_count + 1))


# ---------------------------------------------------------------------------
# Item writes
# ---------------------------------------------------------------------------

def set_tags(session: Session, item_id: int, names: Iterable[str]) -> None:
    """Replace an item's tags; unknown tags are created on the fly."""
    session.execute(delete(ItemTag).where(ItemTag.item_id == item_id))
    linked: set[int] = set()
    for name in names:
        name = str(name).strip()
        if not name:
            continue
        slug = tag_slug(name)
        tag = session.scalar(select(Tag).where(Tag.slug == slug))
        if tag is None:
            tag = Tag(name=name, slug=slug)
            session.add(tag)
            session.flush()
        if tag.id not in linked:
            session.add(ItemTag(item_id=item_id, tag_id=tag.id))
            linked.add(tag.id)
    session.flush()


def upsert_metadata_values(session: Session, item_id: int, values: dict[str, Any]) -> None:
    """Write `{field name: value}`; names without a MetadataField are skipped."""
    for field_name, value in values.items():
        field = session.scalar(select(MetadataField).where(MetadataField.name == field_name))
        if field is None:
            logger.debug("ignoring unknown metadata field %r", field_name)
            continue
        existing = session.scalar(
            select(ItemMetadata).where(ItemMetadata.item_id == item_id, ItemMetadata.field_id == field.id)
        )
        stored = None if value is None else str(value)
        if existing is None:
            session.add(ItemMetadata(item_id=item_id, field_id=field.id, value=stored))
        else:
            existing.value = stored
    session.flush()


def write_search_entry(session: Session, item: Item, content: str | None = None) -> None:
    entry = session.get(SearchIndexEntry, item.id)
    if entry is None:
        session.add(
            SearchIndexEntry(item_id=item.id, title=item.title, description=item.description, content=content or "")
        )
    else:
        entry.title = item.title
        entry.description = item.description
        if content is not None:
            entry.content = content
    session.flush()


def insert_item(session: Session, values: dict[str, Any]) -> Item:
    item = Item(**values)
    session.add(item)
    session.flush()
    return item


def delete_item_rows(session: Session, item_ids: Sequence[int]) -> None:
    """Explicit cascade for a set of items."""
    if not item_ids:
        return
    ids = list(item_ids)
    session.execute(delete(ItemTag).where(ItemTag.item_id.in_(ids)))
    session.execute(delete(ItemMetadata).where(ItemMetadata.item_id.in_(ids)))
    session.execute(delete(SearchIndexEntry).where(SearchIndexEntry.item_id.in_(ids)))
    session.execute(delete(Item).where(Item.id.in_(ids)))


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

def _fts5_query(q: str) -> str:
    # Quote every term so user input is matched literally, never parsed as FTS syntax.
    return " ".join('"' + term.replace('"', '""') + '"' for term in q.split())


_PG_DOC = (
    "to_tsvector('english', coalesce(s.title, '') || ' ' || coalesce(s.description, '') "
    "|| ' ' || coalesce(s.content, ''))"
)
_PG_TEXT = "coalesce(s.title, '') || ' ' || coalesce(s.description, '') || ' ' || coalesce(s.content, '')"


def _search_sql(dialect: str, gate: str) -> tuple[str, str]:
    if dialect == "postgresql":
        base = (
            "FROM search_index s "
            "JOIN items i ON i.id = s.item_id "
            "JOIN collections c ON c.id = i.collection_id "
            f"WHERE {_PG_DOC} @@ websearch_to_tsquery('english', :q){gate}"
        )
        rows = (
            "SELECT i.id AS id, "
            f"ts_headline('english', {_PG_TEXT}, websearch_to_tsquery('english', :q), "
            "'StartSel=<mark>, StopSel=</mark>, MaxWords=32, MinWords=8') AS snippet "
            f"{base} "
            f"ORDER BY ts_rank({_PG_DOC}, websearch_to_tsquery('english', :q)) DESC, i.id DESC "
            "LIMIT :limit OFFSET :offset"
        )
        return rows, f"SELECT COUNT(*) {base}"

    base = (
        "FROM search_index_fts "
        "JOIN items i ON i.id = search_index_fts.rowid "
        "JOIN collections c ON c.id = i.collection_id "
        f"WHERE search_index_fts MATCH :q{gate}"
    )
    rows = (
        "SELECT i.id AS id, "
        "snippet(search_index_fts, -1, '<mark>', '</mark>', '...', 32) AS snippet "
        f"{base} "
        "ORDER BY bm25(search_index_fts), i.id DESC "
        "LIMIT :limit OFFSET :offset"
    )
    return rows, f"SELECT COUNT(*) {base}"


def search_items(session: Session, q: str, page: Page, public_only: bool) -> dict[str, Any]:
    dialect = session.get_bind().dialect.name
    gate = f" AND {public_clause()}" if public_only else ""
    params: dict[str, Any] = dict(PUBLIC_PARAMS) if public_only else {}
    params["q"] = q if dialect == "postgresql" else _fts5_query(q)

    rows_sql, count_sql = _search_sql(dialect, gate)
    hits = session.execute(
        text(rows_sql), {**params, "limit": page.limit, "offset": page.offset}
    ).mappings().all()
    total = int(session.execute(text(count_sql), params).scalar_one())

    snippets = {h["id"]: h["snippet"] for h in hits}
    order = [h["id"] for h in hits]
    by_id = {}
    if order:
        for item, title, slug in session.execute(
            select(Item, Collection.title, Collection.slug)
            .join(Collection, Collection.id == Item.collection_id)
            .where(Item.id.in_(order))
        ).all():
            data = item_to_dict(item, title, slug)
            data["snippet"] = snippets[item.id]
            by_id[item.id] = data

    return {
        "items": [by_id[i] for i in order if i in by_id],
        "pagination": page.envelope(total),
        "query": q,
    }


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------

def find_collection(session: Session, ident: Any) -> Collection | None:
    """Fetch a collection by numeric id or slug."""
    ident = str(ident)
    return session.scalar(
        select(Collection).where(or_(cast(Collection.id, String) == ident, Collection.slug == ident)).limit(1)
    )


def find_collection_by_id(session: Session, collection_id: Any) -> Collection | None:
    try:
        return session.get(Collection, int(collection_id))
    except (TypeError, ValueError):
        return None


def find_item_by_title(session: Session, collection_id: int, title: str) -> Item | None:
    return session.scalar(
        select(Item).where(Item.collection_id == collection_id, Item.title == title).limit(1)
    )


def insert_collection(session: Session, values: dict[str, Any]) -> Collection:
    collection = Collection(**values)
    session.add(collection)
    session.flush()
    return collection


def slug_taken(session: Session, slug: str, exclude_id: int | None = None) -> bool:
    stmt = select(Collection.id).where(Collection.slug == slug)
    if exclude_id is not None:
        stmt = stmt.where(Collection.id != exclude_id)
    return session.scalar(stmt.limit(1)) is not None


def list_collections(session: Session, page: Page, public_only: bool) -> dict[str, Any]:
    stmt = select(Collection)
    count = select(func.count()).select_from(Collection)
    if public_only:
        stmt = stmt.where(Collection.is_public.is_(True))
        count = count.where(Collection.is_public.is_(True))
    rows = session.scalars(
        stmt.order_by(Collection.created_at.desc(), Collection.id.desc()).limit(page.limit).offset(page.offset)
    ).all()
    total = int(session.execute(count).scalar_one())
    return {
        "collections": [collection_to_dict(c) for c in rows],
        "pagination": page.envelope(total),
    }


def count_collection_items(session: Session, collection_id: int, public_only: bool) -> int:
    stmt = select(func.count()).select_from(Item).where(Item.collection_id == collection_id)
    if public_only:
        stmt = stmt.where(Item.is_public.is_(True))
    return int(session.execute(stmt).scalar_one())


def collection_media_urls(session: Session, collection_id: int) -> list[tuple[str | None, str | None]]:
    return [
        (m, t)
        for m, t in session.execute(
            select(Item.media_url, Item.thumbnail_url).where(Item.collection_id == collection_id)
        ).all()
    ]


def delete_collection_rows(session: Session, collection_id: int) -> int:
    """Explicit cascade: every item of the collection, then the collection."""
    item_ids = session.scalars(select(Item.id).where(Item.collection_id == collection_id)).all()
    delete_item_rows(session, item_ids)
    session.execute(delete(Collection).where(Collection.id == collection_id))
    logger.info("Deleted collection %s with %d items", collection_id, len(item_ids))
    return len(item_ids)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def count_users(session: Session) -> int:
    return int(session.execute(select(func.count()).select_from(User)).scalar_one())


def find_user_by_email(session: Session, email: str) -> User | None:
    return session.scalar(select(User).where(User.email == email))


def insert_user(session: Session, email: str, password_hash: str, name: str | None, role: str) -> User:
    user = User(email=email, password_hash=password_hash, name=name, role=role)
    session.add(user)
    session.flush()
    return user


# ---------------------------------------------------------------------------
# Sitemap
# ---------------------------------------------------------------------------

def public_collection_slugs(session: Session) -> list[tuple[str, datetime | None]]:
    return [
        (slug, updated)
        for slug, updated in session.execute(
            select(Collection.slug, Collection.updated_at)
            .where(Collection.is_public.is_(True))
            .order_by(Collection.updated_at.desc())
        ).all()
    ]


def public_item_ids(session: Session, limit: int = 1000) -> list[tuple[int, datetime | None]]:
    return [
        (item_id, updated)
        for item_id, updated in session.execute(
            select(Item.id, Item.updated_at)
            .join(Collection, Collection.id == Item.collection_id)
            .where(Item.is_public.is_(True), Collection.is_public.is_(True))
            .order_by(Item.updated_at.desc())
            .limit(limit)
        ).all()
    ]
