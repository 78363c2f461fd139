"""
ORM models:
- User: an authenticated editor/admin of the site.
- Collection: groups items (e.g., "Historical Photographs").
- Item: a single media asset + JSON metadata, belonging to one collection.
- Tag / ItemTag: many-to-many labels on items.
- MetadataField / ItemMetadata: typed, facetable per-item values.
- SearchIndexEntry: text shadow of an item consumed by full-text search.
- SessionRecord: key-value store for login sessions.

Cascades are *not* delegated to the database: `recollect.gateway` deletes
children explicitly so the behavior is the same on every backend.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from recollect.db import Base


def utcnow() -> datetime:
    # Stored naive (UTC) so SQLite and PostgreSQL compare the same way.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    name: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(32), default="editor")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Collection(Base):
    __tablename__ = "collections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # URL-safe unique name derived from the title (e.g., "historical-photos")
    slug: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text)
    # "metadata" is reserved on declarative classes; keep the column name anyway
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, default=dict)
    thumbnail_url: Mapped[str | None] = mapped_column(String(1024))
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    items: Mapped[list["Item"]] = relationship(back_populates="collection")


class Item(Base):
    __tablename__ = "items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    collection_id: Mapped[int] = mapped_column(ForeignKey("collections.id"), index=True)
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text)
    # One of recollect.kinds.ItemKind values
    item_type: Mapped[str] = mapped_column(String(32), index=True)
    media_url: Mapped[str | None] = mapped_column(String(1024))
    thumbnail_url: Mapped[str | None] = mapped_column(String(1024))
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, default=dict)
    rights_statement: Mapped[str | None] = mapped_column(Text)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    collection: Mapped[Collection] = relationship(back_populates="items")


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(255), unique=True, index=True)


class ItemTag(Base):
    __tablename__ = "item_tags"

    item_id: Mapped[int] = mapped_column(ForeignKey("items.id"), primary_key=True)
    tag_id: Mapped[int] = mapped_column(ForeignKey("tags.id"), primary_key=True)


class MetadataField(Base):
    __tablename__ = "metadata_fields"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Used as the filter key suffix: ?meta_<name>=value
    name: Mapped[str] = mapped_column(String(255), unique=True)
    label: Mapped[str | None] = mapped_column(String(255))
    # "text", "date" or "select"
    field_type: Mapped[str] = mapped_column(String(32), default="text")
    is_facet: Mapped[bool] = mapped_column(Boolean, default=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0)


class ItemMetadata(Base):
    __tablename__ = "item_metadata"
    __table_args__ = (UniqueConstraint("item_id", "field_id", name="uq_item_field"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id"), index=True)
    field_id: Mapped[int] = mapped_column(ForeignKey("metadata_fields.id"), index=True)
    value: Mapped[str | None] = mapped_column(Text)


class SearchIndexEntry(Base):
    __tablename__ = "search_index"

    item_id: Mapped[int] = mapped_column(ForeignKey("items.id"), primary_key=True, autoincrement=False)
    title: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    content: Mapped[str | None] = mapped_column(Text)


class SessionRecord(Base):
    __tablename__ = "sessions"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[dict] = mapped_column(JSON)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
