"""
Operator commands.

    recollect init-db                 create every table (and the search index)
    recollect create-admin EMAIL      add an admin user (prompts for a password)
    recollect seed                    load a small sample catalogue
    recollect purge-sessions          drop expired login sessions
    recollect gen-secret [--bytes N]  print a random value for JWT_SECRET

All commands read the same environment variables as the API
(`DATABASE_URL`, `LOG_LEVEL`, ...).
"""

from __future__ import annotations

import argparse
import getpass
import logging
import secrets
import sys

from sqlalchemy import select

from recollect import gateway
from recollect.auth import hash_password
from recollect.config import Settings, configure_logging
from recollect.db import init_db, make_engine, make_session_factory
from recollect.models import MetadataField
from recollect.sessions import SessionStore
from recollect.slugs import slugify

logger = logging.getLogger(__name__)

SAMPLE_FIELDS = [
    # name, label, field_type, is_facet, display_order
    ("creator", "Creator", "text", True, 1),
    ("date", "Date", "date", False, 2),
    ("location", "Location", "text", True, 3),
]

SAMPLE_COLLECTIONS = [
    ("Historical Photographs", "A collection of historical photographs from our archives"),
    ("Manuscripts & Documents", "Rare manuscripts and historical documents"),
    ("Audio Archives", "Historical audio recordings and oral histories"),
]

SAMPLE_ITEMS = [
    {
        "collection": 0,
        "title": "City Hall Opening Ceremony 1920",
        "description": "Black and white photograph of the city hall opening ceremony",
        "item_type": "image",
        "media_url": "/media/sample-1.jpg",
        "thumbnail_url": "/media/sample-1-thumb.jpg",
        "tags": ["Architecture", "Government", "1920s", "Black and White"],
        "fields": {"creator": "Unknown Photographer", "date": "1920-06-15", "location": "City Hall, Downtown"},
        "content": "historical architecture government building ceremony 1920s",
    },
    {
        "collection": 0,
        "title": "Main Street 1935",
        "description": "Aerial view of Main Street during the 1930s",
        "item_type": "image",
        "media_url": "/media/sample-2.jpg",
        "thumbnail_url": "/media/sample-2-thumb.jpg",
        "tags": ["Architecture", "Black and White"],
        "fields": {"creator": "John Smith Photography", "date": "1935-08-22", "location": "Main Street"},
        "content": "street urban aerial photography 1930s downtown",
    },
    {
        "collection": 1,
        "title": "Charter Document",
        "description": "Original city charter from 1850",
        "item_type": "document",
        "media_url": "/media/charter.pdf",
        "thumbnail_url": "/media/charter-thumb.jpg",
        "tags": ["Government"],
        "fields": {"creator": "City Clerk Office", "date": "1850-01-01"},
        "content": "legal document charter founding government historical",
    },
    {
        "collection": 2,
        "title": "Mayor Speech 1965",
        "description": "Audio recording of mayor inaugural speech",
        "item_type": "audio",
        "media_url": "/media/speech.mp3",
        "thumbnail_url": "/media/audio-thumb.png",
        "tags": [],
        "fields": {"creator": "City Archives", "date": "1965-01-20"},
        "content": "speech audio government mayor political 1960s",
    },
]


def gen_urlsafe(nbytes: int) -> str:
    # token_urlsafe returns Base64URL (A-Z a-z 0-9 - _), no '=' padding
    return secrets.token_urlsafe(nbytes)


def _session_factory(settings: Settings):
    engine = make_engine(settings.database_url)
    init_db(engine)
    return make_session_factory(engine)


def cmd_init_db(settings: Settings, args: argparse.Namespace) -> int:
    _session_factory(settings)
    print("Database ready")
    return 0


def cmd_create_admin(settings: Settings, args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass("Password: ")
    if not password:
        print("A password is required", file=sys.stderr)
        return 1

    factory = _session_factory(settings)
    with factory.begin() as session:
        if gateway.find_user_by_email(session, args.email) is not None:
            print(f"User {args.email} already exists", file=sys.stderr)
            return 1
        user = gateway.insert_user(session, args.email, hash_password(password), args.name, "admin")
        print(f"Created admin {user.email} (id={user.id})")
    return 0


def _ensure_fields(session) -> None:
    for name, label, field_type, is_facet, order in SAMPLE_FIELDS:
        if session.scalar(select(MetadataField).where(MetadataField.name == name)) is None:
            session.add(
                MetadataField(
                    name=name, label=label, field_type=field_type, is_facet=is_facet, display_order=order
                )
            )
    session.flush()


def cmd_seed(settings: Settings, args: argparse.Namespace) -> int:
    factory = _session_factory(settings)
    with factory.begin() as session:
        _ensure_fields(session)

        collections = []
        for title, description in SAMPLE_COLLECTIONS:
            slug = slugify(title)
            existing = gateway.find_collection(session, slug)
            if existing is not None:
                collections.append(existing)
                continue
            collections.append(
                gateway.insert_collection(
                    session, {"slug": slug, "title": title, "description": description, "is_public": True}
                )
            )

        created = 0
        for sample in SAMPLE_ITEMS:
            collection = collections[sample["collection"]]
            if gateway.find_item_by_title(session, collection.id, sample["title"]) is not None:
                continue
            item = gateway.insert_item(
                session,
                {
                    "collection_id": collection.id,
                    "title": sample["title"],
                    "description": sample["description"],
                    "item_type": sample["item_type"],
                    "media_url": sample["media_url"],
                    "thumbnail_url": sample["thumbnail_url"],
                    "is_public": True,
                },
            )
            gateway.set_tags(session, item.id, sample["tags"])
            gateway.upsert_metadata_values(session, item.id, sample["fields"])
            gateway.write_search_entry(session, item, sample["content"])
            created += 1

    print(f"Seeded {len(collections)} collections and {created} items")
    return 0


def cmd_purge_sessions(settings: Settings, args: argparse.Namespace) -> int:
    removed = SessionStore(_session_factory(settings)).purge_expired()
    print(f"Removed {removed} expired sessions")
    return 0


def cmd_gen_secret(settings: Settings, args: argparse.Namespace) -> int:
    print(gen_urlsafe(args.bytes))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="recollect", description="Recollect operator commands")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create tables").set_defaults(func=cmd_init_db)

    admin = sub.add_parser("create-admin", help="add an admin user")
    admin.add_argument("email")
    admin.add_argument("--name", default=None)
    admin.add_argument("--password", default=None, help="prompted for when omitted")
    admin.set_defaults(func=cmd_create_admin)

    sub.add_parser("seed", help="load sample collections and items").set_defaults(func=cmd_seed)
    sub.add_parser("purge-sessions", help="drop expired sessions").set_defaults(func=cmd_purge_sessions)

    secret = sub.add_parser("gen-secret", help="print a random secret")
    secret.add_argument("--bytes", type=int, default=48, help="random bytes (default: 48 ~ 64 chars)")
    secret.set_defaults(func=cmd_gen_secret)
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return args.func(settings, args)


if __name__ == "__main__":
    sys.exit(main())
