"""
Shared fixtures: a fresh SQLite database and media directory per test, an
admin bearer token, and a small catalogue.

Run with:
    pytest -v
"""

import pytest

from recollect import gateway
from recollect.auth import create_token, hash_password
from recollect.config import Settings
from recollect.context import EXTENSION_KEY
from recollect.main import create_app
from recollect.models import MetadataField
from recollect.storage import LocalBlobStore
from recollect.uploads import MIB

JWT_SECRET = "test-secret"


# ============================================================================
# APP
# ============================================================================

@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'recollect.db'}",
        jwt_secret=JWT_SECRET,
        max_upload_size=MIB,
        media_root=str(tmp_path / "media"),
        site_url="https://collections.example.com",
        environment="test",
        log_level="WARNING",
    )


@pytest.fixture
def app(settings, tmp_path):
    return create_app(settings, blobs=LocalBlobStore(tmp_path / "media"))


@pytest.fixture
def svc(app):
    return app.app.extensions[EXTENSION_KEY]


@pytest.fixture
def client(app):
    with app.test_client() as c:
        yield c


@pytest.fixture
def admin(svc):
    """Create an admin user and return (user_id, bearer headers)."""
    with svc.unit_of_work() as session:
        user = gateway.insert_user(session, "admin@example.com", hash_password("hunter22"), "Admin", "admin")
        user_id = user.id
    token = create_token({"sub": str(user_id), "email": "admin@example.com", "role": "admin"}, JWT_SECRET, 3600)
    return user_id, {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth(admin):
    return admin[1]


# ============================================================================
# CATALOGUE
# ============================================================================

def _item(session, collection, title, kind, public=True, tags=(), fields=None, content=None):
    item = gateway.insert_item(
        session,
        {
            "collection_id": collection.id,
            "title": title,
            "description": f"Description of {title}",
            "item_type": kind,
            "media_url": f"/media/{title.lower().replace(' ', '-')}",
            "thumbnail_url": None,
            "is_public": public,
        },
    )
    gateway.set_tags(session, item.id, list(tags))
    gateway.upsert_metadata_values(session, item.id, fields or {})
    gateway.write_search_entry(session, item, content)
    return item.id


@pytest.fixture
def catalog(svc):
    """
    photos (public)
      City Hall 1920    image     public   Architecture   creator=Unknown
      Main Street 1935  image     public   Architecture   creator=John Smith
      Charter           document  public                  creator=Unknown
      Secret Draft      image     PRIVATE                 creator=Unknown
    vault (PRIVATE)
      Vault Tape        audio     public                  creator=Archive
    """
    with svc.unit_of_work() as session:
        session.add_all(
            [
                MetadataField(name="creator", label="Creator", field_type="text", is_facet=True, display_order=1),
                MetadataField(name="location", label="Location", field_type="text", is_facet=True, display_order=2),
                MetadataField(name="date", label="Date", field_type="date", is_facet=False, display_order=3),
            ]
        )
        session.flush()

        photos = gateway.insert_collection(session, {"slug": "photos", "title": "Photos", "is_public": True})
        vault = gateway.insert_collection(session, {"slug": "vault", "title": "Vault", "is_public": False})

        ids = {
            "city_hall": _item(
                session, photos, "City Hall 1920", "image", tags=["Architecture"],
                fields={"creator": "Unknown", "date": "1920-06-15"},
                content="opening ceremony downtown",
            ),
            "main_street": _item(
                session, photos, "Main Street 1935", "image", tags=["Architecture"],
                fields={"creator": "John Smith"},
                content="aerial photography downtown",
            ),
            "charter": _item(
                session, photos, "Charter", "document", fields={"creator": "Unknown"},
                content="legal founding charter",
            ),
            "secret": _item(
                session, photos, "Secret Draft", "image", public=False, fields={"creator": "Unknown"},
                content="unreleased ceremony plans",
            ),
            "tape": _item(
                session, vault, "Vault Tape", "audio", fields={"creator": "Archive"},
                content="ceremony speech recording",
            ),
        }
        ids["photos"] = photos.id
        ids["vault"] = vault.id
    return ids
