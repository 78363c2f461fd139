"""
Database bootstrap utilities.

Responsibilities
----------------
1) Provide the declarative `Base` every ORM model inherits from.
2) Build a SQLAlchemy engine + session factory for a given database URL.
3) Create any missing table, then the full-text search objects that the
   active dialect needs:

   - SQLite:     an FTS5 external-content table `search_index_fts` mirroring
                 `search_index`, kept in sync by triggers.
   - PostgreSQL: a GIN expression index over `to_tsvector(...)` of the same
                 columns.

Notes
-----
- `init_db()` is safe to call on every cold start; `create_all` only creates
  what is missing and the FTS DDL uses IF NOT EXISTS.
- SQLite does not enforce foreign keys unless asked to, so we turn them on
  for every new connection.
"""

from __future__ import annotations

import logging

from sqlalchemy import DDL, Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Full-text search DDL (dialect specific)
# ---------------------------------------------------------------------------

SQLITE_FTS_DDL = [
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS search_index_fts USING fts5(
        title, description, content,
        content='search_index', content_rowid='item_id'
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS search_index_ai AFTER INSERT ON search_index BEGIN
        INSERT INTO search_index_fts(rowid, title, description, content)
        VALUES (new.item_id, new.title, new.description, new.content);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS search_index_ad AFTER DELETE ON search_index BEGIN
        INSERT INTO search_index_fts(search_index_fts, rowid, title, description, content)
        VALUES ('delete', old.item_id, old.title, old.description, old.content);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS search_index_au AFTER UPDATE ON search_index BEGIN
        INSERT INTO search_index_fts(search_index_fts, rowid, title, description, content)
        VALUES ('delete', old.item_id, old.title, old.description, old.content);
        INSERT INTO search_index_fts(rowid, title, description, content)
        VALUES (new.item_id, new.title, new.description, new.content);
    END
    """,
]

POSTGRES_FTS_DDL = [
    """
    CREATE INDEX IF NOT EXISTS ix_search_index_tsv ON search_index USING GIN (
        to_tsvector('english',
            coalesce(title, '') || ' ' || coalesce(description, '') || ' ' || coalesce(content, ''))
    )
    """,
]


def _install_search_ddl() -> None:
    """Attach the FTS DDL to the `search_index` table's after_create event."""
    from recollect.models import SearchIndexEntry

    table = SearchIndexEntry.__table__
    for stmt in SQLITE_FTS_DDL:
        event.listen(table, "after_create", DDL(stmt).execute_if(dialect="sqlite"))
    for stmt in POSTGRES_FTS_DDL:
        event.listen(table, "after_create", DDL(stmt).execute_if(dialect="postgresql"))


# ---------------------------------------------------------------------------
# Engine / sessions
# ---------------------------------------------------------------------------

def _enable_sqlite_fks(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url: str) -> Engine:
    """
    Create an engine for `url`.

    Examples
    --------
    make_engine("sqlite:///recollect.db")
    make_engine("postgresql+psycopg://user:pw@host/recollect")
    """
    engine = create_engine(url, future=True)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_fks)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


_ddl_installed = False


def init_db(engine: Engine) -> None:
    """
    Idempotently ensure every table (and the search index) exists.

    Both `create_app()` and the `init-db` CLI command run it; tables that
    already exist are left untouched.
    """
    global _ddl_installed
    # Importing models registers them on Base.metadata.
    from recollect import models  # noqa: F401

    if not _ddl_installed:
        _install_search_ddl()
        _ddl_installed = True

    Base.metadata.create_all(engine)
    logger.info("[init_db] schema ready on %s", engine.dialect.name)
