"""Key-value session store backed by the `sessions` table.

Each login writes one JSON value under a random key; the key travels to the
browser in the `session` cookie. Values carry their own expiry and are
treated as absent once expired, whether or not `purge_expired` has run yet.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select, text
from sqlalchemy.orm import Session, sessionmaker

from recollect.models import SessionRecord, utcnow

logger = logging.getLogger(__name__)


class SessionStore:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def put(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        """Upsert *key* with *value*, expiring *ttl_seconds* from now."""
        expires_at = utcnow() + timedelta(seconds=ttl_seconds)
        with self._session_factory.begin() as db:
            record = db.get(SessionRecord, key)
            if record is None:
                db.add(SessionRecord(key=key, value=value, expires_at=expires_at))
            else:
                record.value = value
                record.expires_at = expires_at

    def get(self, key: str, now: datetime | None = None) -> dict[str, Any] | None:
        """Return the value for *key*, or None when missing or expired."""
        now = now or utcnow()
        with self._session_factory() as db:
            record = db.get(SessionRecord, key)
            if record is None or record.expires_at <= now:
                return None
            return dict(record.value)

    def delete(self, key: str) -> None:
        with self._session_factory.begin() as db:
            db.execute(delete(SessionRecord).where(SessionRecord.key == key))

    def purge_expired(self, now: datetime | None = None) -> int:
        """Remove expired sessions; returns how many were deleted."""
        now = now or utcnow()
        with self._session_factory.begin() as db:
            expired = db.scalars(select(SessionRecord.key).where(SessionRecord.expires_at <= now)).all()
            if expired:
                db.execute(delete(SessionRecord).where(SessionRecord.key.in_(expired)))
        logger.info("Purged %d expired sessions", len(expired))
        return len(expired)

    def ping(self) -> bool:
        with self._session_factory() as db:
            return db.execute(text("SELECT 1")).scalar() == 1
