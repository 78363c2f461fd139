"""
Per-app services and per-request context.

`create_app()` builds one `Services` bundle (settings, database, blob store,
session store) and stores it on the Flask app. Handlers fetch it with
`services()` and resolve the caller with `current_requester()`; neither
function caches anything between requests.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from flask import current_app, request
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from recollect.auth import resolve_requester
from recollect.config import Settings
from recollect.sessions import SessionStore
from recollect.storage import BlobStore
from recollect.visibility import Requester

EXTENSION_KEY = "recollect"


@dataclass
class Services:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker[Session]
    blobs: BlobStore
    sessions: SessionStore

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        """One transaction: commit on success, roll back on any exception."""
        with self.session_factory.begin() as session:
            yield session


def services() -> Services:
    return current_app.extensions[EXTENSION_KEY]


def current_requester() -> Requester:
    svc = services()
    return resolve_requester(request.headers, request.cookies, svc.settings.jwt_secret, svc.sessions)
