"""
Application factory (Connexion + Flask).

Startup order
-------------
1) `Settings` come from the environment unless the caller passes them, and
   logging is configured from them.
2) The engine, session factory, blob store and session store are built, and
   `init_db()` creates whatever tables are missing.
3) `openapi.yaml` is mounted under `/api`; Swagger UI is served at `/api/ui`.
   Browser callers get CORS headers for the configured origins.
4) Routes outside the API document are added as plain Flask rules
   (`/health`, `/media/<key>`, `/sitemap.xml`, `/robots.txt`).

Notes
-----
- Every path in `openapi.yaml` names its handler by dotted `operationId`,
  for instance `recollect.handlers.items.list_items`.
- `meta_<field>` filters are open-ended query parameters, so the API is
  registered without strict parameter validation.
- Production serves `recollect.asgi:app` through uvicorn; running this
  module directly starts a dev server.
"""

from __future__ import annotations

import logging
from pathlib import Path

import connexion
from connexion import FlaskApp
from connexion.middleware import MiddlewarePosition
from starlette.middleware.cors import CORSMiddleware
from werkzeug.exceptions import RequestEntityTooLarge

from recollect.config import Settings, configure_logging
from recollect.context import EXTENSION_KEY, Services
from recollect.db import init_db, make_engine, make_session_factory
from recollect.handlers import site, upload
from recollect.sessions import SessionStore
from recollect.storage import BlobStore, make_blob_store
from recollect.uploads import MIB

logger = logging.getLogger(__name__)

SPEC_DIR = Path(__file__).resolve().parent

# Room for multipart boundaries and the small form fields next to the file.
MULTIPART_OVERHEAD = MIB

CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
CORS_HEADERS = ["Content-Type", "Authorization"]
CORS_MAX_AGE = 86400


def create_app(settings: Settings | None = None, blobs: BlobStore | None = None) -> FlaskApp:
    """
    Wire settings, storage and the HTTP surface into one app.

    Parameters
    ----------
    settings : Settings, optional
        Defaults to `Settings.from_env()`.
    blobs : BlobStore, optional
        Overrides the store chosen by `settings.storage_backend`.

    Returns
    -------
    connexion.FlaskApp
        The ASGI app; its Flask instance (config, extensions) is `.app`.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    engine = make_engine(settings.database_url)
    init_db(engine)
    session_factory = make_session_factory(engine)

    cx = connexion.FlaskApp(__name__, specification_dir=SPEC_DIR)
    cx.add_api("openapi.yaml", strict_validation=False, validate_responses=False)

    origins = list(settings.cors_origins)
    cx.add_middleware(
        CORSMiddleware,
        position=MiddlewarePosition.BEFORE_EXCEPTION,
        allow_origins=origins,
        # Credentialed requests need an explicit origin list.
        allow_credentials="*" not in origins,
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
        max_age=CORS_MAX_AGE,
    )

    flask_app = cx.app
    flask_app.config["EXPOSE_ERRORS"] = settings.is_development
    # werkzeug refuses to parse bodies past this, before any handler reads them.
    flask_app.config["MAX_CONTENT_LENGTH"] = settings.max_upload_size + MULTIPART_OVERHEAD
    flask_app.register_error_handler(RequestEntityTooLarge, upload.body_too_large)
    flask_app.extensions[EXTENSION_KEY] = Services(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        blobs=blobs or make_blob_store(settings),
        sessions=SessionStore(session_factory),
    )

    cx.add_url_rule("/health", "health", site.health, methods=["GET"])
    cx.add_url_rule("/media/<path:key>", "media", site.media, methods=["GET"])
    cx.add_url_rule("/sitemap.xml", "sitemap", site.sitemap, methods=["GET"])
    cx.add_url_rule("/robots.txt", "robots", site.robots, methods=["GET"])

    logger.info("Recollect API ready (db=%s, storage=%s)", engine.dialect.name, settings.storage_backend)
    return cx


# ------------------------------
# Local development entrypoint
# ------------------------------

if __name__ == "__main__":
    # Starts a development server; in production use uvicorn with recollect.asgi:app.
    create_app().run(port=8000)
