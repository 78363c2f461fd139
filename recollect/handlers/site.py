"""
Plain Flask routes that live outside the OpenAPI document:

- GET /health         database + session store probes
- GET /media/<key>    stream an uploaded blob
- GET /sitemap.xml    public collections and items for crawlers
- GET /robots.txt
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from xml.sax.saxutils import escape

from flask import Response, jsonify, request
from sqlalchemy import text

from recollect import gateway
from recollect.context import services
from recollect.storage import CACHE_CONTROL

logger = logging.getLogger(__name__)

STATIC_PAGES = ("/search", "/about", "/contact")


def health():
    svc = services()
    checks: dict[str, str] = {}
    status = "ok"

    try:
        with svc.session_factory() as session:
            ok = session.execute(text("SELECT 1")).scalar() == 1
        checks["database"] = "ok" if ok else "error"
    except Exception as exc:  # noqa: BLE001 - reported, not raised
        logger.warning("health: database probe failed: %s", exc)
        checks["database"] = f"error: {exc}"
        status = "degraded"

    try:
        checks["sessions"] = "ok" if svc.sessions.ping() else "error"
    except Exception as exc:  # noqa: BLE001
        logger.warning("health: session store probe failed: %s", exc)
        checks["sessions"] = f"error: {exc}"
        status = "degraded"

    checks["storage"] = svc.settings.storage_backend

    body = {
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
    return jsonify(body), 200 if status == "ok" else 503


def media(key: str):
    blob = services().blobs.get(key)
    if blob is None:
        return Response("Not found", status=404, mimetype="text/plain")
    return Response(
        blob.data,
        mimetype=blob.content_type,
        headers={"Cache-Control": CACHE_CONTROL},
    )


def _base_url() -> str:
    return (services().settings.site_url or request.host_url).rstrip("/")


def _url_entry(loc: str, priority: str, changefreq: str, lastmod: datetime | None = None) -> str:
    lines = ["  <url>", f"    <loc>{escape(loc)}</loc>"]
    if lastmod is not None:
        lines.append(f"    <lastmod>{lastmod.date().isoformat()}</lastmod>")
    lines.append(f"    <changefreq>{changefreq}</changefreq>")
    lines.append(f"    <priority>{priority}</priority>")
    lines.append("  </url>")
    return "\n".join(lines) + "\n"


def sitemap():
    base = _base_url()
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>\n',
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">\n',
        _url_entry(base, "1.0", "daily"),
    ]
    parts.extend(_url_entry(f"{base}{page}", "0.8", "weekly") for page in STATIC_PAGES)

    with services().session_factory() as session:
        for slug, updated in gateway.public_collection_slugs(session):
            parts.append(_url_entry(f"{base}/collections/{slug}", "0.9", "weekly", updated))
        for item_id, updated in gateway.public_item_ids(session):
            parts.append(_url_entry(f"{base}/items/{item_id}", "0.7", "monthly", updated))

    parts.append("</urlset>")
    return Response("".join(parts), mimetype="application/xml", headers={"Cache-Control": "public, max-age=3600"})


def robots():
    body = f"""User-agent: *
Allow: /

Allow: /collections/
Allow: /items/
Allow: /search
Disallow: /admin/
Disallow: /api/auth/
Disallow: /api/upload

Allow: /media/*

Crawl-delay: 1

Sitemap: {_base_url()}/sitemap.xml
"""
    return Response(body, mimetype="text/plain", headers={"Cache-Control": "public, max-age=86400"})
