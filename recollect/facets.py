"""
Facet aggregation for the item listing.

Facets describe the whole visible catalogue, not the current result page:
only the visibility gate is applied, never the collection/type/tag/meta
filters of the request. Counts therefore stay stable while a user narrows a
listing down.

Result shape
------------
{
  "creator": {"field_type": "text", "values": [{"value": "...", "count": 3}, ...]},
  ...
  "type":    {"field_type": "text", "values": [{"value": "image", "count": 2}, ...]}
}

Metadata facets are limited to their 10 most frequent values and omitted
entirely when no visible item has a value. The `type` facet is always
present and lists every kind with at least one visible item.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from recollect.visibility import PUBLIC_PARAMS, public_clause

logger = logging.getLogger(__name__)

TOP_VALUES = 10


def _gate(public_only: bool) -> tuple[str, dict[str, Any]]:
    if public_only:
        return f" AND {public_clause()}", dict(PUBLIC_PARAMS)
    return "", {}


def compute_facets(session: Session, public_only: bool) -> dict[str, dict[str, Any]]:
    gate, gate_params = _gate(public_only)
    facets: dict[str, dict[str, Any]] = {}

    fields = session.execute(
        text(
            "SELECT id, name, field_type FROM metadata_fields "
            "WHERE is_facet = :yes ORDER BY display_order, id"
        ),
        {"yes": True},
    ).mappings().all()

    for f in fields:
        rows = session.execute(
            text(
                "SELECT im.value AS value, COUNT(DISTINCT i.id) AS count "
                "FROM item_metadata im "
                "JOIN items i ON im.item_id = i.id "
                "JOIN collections c ON i.collection_id = c.id "
                f"WHERE im.field_id = :field_id{gate} "
                "GROUP BY im.value "
                "ORDER BY count DESC, im.value "
                "LIMIT :top"
            ),
            {"field_id": f["id"], "top": TOP_VALUES, **gate_params},
        ).mappings().all()
        if rows:
            facets[f["name"]] = {
                "field_type": f["field_type"],
                "values": [{"value": r["value"], "count": int(r["count"])} for r in rows],
            }

    types = session.execute(
        text(
            "SELECT i.item_type AS value, COUNT(*) AS count "
            "FROM items i JOIN collections c ON i.collection_id = c.id "
            f"WHERE 1 = 1{gate} "
            "GROUP BY i.item_type "
            "ORDER BY count DESC, i.item_type"
        ),
        gate_params,
    ).mappings().all()
    facets["type"] = {
        "field_type": "text",
        "values": [{"value": r["value"], "count": int(r["count"])} for r in types],
    }

    logger.debug("computed %d facets (public_only=%s)", len(facets), public_only)
    return facets
