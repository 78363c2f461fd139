"""
Full-text search over items.

Workflow
--------
1) Read `q`, `limit` and `offset` from the query string. `q` is required.

2) Match `q` against the search index (title, description and free-text
   content of every item) using the database's own text search:

      SQLite      FTS5 `MATCH`, ranked by bm25, `snippet()` highlights
      PostgreSQL  `websearch_to_tsquery`, ranked by `ts_rank`, `ts_headline`

   Matches are wrapped in <mark>...</mark> in each hit's `snippet`.

3) Apply the usual visibility gate for anonymous callers and return the same
   pagination envelope as `GET /api/items`, plus the echoed `query`.

Notes
-----
* With SQLite every search term is quoted before it reaches FTS5, so input
  like `AND (` is matched as text instead of failing as bad syntax.
* All calls are fully parameterized.
"""

from __future__ import annotations

from typing import Any, Dict

from flask import request

from recollect import gateway
from recollect.context import current_requester, services
from recollect.errors import ValidationError, json_errors
from recollect.filters import parse_page
from recollect.visibility import restrict_to_public


@json_errors("Search failed")
def search() -> Dict[str, Any]:
    """
    GET /api/search?q=&limit=&offset=

    Returns
    -------
    dict
        {
          "items": [ {..., "snippet": "...<mark>term</mark>..."}, ... ],
          "pagination": { "total", "limit", "offset", "hasMore" },
          "query": "<q>"
        }
    """
    q = (request.args.get("q") or "").strip()
    if not q:
        raise ValidationError("Query parameter required")

    public_only = restrict_to_public(current_requester())
    page = parse_page(request.args)

    with services().unit_of_work() as session:
        return gateway.search_items(session, q, page, public_only)
