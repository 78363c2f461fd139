"""
Filter compiler for item listings.

Turns the query string of `GET /api/items` into a list of SQL predicate
clauses, each carrying its own bound parameters. Nothing coming from the
request is ever interpolated into SQL text: clause text is fixed, only the
bind names vary (`:f0`, `:f1_field`, ...).

Recognized keys
---------------
collection     collection id or slug
type           item kind (image, document, audio, video, 3d)
tag            tag slug; item must carry that tag
meta_<field>   exact match on the item's value for metadata field <field>

Every other key (limit, offset, facets, utm_source, ...) is ignored.

The compiled clauses are used verbatim by both the row query and the count
query in `recollect.gateway`, which is what keeps `pagination.total` equal to
the number of rows the listing would return without LIMIT/OFFSET.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from recollect.visibility import PUBLIC_PARAMS, public_clause

META_PREFIX = "meta_"

DEFAULT_LIMIT = 20
DEFAULT_OFFSET = 0
MAX_LIMIT = 100


@dataclass(frozen=True)
class Clause:
    """One atomic predicate and the values bound to its placeholders."""

    sql: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CompiledFilter:
    clauses: tuple[Clause, ...]

    @property
    def params(self) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for clause in self.clauses:
            merged.update(clause.params)
        return merged

    def where(self, public_only: bool) -> tuple[str, dict[str, Any]]:
        """
        Full WHERE condition (without the keyword) plus its parameters.

        The visibility gate, when active, is prepended to the filter clauses.
        """
        parts: list[str] = []
        params: dict[str, Any] = {}
        if public_only:
            parts.append(public_clause())
            params.update(PUBLIC_PARAMS)
        for clause in self.clauses:
            parts.append(f"({clause.sql})")
            params.update(clause.params)
        if not parts:
            return "1 = 1", params
        return " AND ".join(parts), params


def _iter_pairs(args: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> Iterable[tuple[str, Any]]:
    if isinstance(args, Mapping):
        return args.items()
    return args


def compile_filters(args: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> CompiledFilter:
    """
    Build the clause list for a mapping of query parameters.

    Clause order follows the fixed order collection, type, tag, then the
    `meta_*` keys in the order they were given. Empty values are ignored.
    """
    pairs = [(str(k), v) for k, v in _iter_pairs(args) if v not in (None, "")]
    lookup = dict(pairs)
    clauses: list[Clause] = []
    n = 0

    def bind() -> str:
        nonlocal n
        name = f"f{n}"
        n += 1
        return name

    collection = lookup.get("collection")
    if collection is not None:
        p = bind()
        clauses.append(
            Clause(
                f"CAST(i.collection_id AS VARCHAR(32)) = :{p} OR c.slug = :{p}",
                {p: str(collection)},
            )
        )

    kind = lookup.get("type")
    if kind is not None:
        p = bind()
        clauses.append(Clause(f"i.item_type = :{p}", {p: str(kind)}))

    tag = lookup.get("tag")
    if tag is not None:
        p = bind()
        clauses.append(
            Clause(
                "EXISTS (SELECT 1 FROM item_tags it JOIN tags t ON it.tag_id = t.id "
                f"WHERE it.item_id = i.id AND t.slug = :{p})",
                {p: str(tag)},
            )
        )

    seen: set[str] = set()
    for key, value in pairs:
        if not key.startswith(META_PREFIX) or key in seen:
            continue
        seen.add(key)
        field_name = key[len(META_PREFIX):]
        if not field_name:
            continue
        p = bind()
        clauses.append(
            Clause(
                "EXISTS (SELECT 1 FROM item_metadata im "
                "JOIN metadata_fields mf ON im.field_id = mf.id "
                f"WHERE im.item_id = i.id AND mf.name = :{p}_field AND im.value = :{p}_value)",
                {f"{p}_field": field_name, f"{p}_value": str(value)},
            )
        )

    return CompiledFilter(tuple(clauses))


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Page:
    limit: int = DEFAULT_LIMIT
    offset: int = DEFAULT_OFFSET

    def envelope(self, total: int) -> dict[str, Any]:
        return {
            "total": total,
            "limit": self.limit,
            "offset": self.offset,
            "hasMore": self.offset + self.limit < total,
        }


def _non_negative(raw: Any, default: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value >= 0 else default


def parse_page(args: Mapping[str, Any]) -> Page:
    """Read `limit`/`offset`, falling back to defaults for junk or negatives."""
    limit = min(_non_negative(args.get("limit"), DEFAULT_LIMIT), MAX_LIMIT)
    offset = _non_negative(args.get("offset"), DEFAULT_OFFSET)
    return Page(limit=limit, offset=offset)
