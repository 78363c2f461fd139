"""Slug helpers for collections and tags."""

from __future__ import annotations

import re
import unicodedata

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(title: str) -> str:
    """
    URL-safe, lowercase ASCII slug for a collection title.

    "Historical Photos"    -> "historical-photos"
    "Café & Bar (1920s)"   -> "cafe-bar-1920s"
    """
    folded = unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii")
    return _NON_ALNUM.sub("-", folded.lower()).strip("-")


def tag_slug(name: str) -> str:
    # Tags keep edge separators ("-rare-" stays distinct from "rare").
    return _NON_ALNUM.sub("-", name.lower())
