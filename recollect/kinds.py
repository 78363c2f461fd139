"""
Item kinds.

The five kinds an item can have form a closed set. Code that behaves
differently per kind goes through `ItemKind` and handles every member
explicitly (see `media_element` below) instead of sniffing MIME strings at
the call site.
"""

from __future__ import annotations

from enum import Enum


class ItemKind(str, Enum):
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"
    VIDEO = "video"
    MODEL_3D = "3d"

    @classmethod
    def parse(cls, value: str | None) -> "ItemKind | None":
        """Return the kind for a wire value, or None if it is not one of ours."""
        if value is None:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None

    @classmethod
    def values(cls) -> list[str]:
        return [k.value for k in cls]


def media_element(kind: ItemKind) -> str:
    """
    Name of the HTML element used to present an item of this kind.

    Consumed by the sitemap and by API clients that render previews.
    """
    if kind is ItemKind.IMAGE:
        return "img"
    if kind is ItemKind.DOCUMENT:
        return "iframe"
    if kind is ItemKind.AUDIO:
        return "audio"
    if kind is ItemKind.VIDEO:
        return "video"
    if kind is ItemKind.MODEL_3D:
        return "model-viewer"
    raise AssertionError(f"unhandled item kind: {kind!r}")
