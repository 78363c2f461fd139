"""
Upload validation, storage-key derivation and item-kind inference.

Validation order
----------------
1) size: declared size above the ceiling -> PayloadTooLarge
2) type: accepted when the declared MIME type OR the filename extension
   matches an allowed group (union of both signals, never intersection).
   `application/octet-stream` alone matches nothing; glb/obj/stl files
   pass on their extension whatever MIME type the browser sent.

Storage keys look like

    1718000000000-k3x9qa-Main_Street_1935.jpg

i.e. millisecond timestamp, a short random token and the sanitized original
filename. Keys sort by upload time, which makes buckets easy to eyeball.
"""

from __future__ import annotations

import re
import secrets
import string
import time
from dataclasses import dataclass
from typing import Callable

from recollect.errors import PayloadTooLarge, UnsupportedMediaType
from recollect.kinds import ItemKind

GENERIC_BINARY = "application/octet-stream"
MIB = 1024 * 1024

# MIME type -> extensions that are accepted on their own.
ALLOWED_TYPES: dict[str, tuple[str, ...]] = {
    # Images
    "image/jpeg": ("jpg", "jpeg"),
    "image/png": ("png",),
    "image/gif": ("gif",),
    "image/webp": ("webp",),
    "image/svg+xml": ("svg",),
    # Documents
    "application/pdf": ("pdf",),
    # Audio
    "audio/mpeg": ("mp3",),
    "audio/wav": ("wav",),
    "audio/ogg": ("ogg",),
    "audio/webm": ("webm",),
    # Video
    "video/mp4": ("mp4",),
    "video/webm": ("webm",),
    "video/ogg": ("ogv",),
    # 3D
    "model/gltf-binary": ("glb",),
    "model/gltf+json": ("gltf",),
}

# 3D formats browsers often send as application/octet-stream. The extension
# alone admits them; the generic MIME type alone admits nothing.
GENERIC_BINARY_EXTENSIONS = ("glb", "obj", "stl")

MODEL_EXTENSIONS = ("glb", "gltf", "obj", "stl")

_TOKEN_ALPHABET = string.ascii_lowercase + string.digits
_UNSAFE = re.compile(r"[^A-Za-z0-9.-]")


@dataclass(frozen=True)
class UploadCandidate:
    filename: str
    size: int
    content_type: str = GENERIC_BINARY

    @property
    def extension(self) -> str:
        if "." not in self.filename:
            return ""
        return self.filename.rsplit(".", 1)[-1].lower()


def normalize_content_type(content_type: str | None) -> str:
    """Strip parameters (`; charset=...`) and fall back to octet-stream."""
    if not content_type:
        return GENERIC_BINARY
    return content_type.split(";", 1)[0].strip().lower() or GENERIC_BINARY


def is_allowed(content_type: str, extension: str) -> bool:
    if extension in GENERIC_BINARY_EXTENSIONS:
        return True
    for mime, exts in ALLOWED_TYPES.items():
        if content_type == mime or extension in exts:
            return True
    return False


def too_large_message(max_size: int) -> str:
    return f"File size exceeds maximum of {max_size / MIB:g}MB"


def validate_upload(candidate: UploadCandidate, max_size: int) -> None:
    """
    Raise if the upload must be rejected.

    Raises
    ------
    PayloadTooLarge
        declared size exceeds `max_size` bytes
    UnsupportedMediaType
        neither MIME type nor extension is in ALLOWED_TYPES
    """
    if candidate.size > max_size:
        raise PayloadTooLarge(too_large_message(max_size))
    if not is_allowed(normalize_content_type(candidate.content_type), candidate.extension):
        raise UnsupportedMediaType("File type not allowed")


def sanitize_filename(filename: str) -> str:
    return _UNSAFE.sub("_", filename)


def random_token(length: int = 6) -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def derive_key(
    filename: str,
    clock: Callable[[], float] = time.time,
    token: Callable[[], str] = random_token,
) -> str:
    """`<ms timestamp>-<random token>-<sanitized filename>`"""
    millis = int(clock() * 1000)
    return f"{millis}-{token()}-{sanitize_filename(filename)}"


def infer_kind(content_type: str | None, filename: str | None = None) -> ItemKind:
    """
    Map a MIME type (and optionally a filename) onto an item kind.

    Unknown types default to DOCUMENT rather than failing.
    """
    mime = normalize_content_type(content_type)
    ext = filename.rsplit(".", 1)[-1].lower() if filename and "." in filename else ""
    if mime.startswith("image/"):
        return ItemKind.IMAGE
    if mime == "application/pdf":
        return ItemKind.DOCUMENT
    if mime.startswith("audio/"):
        return ItemKind.AUDIO
    if mime.startswith("video/"):
        return ItemKind.VIDEO
    if mime.startswith("model/") or any(e in mime for e in MODEL_EXTENSIONS) or ext in MODEL_EXTENSIONS:
        return ItemKind.MODEL_3D
    return ItemKind.DOCUMENT


def thumbnail_for(media_url: str, content_type: str, requested: bool) -> str:
    """
    Thumbnail URL for a freshly uploaded file.

    No image processing happens here: for raster images the media URL gets
    resize hints that the CDN in front of /media understands.
    """
    if requested and content_type.startswith("image/") and content_type != "image/svg+xml":
        return f"{media_url}?width=400&height=400&fit=cover"
    return media_url
