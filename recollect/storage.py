"""
Blob storage for uploaded media.

Two interchangeable backends:

- `GCSBlobStore`   Google Cloud Storage (production on Cloud Run)
- `LocalBlobStore` a directory on disk (local development, tests)

Both address objects by the storage key produced by
`recollect.uploads.derive_key`; the public URL of a blob is always
`/media/<key>`, served by the app itself.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from google.cloud import storage  # type: ignore[import]

from recollect.config import Settings

logger = logging.getLogger(__name__)

MEDIA_PREFIX = "/media/"
CACHE_CONTROL = "public, max-age=31536000"


@dataclass
class StoredBlob:
    key: str
    data: bytes
    content_type: str = "application/octet-stream"
    metadata: dict[str, str] = field(default_factory=dict)


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str, metadata: dict[str, str] | None = None) -> None: ...

    def get(self, key: str) -> Optional[StoredBlob]: ...

    def delete(self, key: str) -> None: ...

    def ping(self) -> bool: ...


def media_url(key: str) -> str:
    return f"{MEDIA_PREFIX}{key}"


def key_from_url(url: str | None) -> str | None:
    """
    Recover the storage key from a `/media/<key>` URL.

    Query strings (thumbnail resize hints) are dropped. URLs that do not
    point into our media space (external images, etc.) yield None.
    """
    if not url or not url.startswith(MEDIA_PREFIX):
        return None
    key = url[len(MEDIA_PREFIX):].split("?", 1)[0]
    return key or None


# ---------------------------------------------------------------------------
# Local filesystem
# ---------------------------------------------------------------------------

class LocalBlobStore:
    """Stores each blob as `<root>/<key>` with a `<key>.meta.json` sidecar."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        # Keys never contain "/" (see sanitize_filename), but do not trust callers.
        safe = key.replace("/", "_").replace("\\", "_")
        return self.root / safe

    def put(self, key: str, data: bytes, content_type: str, metadata: dict[str, str] | None = None) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        path.write_bytes(data)
        sidecar = {"content_type": content_type, "metadata": metadata or {}}
        path.with_name(path.name + ".meta.json").write_text(json.dumps(sidecar))

    def get(self, key: str) -> Optional[StoredBlob]:
        path = self._path(key)
        if not path.is_file():
            return None
        meta_path = path.with_name(path.name + ".meta.json")
        sidecar = json.loads(meta_path.read_text()) if meta_path.exists() else {}
        return StoredBlob(
            key=key,
            data=path.read_bytes(),
            content_type=sidecar.get("content_type", "application/octet-stream"),
            metadata=sidecar.get("metadata", {}),
        )

    def delete(self, key: str) -> None:
        path = self._path(key)
        path.unlink(missing_ok=True)
        path.with_name(path.name + ".meta.json").unlink(missing_ok=True)

    def ping(self) -> bool:
        return self.root.exists() or self.root.parent.exists()


# ---------------------------------------------------------------------------
# Google Cloud Storage
# ---------------------------------------------------------------------------

class GCSBlobStore:
    """Stores blobs at gs://<bucket>/<prefix><key>."""

    def __init__(self, bucket_name: str, base_prefix: str = "media/"):
        self.bucket_name = bucket_name
        # Ensure prefix ends with a trailing slash if non-empty
        if base_prefix and not base_prefix.endswith("/"):
            base_prefix = base_prefix + "/"
        self.base_prefix = base_prefix

        # Lazily created client & bucket (reused across requests)
        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            # Application Default Credentials (service account on Cloud Run).
            self._client = storage.Client()
        return self._client

    @property
    def bucket(self) -> storage.Bucket:
        if self._bucket is None:
            self._bucket = self.client.bucket(self.bucket_name)
        return self._bucket

    def _blob_path(self, key: str) -> str:
        return f"{self.base_prefix}{key}"

    def put(self, key: str, data: bytes, content_type: str, metadata: dict[str, str] | None = None) -> None:
        blob = self.bucket.blob(self._blob_path(key))
        blob.cache_control = CACHE_CONTROL
        if metadata:
            blob.metadata = metadata
        blob.upload_from_string(data, content_type=content_type)
        logger.info("Uploaded gs://%s/%s (%d bytes)", self.bucket_name, blob.name, len(data))

    def get(self, key: str) -> Optional[StoredBlob]:
        # get_blob() also loads content type / metadata; None when missing
        blob = self.bucket.get_blob(self._blob_path(key))
        if blob is None:
            return None
        data = blob.download_as_bytes()
        return StoredBlob(
            key=key,
            data=data,
            content_type=blob.content_type or "application/octet-stream",
            metadata=dict(blob.metadata or {}),
        )

    def delete(self, key: str) -> None:
        blob = self.bucket.blob(self._blob_path(key))
        if blob.exists():
            blob.delete()

    def ping(self) -> bool:
        return self.bucket.exists()


def delete_media(store: BlobStore, media: str | None, thumbnail: str | None) -> list[str]:
    """
    Best-effort removal of an item's blobs; returns the keys that failed.

    A failure is logged and skipped so the caller can still delete the
    database record. The blob is then orphaned.
    """
    keys = []
    for url in (media, thumbnail):
        key = key_from_url(url)
        if key and key not in keys:
            keys.append(key)

    failed = []
    for key in keys:
        try:
            store.delete(key)
        except Exception:  # noqa: BLE001 - record delete must go ahead
            logger.exception("Failed to delete blob %s", key)
            failed.append(key)
    return failed


def make_blob_store(settings: Settings) -> BlobStore:
    if settings.storage_backend == "gcs":
        if not settings.gcs_bucket:
            raise RuntimeError("GCS_BUCKET env var is required when STORAGE_BACKEND=gcs")
        return GCSBlobStore(settings.gcs_bucket, settings.gcs_prefix)
    return LocalBlobStore(settings.media_root)
