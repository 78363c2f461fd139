"""
Media upload handler.

POST /api/upload (multipart/form-data, privileged)

    file       the media file (required)
    thumbnail  "true" to request a thumbnail URL for raster images

Steps: measure the spooled file, validate size and type, read it, derive a
storage key, write the blob and answer with the URL the caller should put on
the item it creates next. Uploading and creating the item are two separate
requests; a blob whose item is never created stays in storage.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

from flask import request
from werkzeug.exceptions import RequestEntityTooLarge

from recollect.auth import require_privileged
from recollect.context import current_requester, services
from recollect.errors import ValidationError, error_body, json_errors
from recollect.storage import media_url
from recollect.uploads import (
    UploadCandidate,
    derive_key,
    infer_kind,
    normalize_content_type,
    thumbnail_for,
    too_large_message,
    validate_upload,
)

logger = logging.getLogger(__name__)


@json_errors("Upload failed")
def upload():
    requester = require_privileged(current_requester())
    svc = services()

    if not (request.mimetype or "").startswith("multipart/form-data"):
        raise ValidationError("Content-Type must be multipart/form-data")

    max_size = svc.settings.max_upload_size
    storage_file = request.files.get("file")
    if storage_file is None or not storage_file.filename:
        raise ValidationError("No file provided")

    stream = storage_file.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)

    content_type = normalize_content_type(storage_file.mimetype)
    candidate = UploadCandidate(filename=storage_file.filename, size=size, content_type=content_type)
    validate_upload(candidate, max_size)
    data = storage_file.read()

    key = derive_key(candidate.filename)
    svc.blobs.put(
        key,
        data,
        content_type,
        metadata={
            "originalName": candidate.filename,
            "uploadedBy": str(requester.user_id),
            "uploadedAt": datetime.now(timezone.utc).isoformat(),
        },
    )
    logger.info("Stored upload %s (%d bytes, %s)", key, candidate.size, content_type)

    url = media_url(key)
    wants_thumbnail = request.form.get("thumbnail") == "true"
    return {
        "success": True,
        "media_url": url,
        "thumbnail_url": thumbnail_for(url, content_type, wants_thumbnail),
        "file_type": content_type,
        "file_size": candidate.size,
        "item_type": infer_kind(content_type, candidate.filename).value,
        # Text extraction (e.g. from PDFs) is not performed.
        "extracted_text": "",
    }, 200


def body_too_large(exc: RequestEntityTooLarge):
    """Error handler for bodies over MAX_CONTENT_LENGTH, rejected before parsing."""
    max_size = services().settings.max_upload_size
    logger.info("Rejected request body over the %d byte upload limit", max_size)
    return error_body(too_large_message(max_size)), 400
