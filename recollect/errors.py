"""
Error kinds and the JSON error envelope.

Every HTTP handler is wrapped with `json_errors`, so a handler (or anything
it calls) can simply `raise NotFound("Item not found")` and the client gets

    {"error": "Item not found"}    with status 404

Anything that is not a `RecollectError` is logged with its traceback and
reported as a 500. The message is only exposed in development mode.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)


class RecollectError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RecollectError):
    status = 400


class Unauthorized(RecollectError):
    status = 401


class Forbidden(RecollectError):
    status = 403


class NotFound(RecollectError):
    status = 404


class Conflict(RecollectError):
    # Duplicate slugs have always been reported as 400; clients depend on it.
    status = 400


class PayloadTooLarge(ValidationError):
    pass


class UnsupportedMediaType(ValidationError):
    pass


def error_body(message: str) -> dict[str, str]:
    return {"error": message}


def _expose_internal() -> bool:
    return has_app_context() and bool(current_app.config.get("EXPOSE_ERRORS"))


def json_errors(fallback: str):
    """
    Decorate a handler so failures come back as `({"error": ...}, status)`.

    Parameters
    ----------
    fallback : str
        Message used for unexpected failures (e.g. "Failed to fetch items").
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return fn(*args, **kwargs)
            except RecollectError as exc:
                return error_body(exc.message), exc.status
            except Exception as exc:  # noqa: BLE001 - last-resort 500
                logger.exception("%s: %s", fallback, exc)
                message = str(exc) if _expose_internal() else fallback
                return error_body(message), 500

        return wrapper

    return decorator
