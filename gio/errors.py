"""
Typed failures raised by the rule and service layers.

The application maps each one to an HTTP status through a single exception
handler, so services never build HTTP responses themselves.
"""

from __future__ import annotations


class GioError(Exception):
    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(GioError):
    """Missing or malformed input. Caller-correctable."""

    status_code = 400


class NotFoundError(GioError):
    status_code = 404


class ConfigurationError(GioError):
    """Rank tables or tier files could not be loaded. Fatal at startup."""

    status_code = 500


class StorageError(GioError):
    """Backing store read/write failed. Not retried."""

    status_code = 503
