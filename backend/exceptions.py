"""Application-level exception types.

Convention:
- ``StoreOperationError`` and the other store failures never forward their
  message; the global handlers log it and return a generic detail.
- ``ValueError`` for *business logic* validation errors that are safe to
  forward to clients (bad repository paths, malformed input, etc.).  The global
  ``ValueError`` handler returns ``str(exc)`` as the 422 detail.
- The sync exceptions below abort a whole run.  Failures of a single
  create/update/delete never raise; they are collected into the run result.
"""

from __future__ import annotations


class StoreUnavailableError(Exception):
    """The row store is unreachable or unconfigured (HTTP 503)."""


class StoreOperationError(Exception):
    """A store call that the caller cannot continue without failed (HTTP 500)."""


class SourceNotFoundError(Exception):
    """The referenced source does not exist or is not owned by the caller (HTTP 404)."""

    def __init__(self, source_id: int) -> None:
        super().__init__(f"Source not found: {source_id}")
        self.source_id = source_id


class SourceModeError(Exception):
    """A sync was requested against a source configured for a different mode (HTTP 400)."""

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(f"Source is not configured for {expected} mode (mode is {actual})")
        self.expected = expected
        self.actual = actual


class UpstreamFetchError(Exception):
    """The upstream API returned a non-2xx response or could not be reached (HTTP 502)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
