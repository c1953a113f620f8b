"""Application-level exception types.

Convention:
- ``SyncError`` and its subclasses - raised by the sync engine for failures the
  caller must act on (a full sync already in flight, an unknown movie slug, a
  rejected bulk write). Item-level failures inside a pipeline are *not* raised;
  they are collected into the result's ``errors`` list.
- ``InternalServerError`` - for errors whose details must never reach clients.
  The global handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``ValueError`` - for validation errors that are safe to forward to clients
  (unknown change type, bad page size, unparseable schedule). The global
  ``ValueError`` handler returns ``str(exc)`` as the 422 detail.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for sync engine errors."""


class SyncAlreadyRunningError(SyncError):
    """Raised when a full sync is requested while another one is in flight.

    Full sync is single-flight and never queued; the caller retries later.
    """


class MovieNotFoundError(SyncError, LookupError):
    """Raised when a caller names a movie slug that storage does not know."""

    def __init__(self, slug: str) -> None:
        super().__init__(f"Movie not found: {slug}")
        self.slug = slug


class IndexingError(SyncError):
    """Raised when the search index rejects some documents of a bulk write."""

    def __init__(self, index: str, failed: list[str]) -> None:
        preview = ", ".join(failed[:5])
        more = f" (+{len(failed) - 5} more)" if len(failed) > 5 else ""
        super().__init__(f"{len(failed)} document(s) rejected by index {index!r}: {preview}{more}")
        self.index = index
        self.failed = failed


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``moviesync/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """
