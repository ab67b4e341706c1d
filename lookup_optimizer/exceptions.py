"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients.
  The global handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``ValueError``: for *business logic* validation errors that are safe to
  forward to clients.  The global ``ValueError`` handler returns ``str(exc)``
  as the 422 detail.  ``DuplicatePathError`` and ``RemoteSyncUnavailableError``
  are ``ValueError`` subclasses for that reason.
- ``CacheTierError``: never reaches a handler: the lookup cache catches it and
  degrades to a miss.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``lookup_optimizer/main.py`` catches this,
    logs the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class DuplicatePathError(ValueError):
    """Another owner already holds this path in the lookup index."""

    def __init__(self, owner_id: int, path: str) -> None:
        super().__init__(f"Path {path!r} is already indexed for another owner (owner {owner_id})")
        self.owner_id = owner_id
        self.path = path


class CacheTierError(Exception):
    """A cache tier backend is unreachable or returned garbage."""

    def __init__(self, tier: str, message: str) -> None:
        super().__init__(f"{tier}: {message}")
        self.tier = tier


class RemoteSyncUnavailableError(ValueError):
    """Remote sync was requested but the remote store is not configured."""


class SyncInProgressError(ValueError):
    """A manual sync was requested while another run holds the scheduler."""
