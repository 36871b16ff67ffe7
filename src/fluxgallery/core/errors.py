"""Exception taxonomy for generation, persistence, and gallery reconstruction.

Every error raised by the core derives from :class:`GalleryError` so the HTTP
layer can map them to responses in one place.  The propagation policy is:

- :class:`ValidationError` and :class:`ProviderError` propagate synchronously
  to the immediate caller.
- :class:`StorageWriteError` is swallowed at the persistence boundary
  (see :meth:`ArtifactStore.try_persist`).
- :class:`StorageReadError` during reconstruction is swallowed per artifact.
- :class:`GalleryListError` is the only fatal error on the read path.
"""

from __future__ import annotations

from typing import Any


class GalleryError(Exception):
    """Base class for all Flux Gallery errors."""


class ValidationError(GalleryError):
    """User-facing validation error.

    Raised before any external call is made.  The message is intended to be
    returned directly to the client.
    """


class UnknownProfileError(ValidationError):
    """Raised when a profile key or model identifier is not registered."""

    def __init__(self, key: str, available: list[str] | None = None) -> None:
        self.key = key
        self.available = available or []
        message = f"Unknown model: {key}"
        if self.available:
            message += f" (available: {', '.join(self.available)})"
        super().__init__(message)


class ProviderError(GalleryError):
    """Upstream generation failure.

    Carries the upstream message and any structured detail payload unchanged
    so they can be forwarded to the caller for diagnostics.
    """

    def __init__(self, message: str, detail: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class StorageError(GalleryError):
    """Base class for object-store failures."""


class StorageWriteError(StorageError):
    """Writing an artifact or its metadata sidecar failed."""


class StorageReadError(StorageError):
    """Reading an object, its attributes, or its URL failed."""


class ObjectNotFoundError(StorageReadError):
    """The requested object does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Object not found: {path}")


class GalleryListError(GalleryError):
    """Enumerating an owner's namespace failed."""
