"""ResourceStore contract shared by the reconcilers."""

from __future__ import annotations

from typing import Any, Protocol


class StoreError(Exception):
    """A store call failed for a reason that retrying will not fix."""


class NotFoundError(StoreError):
    """The requested object does not exist."""


class AlreadyExistsError(StoreError):
    """A create collided with an existing object of the same name."""


class ConflictError(StoreError):
    """The write carried a stale resourceVersion."""


class ConflictRetriesExhausted(ConflictError):
    """Every attempt of a read-modify-write cycle hit a conflict."""


class TransientStoreError(StoreError):
    """Throttling, timeouts and server-side errors; worth retrying later."""


class ReconcileCancelled(StoreError):
    """The operator is shutting down and no further store calls are made."""


def is_retryable(error: BaseException) -> bool:
    """Errors the scheduler should retry instead of failing the resource."""
    return isinstance(error, (ConflictError, TransientStoreError, ReconcileCancelled))


class ResourceStore(Protocol):
    """Versioned object store the controllers read and write through.

    Objects are plain dicts shaped like Kubernetes bodies (``apiVersion``,
    ``kind``, ``metadata``, ``spec``, ``status``). ``metadata.resourceVersion``
    is the opaque version token: ``update`` and ``update_status`` fail with
    ConflictError when it no longer matches the stored copy.
    """

    def get(self, kind: str, namespace: str | None, name: str) -> dict[str, Any]:
        """Fetch one object or raise NotFoundError."""
        ...

    def list(
        self,
        kind: str,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """List objects of a kind, optionally filtered by namespace and labels."""
        ...

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Create an object or raise AlreadyExistsError."""
        ...

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace metadata and spec of an object."""
        ...

    def update_status(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace the status subresource of an object."""
        ...

    def patch(
        self, kind: str, namespace: str | None, name: str, diff: dict[str, Any]
    ) -> dict[str, Any]:
        """Apply a JSON merge patch without a version check."""
        ...

    def delete(self, kind: str, namespace: str | None, name: str) -> None:
        """Delete an object or raise NotFoundError."""
        ...


def get_or_none(
    store: ResourceStore, kind: str, namespace: str | None, name: str
) -> dict[str, Any] | None:
    """Fetch an object, returning None when it does not exist."""
    try:
        return store.get(kind, namespace, name)
    except NotFoundError:
        return None
