"""Resource store contract."""

from .base import (
    AlreadyExistsError,
    ConflictError,
    ConflictRetriesExhausted,
    NotFoundError,
    ReconcileCancelled,
    ResourceStore,
    StoreError,
    TransientStoreError,
    get_or_none,
    is_retryable,
)

__all__ = [
    "AlreadyExistsError",
    "ConflictError",
    "ConflictRetriesExhausted",
    "NotFoundError",
    "ReconcileCancelled",
    "ResourceStore",
    "StoreError",
    "TransientStoreError",
    "get_or_none",
    "is_retryable",
]
