"""Optimistic-concurrency retry for read-modify-write cycles."""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable

from ..services.store.base import ConflictError, ConflictRetriesExhausted, ResourceStore

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3

Mutation = Callable[[dict[str, Any]], None]


def update_with_retry(
    store: ResourceStore,
    obj: dict[str, Any],
    mutate: Mutation,
    attempts: int = DEFAULT_ATTEMPTS,
    status: bool = False,
    on_conflict: Callable[[int], None] | None = None,
) -> dict[str, Any]:
    """Apply ``mutate`` to an object and write it, retrying on version conflicts.

    The first attempt mutates a copy of the object in hand. After a conflict
    the object is fetched again and the same mutation is applied to the fresh
    copy, so the final write always carries the intent on top of whatever the
    competing writer stored.

    Args:
        store: Store to write through
        obj: Object as last read by the caller
        mutate: Function mutating the object in place
        attempts: Maximum number of writes
        status: Write the status subresource instead of the main object
        on_conflict: Called with the attempt number after every conflict

    Returns:
        The object as returned by the store after the successful write

    Raises:
        ConflictRetriesExhausted: If every attempt hit a conflict
        StoreError: Any non-conflict failure, raised immediately
    """
    meta = obj.get("metadata", {})
    kind, namespace, name = obj["kind"], meta.get("namespace") or None, meta["name"]
    write = store.update_status if status else store.update

    current = copy.deepcopy(obj)
    last_error: ConflictError | None = None
    for attempt in range(1, attempts + 1):
        mutate(current)
        try:
            return write(current)
        except ConflictError as e:
            last_error = e
            logger.debug(f"Conflict writing {kind} {name} (attempt {attempt}/{attempts}): {e}")
            if on_conflict is not None:
                on_conflict(attempt)
            if attempt == attempts:
                break
            current = copy.deepcopy(store.get(kind, namespace, name))

    raise ConflictRetriesExhausted(
        f"{kind} {name}: gave up after {attempts} conflicting writes"
    ) from last_error
