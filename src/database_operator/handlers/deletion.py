"""Finalizer-gated teardown of a database's children."""

from __future__ import annotations

from typing import Any

from ..builders.database import credentials_secret_name, tracking_labels
from ..constants import (
    EVENT_REASON_DELETING,
    KIND_SECRET,
    KIND_SERVICE,
    KIND_STATEFULSET,
    LABEL_MANAGED_BY,
    LABEL_OWNER_KIND,
    LABEL_OWNER_NAME,
    REASON_CLEANUP_FAILED,
)
from ..models import LabelOwnership, Ownership, OwnerReferenceOwnership, Result
from ..services.store.base import NotFoundError, get_or_none
from ..utils.conditions import set_ready_condition
from ..utils.errors import sanitize_exception
from ..utils.events import emit_child_deleted
from .base import BaseReconciler

# Children are removed workload first so no pod is left holding the
# credentials or serving through the endpoint mid-teardown.
DELETION_ORDER = (KIND_STATEFULSET, KIND_SERVICE, KIND_SECRET)


def child_name(kind: str, owner_name: str) -> str:
    if kind == KIND_SECRET:
        return credentials_secret_name(owner_name)
    return owner_name


class DeletionOrchestrator:
    """Delete children in order, then release the parent's finalizer.

    Ownership cascade cannot be relied on: referenced children are only
    collected once the parent is gone, and the finalizer keeps the parent
    around until cleanup reports success. Every delete is therefore issued
    explicitly, one kind per pass.
    """

    def __init__(self, reconciler: BaseReconciler, finalizer: str) -> None:
        self.reconciler = reconciler
        self.finalizer = finalizer

    @property
    def store(self):
        return self.reconciler.store

    def find_children(self, kind: str, ownership: Ownership) -> list[dict[str, Any]]:
        """Locate the live children of one kind for the given ownership variant."""
        if isinstance(ownership, OwnerReferenceOwnership):
            child = get_or_none(
                self.store, kind, ownership.namespace, child_name(kind, ownership.name)
            )
            return [child] if child is not None else []

        if isinstance(ownership, LabelOwnership):
            labels = tracking_labels(ownership)
            selector = {
                key: labels[key] for key in (LABEL_MANAGED_BY, LABEL_OWNER_KIND, LABEL_OWNER_NAME)
            }
            return self.store.list(kind, namespace=ownership.namespace, labels=selector)

        raise TypeError(f"Unknown ownership variant {type(ownership).__name__}")

    def finalize(self, body: dict[str, Any], ownership: Ownership) -> Result:
        """Advance teardown of a resource marked for deletion by one step.

        Returns:
            ``Result.after`` while a child is still present, ``Result.done``
            once the finalizer is released or was never set.
        """
        reconciler = self.reconciler
        if self.finalizer not in body.get("metadata", {}).get("finalizers", []):
            return Result.done()

        try:
            for kind in DELETION_ORDER:
                children = self.find_children(kind, ownership)
                deleted = False
                for child in children:
                    name = child["metadata"]["name"]
                    try:
                        self.store.delete(kind, child["metadata"].get("namespace"), name)
                    except NotFoundError:
                        continue
                    reconciler.metrics.child_operations_total.labels(
                        child=kind, operation="delete", result="success"
                    ).inc()
                    reconciler.log_info(
                        body, f"Deleting {kind} {name}", event="delete", reason=EVENT_REASON_DELETING
                    )
                    emit_child_deleted(reconciler.events, body, kind, name)
                    deleted = True
                if deleted:
                    # Re-check on the next pass before moving on to the next kind
                    return Result.after(reconciler.config.deletion_recheck_delay)
        except NotFoundError:
            raise
        except Exception as e:
            message = f"Cleanup failed: {sanitize_exception(e)}"
            reconciler.log_error(body, message, error=e, reason=REASON_CLEANUP_FAILED)
            reconciler.metrics.child_operations_total.labels(
                child="all", operation="delete", result="error"
            ).inc()
            generation = body["metadata"].get("generation")

            def mark_cleanup_failed(obj: dict[str, Any]) -> None:
                status = obj.setdefault("status", {})
                status["ready"] = False
                set_ready_condition(
                    status.setdefault("conditions", []),
                    False,
                    REASON_CLEANUP_FAILED,
                    message,
                    generation,
                )

            reconciler.update_status(body, mark_cleanup_failed)
            raise

        reconciler.log_info(body, "All children deleted, removing finalizer", reason="Finalized")
        reconciler.remove_finalizer(body, self.finalizer)
        return Result.done()
