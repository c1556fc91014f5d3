"""Route watch events to the keys of the resources that must be reconciled."""

from __future__ import annotations

import logging
import threading
from collections import Counter, defaultdict
from typing import Any, Callable

from ..constants import (
    CREDENTIALS_SUFFIX,
    KIND_BACKUP,
    KIND_CLUSTER_DATABASE,
    KIND_DATABASE,
    KIND_RESTORE,
    KIND_SECRET,
    KIND_STATEFULSET,
    LABEL_MANAGED_BY,
    LABEL_OWNER_KIND,
    LABEL_OWNER_NAME,
    MANAGED_BY_VALUE,
)
from ..models import ResourceKey

logger = logging.getLogger(__name__)

TOP_LEVEL_KINDS = frozenset({KIND_DATABASE, KIND_CLUSTER_DATABASE, KIND_BACKUP, KIND_RESTORE})

# Phase reported for resources whose status has no phase yet
PHASE_UNSET = "Pending"

EVENT_MODIFIED = "MODIFIED"
EVENT_DELETED = "DELETED"


class ReferenceIndex:
    """In-memory index of which Backups and Restores reference what.

    Maintained from watch events; answers "who depends on this Database or
    Backup" without listing the store.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # referenced key -> keys of the resources referencing it
        self._dependents: dict[ResourceKey, set[ResourceKey]] = defaultdict(set)
        # referencing key -> keys it references
        self._references: dict[ResourceKey, set[ResourceKey]] = {}

    @staticmethod
    def references_of(body: dict[str, Any]) -> set[ResourceKey]:
        kind = body.get("kind")
        namespace = body.get("metadata", {}).get("namespace")
        spec = body.get("spec", {})
        refs: set[ResourceKey] = set()
        if kind in (KIND_BACKUP, KIND_RESTORE):
            name = spec.get("databaseRef", {}).get("name")
            if name:
                refs.add(ResourceKey(KIND_DATABASE, namespace, name))
        if kind == KIND_RESTORE:
            name = spec.get("backupRef", {}).get("name")
            if name:
                refs.add(ResourceKey(KIND_BACKUP, namespace, name))
        return refs

    def update(self, body: dict[str, Any]) -> None:
        """Record the current references of a Backup or Restore."""
        key = ResourceKey.from_body(body)
        refs = self.references_of(body)
        with self._lock:
            self._unlink_locked(key)
            if refs:
                self._references[key] = refs
                for ref in refs:
                    self._dependents[ref].add(key)

    def remove(self, key: ResourceKey) -> None:
        with self._lock:
            self._unlink_locked(key)
            self._dependents.pop(key, None)

    def _unlink_locked(self, key: ResourceKey) -> None:
        for ref in self._references.pop(key, set()):
            dependents = self._dependents.get(ref)
            if dependents is None:
                continue
            dependents.discard(key)
            if not dependents:
                del self._dependents[ref]

    def dependents(self, key: ResourceKey) -> list[ResourceKey]:
        """Keys of every resource referencing ``key``, in stable order."""
        with self._lock:
            return sorted(self._dependents.get(key, ()))


def owner_key(body: dict[str, Any]) -> ResourceKey | None:
    """Key of the Database or ClusterDatabase owning a child object."""
    metadata = body.get("metadata", {})
    namespace = metadata.get("namespace")

    for ref in metadata.get("ownerReferences") or []:
        if ref.get("kind") == KIND_DATABASE and ref.get("controller", True):
            return ResourceKey(KIND_DATABASE, namespace, ref["name"])

    labels = metadata.get("labels") or {}
    kind = labels.get(LABEL_OWNER_KIND)
    owner = labels.get(LABEL_OWNER_NAME)
    if kind and owner:
        if kind == KIND_CLUSTER_DATABASE:
            return ResourceKey(KIND_CLUSTER_DATABASE, None, owner)
        return ResourceKey(kind, namespace, owner)

    name = metadata.get("name", "")
    if body.get("kind") == KIND_SECRET and name.endswith(CREDENTIALS_SUFFIX):
        if labels.get(LABEL_MANAGED_BY) == MANAGED_BY_VALUE:
            return ResourceKey(KIND_DATABASE, namespace, name[: -len(CREDENTIALS_SUFFIX)])
    return None


class EventRouter:
    """Turn a watch event into the keys that need another reconcile.

    kopf already reconciles the object an event is about, so a top-level
    event only routes the Backups and Restores depending on it, and only
    when its phase moved. Children route their owner. StatefulSet
    modifications are only routed when the generation or the ready replica
    count moved, which filters out the status churn the StatefulSet
    controller produces. kopf's initial listing (a None event type) primes
    the caches without routing anything, since every owner is resumed on
    startup anyway.
    """

    def __init__(
        self,
        trigger: Callable[[ResourceKey], None],
        index: ReferenceIndex | None = None,
    ) -> None:
        self.trigger = trigger
        self.index = index if index is not None else ReferenceIndex()
        self._lock = threading.Lock()
        self._statefulsets: dict[ResourceKey, tuple[Any, Any]] = {}
        self._phases: dict[ResourceKey, str] = {}

    def route(self, event_type: str | None, body: dict[str, Any]) -> list[ResourceKey]:
        """Trigger and return the keys affected by one event."""
        kind = body.get("kind")
        if kind in TOP_LEVEL_KINDS:
            keys = self._route_top_level(event_type, body)
        else:
            keys = self._route_child(event_type, body)
        if event_type is None:
            return []
        for key in keys:
            self.trigger(key)
        return keys

    def phase_counts(self, kind: str) -> dict[str, int]:
        """Number of known resources of ``kind`` per phase."""
        with self._lock:
            return dict(Counter(phase for key, phase in self._phases.items() if key.kind == kind))

    def _route_top_level(self, event_type: str | None, body: dict[str, Any]) -> list[ResourceKey]:
        key = ResourceKey.from_body(body)
        if key.kind in (KIND_BACKUP, KIND_RESTORE):
            if event_type == EVENT_DELETED:
                self.index.remove(key)
            else:
                self.index.update(body)

        phase = body.get("status", {}).get("phase") or PHASE_UNSET
        with self._lock:
            if event_type == EVENT_DELETED:
                previous = self._phases.pop(key, None)
                changed = True
            else:
                previous = self._phases.get(key)
                self._phases[key] = phase
                changed = previous != phase
        if not changed or key.kind not in (KIND_DATABASE, KIND_BACKUP):
            return []
        return self.index.dependents(key)

    def _route_child(self, event_type: str | None, body: dict[str, Any]) -> list[ResourceKey]:
        owner = owner_key(body)
        if owner is None:
            return []
        if body.get("kind") == KIND_STATEFULSET and not self._statefulset_changed(event_type, body):
            return []
        return [owner]

    def _statefulset_changed(self, event_type: str | None, body: dict[str, Any]) -> bool:
        key = ResourceKey.from_body(body)
        with self._lock:
            if event_type == EVENT_DELETED:
                self._statefulsets.pop(key, None)
                return True
            seen = (
                body.get("metadata", {}).get("generation"),
                body.get("status", {}).get("readyReplicas") or 0,
            )
            previous = self._statefulsets.get(key)
            self._statefulsets[key] = seen
        return event_type != EVENT_MODIFIED or previous != seen
