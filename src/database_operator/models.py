"""Core data model: work-item keys, scheduling directives, phases and ownership."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from .constants import (
    API_GROUP_VERSION,
    KIND_CLUSTER_DATABASE,
    KIND_DATABASE,
)


class Phase(str, Enum):
    """Provisioning phases of a Database."""

    PENDING = "Pending"
    PROVISIONING = "Provisioning"
    CONFIGURING = "Configuring"
    DEPLOYING = "Deploying"
    VERIFYING = "Verifying"
    READY = "Ready"
    FAILED = "Failed"


class JobPhase(str, Enum):
    """Phases shared by Backup and Restore."""

    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"


# Allowed edges of the Database phase graph. Any phase may fall into Failed.
PHASE_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.PENDING: frozenset({Phase.PROVISIONING}),
    Phase.PROVISIONING: frozenset({Phase.CONFIGURING}),
    Phase.CONFIGURING: frozenset({Phase.DEPLOYING}),
    Phase.DEPLOYING: frozenset({Phase.PROVISIONING, Phase.VERIFYING}),
    Phase.VERIFYING: frozenset({Phase.READY}),
    Phase.READY: frozenset({Phase.PROVISIONING, Phase.DEPLOYING}),
    Phase.FAILED: frozenset({Phase.PENDING}),
}


def is_valid_transition(old: Phase, new: Phase) -> bool:
    """Check whether moving from ``old`` to ``new`` is a single legal step."""
    if old == new or new == Phase.FAILED:
        return True
    return new in PHASE_TRANSITIONS.get(old, frozenset())


def parse_phase(value: str | None) -> Phase | None:
    """Map a stored phase string to a Phase, or None if it is unknown."""
    if not value:
        return Phase.PENDING
    try:
        return Phase(value)
    except ValueError:
        return None


@dataclass(frozen=True, order=True)
class ResourceKey:
    """Identity of a top-level resource used as the work-queue item."""

    kind: str
    namespace: str | None
    name: str

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> ResourceKey:
        meta = body.get("metadata", {})
        return cls(body.get("kind", ""), meta.get("namespace") or None, meta.get("name", ""))


@dataclass(frozen=True)
class Result:
    """Scheduling directive returned by every reconciler invocation."""

    requeue: bool = False
    requeue_after: float | None = None

    @classmethod
    def done(cls) -> Result:
        return cls()

    @classmethod
    def now(cls) -> Result:
        return cls(requeue=True)

    @classmethod
    def after(cls, seconds: float) -> Result:
        return cls(requeue=True, requeue_after=seconds)


@dataclass(frozen=True)
class OwnerReferenceOwnership:
    """Children live beside a namespaced parent and carry an ownerReference to it."""

    kind: str
    name: str
    namespace: str
    uid: str
    api_version: str = API_GROUP_VERSION

    def owner_references(self) -> list[dict[str, Any]]:
        return [
            {
                "apiVersion": self.api_version,
                "kind": self.kind,
                "name": self.name,
                "uid": self.uid,
                "controller": True,
                "blockOwnerDeletion": True,
            }
        ]


@dataclass(frozen=True)
class LabelOwnership:
    """Children of a cluster-scoped parent, tracked by labels only.

    Cross-scope ownerReferences are rejected by the API server, so garbage
    collection cannot be relied on and children must be found by label.
    """

    kind: str
    name: str
    namespace: str
    tenant: str | None = None

    def owner_references(self) -> list[dict[str, Any]]:
        return []


Ownership = Union[OwnerReferenceOwnership, LabelOwnership]


def ownership_for(body: dict[str, Any]) -> Ownership:
    """Pick the ownership variant for a Database or ClusterDatabase body.

    Raises:
        ValueError: If the kind is not a database kind.
    """
    kind = body.get("kind")
    meta = body.get("metadata", {})
    spec = body.get("spec", {})
    if kind == KIND_DATABASE:
        return OwnerReferenceOwnership(
            kind=KIND_DATABASE,
            name=meta["name"],
            namespace=meta["namespace"],
            uid=meta.get("uid", ""),
            api_version=body.get("apiVersion", API_GROUP_VERSION),
        )
    if kind == KIND_CLUSTER_DATABASE:
        return LabelOwnership(
            kind=KIND_CLUSTER_DATABASE,
            name=meta["name"],
            namespace=spec.get("targetNamespace", ""),
            tenant=spec.get("tenant") or None,
        )
    raise ValueError(f"Resource kind {kind!r} does not own database children")
