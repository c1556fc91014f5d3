"""Shared fixtures: an in-memory resource store and reconciler plumbing."""

from __future__ import annotations

import copy
import itertools
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from database_operator.config import OperatorConfig
from database_operator.constants import API_GROUP_VERSION, KIND_CLUSTER_DATABASE, KIND_DATABASE
from database_operator.metrics import OperatorMetrics
from database_operator.services.store.base import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
)

DELETION_TIMESTAMP = "2024-01-01T00:00:00+00:00"


def _merge(target: dict[str, Any], patch: dict[str, Any]) -> None:
    for key, value in patch.items():
        if value is None:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class FakeStore:
    """In-memory ResourceStore with API-server-like versioning.

    Every write must carry the current resourceVersion. ``inject_conflicts``
    makes the next N writes of a kind fail with a conflict after bumping the
    stored version, as a competing writer would; ``fail_next`` makes the next
    call of an operation on a kind raise the given error.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str | None, str], dict[str, Any]] = {}
        self._versions = itertools.count(1)
        self._uids = itertools.count(1)
        self._conflicts: dict[str, int] = defaultdict(int)
        self._failures: dict[tuple[str, str], list[Exception]] = defaultdict(list)
        self.calls: list[tuple[str, str, str | None, str]] = []

    # -- test controls ----------------------------------------------------

    def inject_conflicts(self, kind: str, count: int) -> None:
        self._conflicts[kind] += count

    def fail_next(self, operation: str, kind: str, error: Exception) -> None:
        self._failures[(operation, kind)].append(error)

    def seed(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Store an object as-is (apart from server-set metadata)."""
        obj = copy.deepcopy(obj)
        meta = obj.setdefault("metadata", {})
        meta.setdefault("uid", f"uid-{next(self._uids)}")
        meta.setdefault("generation", 1)
        meta["resourceVersion"] = str(next(self._versions))
        self.objects[self._key(obj)] = obj
        return copy.deepcopy(obj)

    def peek(self, kind: str, namespace: str | None, name: str) -> dict[str, Any] | None:
        obj = self.objects.get((kind, namespace or None, name))
        return copy.deepcopy(obj) if obj is not None else None

    def set_status(self, kind: str, namespace: str | None, name: str, **fields: Any) -> None:
        """Change status behind the reconciler's back (e.g. a StatefulSet becoming ready)."""
        obj = self.objects[(kind, namespace or None, name)]
        obj.setdefault("status", {}).update(fields)
        obj["metadata"]["resourceVersion"] = str(next(self._versions))

    def mutate(self, kind: str, namespace: str | None, name: str, fn) -> None:
        """Apply ``fn`` to a stored object as an out-of-band writer."""
        obj = self.objects[(kind, namespace or None, name)]
        old_spec = copy.deepcopy(obj.get("spec"))
        fn(obj)
        if obj.get("spec") != old_spec:
            obj["metadata"]["generation"] = obj["metadata"].get("generation", 1) + 1
        obj["metadata"]["resourceVersion"] = str(next(self._versions))

    def names(self, kind: str) -> list[str]:
        return sorted(name for (k, _, name) in self.objects if k == kind)

    # -- internals --------------------------------------------------------

    @staticmethod
    def _key(obj: dict[str, Any]) -> tuple[str, str | None, str]:
        meta = obj["metadata"]
        return obj["kind"], meta.get("namespace") or None, meta["name"]

    def _check_failure(self, operation: str, kind: str) -> None:
        failures = self._failures.get((operation, kind))
        if failures:
            raise failures.pop(0)

    def _existing(self, kind: str, namespace: str | None, name: str) -> dict[str, Any]:
        obj = self.objects.get((kind, namespace or None, name))
        if obj is None:
            raise NotFoundError(f"{kind} {name} not found")
        return obj

    def _check_version(self, obj: dict[str, Any], stored: dict[str, Any]) -> None:
        kind = obj["kind"]
        if self._conflicts[kind] > 0:
            self._conflicts[kind] -= 1
            stored["metadata"]["resourceVersion"] = str(next(self._versions))
            raise ConflictError(f"{kind} {obj['metadata']['name']} was modified")
        if obj["metadata"].get("resourceVersion") != stored["metadata"]["resourceVersion"]:
            raise ConflictError(f"{kind} {obj['metadata']['name']} resourceVersion mismatch")

    def _finish_write(self, key: tuple[str, str | None, str], stored: dict[str, Any]) -> dict[str, Any]:
        meta = stored["metadata"]
        if meta.get("deletionTimestamp") and not meta.get("finalizers"):
            del self.objects[key]
        return copy.deepcopy(stored)

    # -- ResourceStore ----------------------------------------------------

    def get(self, kind: str, namespace: str | None, name: str) -> dict[str, Any]:
        self.calls.append(("get", kind, namespace, name))
        self._check_failure("get", kind)
        return copy.deepcopy(self._existing(kind, namespace, name))

    def list(
        self,
        kind: str,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        self.calls.append(("list", kind, namespace, ""))
        self._check_failure("list", kind)
        items = []
        for (k, ns, _), obj in sorted(self.objects.items(), key=lambda item: str(item[0])):
            if k != kind or (namespace is not None and ns != namespace):
                continue
            obj_labels = obj["metadata"].get("labels") or {}
            if labels and any(obj_labels.get(key) != value for key, value in labels.items()):
                continue
            items.append(copy.deepcopy(obj))
        return items

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        key = self._key(obj)
        self.calls.append(("create", key[0], key[1], key[2]))
        self._check_failure("create", obj["kind"])
        if key in self.objects:
            raise AlreadyExistsError(f"{key[0]} {key[2]} already exists")
        stored = copy.deepcopy(obj)
        if "stringData" in stored:
            stored.setdefault("data", {}).update(stored.pop("stringData"))
        stored.pop("status", None)
        meta = stored["metadata"]
        meta["uid"] = f"uid-{next(self._uids)}"
        meta["generation"] = 1
        meta["resourceVersion"] = str(next(self._versions))
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        key = self._key(obj)
        self.calls.append(("update", key[0], key[1], key[2]))
        self._check_failure("update", obj["kind"])
        stored = self._existing(*key)
        self._check_version(obj, stored)
        updated = copy.deepcopy(obj)
        updated["status"] = copy.deepcopy(stored.get("status", {}))
        meta = updated["metadata"]
        meta["uid"] = stored["metadata"]["uid"]
        meta["deletionTimestamp"] = stored["metadata"].get("deletionTimestamp")
        if meta["deletionTimestamp"] is None:
            del meta["deletionTimestamp"]
        generation = stored["metadata"].get("generation", 1)
        meta["generation"] = generation + 1 if updated.get("spec") != stored.get("spec") else generation
        meta["resourceVersion"] = str(next(self._versions))
        self.objects[key] = updated
        return self._finish_write(key, updated)

    def update_status(self, obj: dict[str, Any]) -> dict[str, Any]:
        key = self._key(obj)
        self.calls.append(("update_status", key[0], key[1], key[2]))
        self._check_failure("update_status", obj["kind"])
        stored = self._existing(*key)
        self._check_version(obj, stored)
        stored["status"] = copy.deepcopy(obj.get("status", {}))
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        return copy.deepcopy(stored)

    def patch(self, kind: str, namespace: str | None, name: str, diff: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("patch", kind, namespace, name))
        self._check_failure("patch", kind)
        stored = self._existing(kind, namespace, name)
        old_spec = copy.deepcopy(stored.get("spec"))
        _merge(stored, diff)
        if stored.get("spec") != old_spec:
            stored["metadata"]["generation"] = stored["metadata"].get("generation", 1) + 1
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        return copy.deepcopy(stored)

    def delete(self, kind: str, namespace: str | None, name: str) -> None:
        self.calls.append(("delete", kind, namespace, name))
        self._check_failure("delete", kind)
        key = (kind, namespace or None, name)
        stored = self._existing(*key)
        if stored["metadata"].get("finalizers"):
            stored["metadata"].setdefault("deletionTimestamp", DELETION_TIMESTAMP)
            stored["metadata"]["resourceVersion"] = str(next(self._versions))
        else:
            del self.objects[key]


class RecordingEvents:
    """EventRecorder keeping every event for assertions."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, str, str]] = []

    def record(self, body: dict[str, Any], reason: str, message: str, type_: str = "Normal") -> None:
        self.events.append((body["metadata"]["name"], reason, message, type_))

    def reasons(self) -> list[str]:
        return [reason for _, reason, _, _ in self.events]


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_database(
    name: str = "test-db",
    namespace: str = "default",
    **spec: Any,
) -> dict[str, Any]:
    body_spec = {
        "image": "postgres:14",
        "replicas": 1,
        "databaseName": "app",
        "username": "admin",
        "storage": {"size": "1Gi"},
    }
    body_spec.update(spec)
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": KIND_DATABASE,
        "metadata": {"name": name, "namespace": namespace},
        "spec": body_spec,
    }


def make_cluster_database(name: str = "shared-db", target: str = "team-a", **spec: Any) -> dict[str, Any]:
    body = make_database(name, **spec)
    body["kind"] = KIND_CLUSTER_DATABASE
    del body["metadata"]["namespace"]
    body["spec"]["targetNamespace"] = target
    return body


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def metrics() -> OperatorMetrics:
    return OperatorMetrics(CollectorRegistry())


@pytest.fixture
def events() -> RecordingEvents:
    return RecordingEvents()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> OperatorConfig:
    return OperatorConfig()


def sample(metrics: OperatorMetrics, name: str, labels: dict[str, str] | None = None) -> float:
    value = metrics.registry.get_sample_value(name, labels or {})
    return value or 0.0


