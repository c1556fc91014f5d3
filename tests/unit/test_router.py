"""Tests for watch event routing."""

from __future__ import annotations

from conftest import make_database

from database_operator.controller.router import (
    EVENT_DELETED,
    EVENT_MODIFIED,
    EventRouter,
    ReferenceIndex,
    owner_key,
)
from database_operator.models import ResourceKey

DB = ResourceKey("Database", "default", "test-db")


def make_backup(name="nightly", database="test-db") -> dict:
    return {
        "kind": "Backup",
        "metadata": {"name": name, "namespace": "default"},
        "spec": {"databaseRef": {"name": database}},
    }


def make_restore(name="rollback", database="test-db", backup="nightly") -> dict:
    return {
        "kind": "Restore",
        "metadata": {"name": name, "namespace": "default"},
        "spec": {"databaseRef": {"name": database}, "backupRef": {"name": backup}},
    }


def make_statefulset(generation=1, ready=0) -> dict:
    return {
        "kind": "StatefulSet",
        "metadata": {
            "name": "test-db",
            "namespace": "default",
            "generation": generation,
            "ownerReferences": [{"kind": "Database", "name": "test-db", "controller": True}],
        },
        "status": {"readyReplicas": ready},
    }


class RecordingRouter:
    def __init__(self) -> None:
        self.triggered = []
        self.router = EventRouter(self.triggered.append)


class TestOwnerKey:
    """Test cases for owner_key."""

    def test_owner_reference(self):
        assert owner_key(make_statefulset()) == DB

    def test_non_controller_reference_ignored(self):
        body = make_statefulset()
        body["metadata"]["ownerReferences"][0]["controller"] = False
        assert owner_key(body) is None

    def test_cluster_database_labels(self):
        body = {
            "kind": "Service",
            "metadata": {
                "name": "shared-db",
                "namespace": "team-a",
                "labels": {
                    "database.example.com/owner-kind": "ClusterDatabase",
                    "database.example.com/owner-name": "shared-db",
                },
            },
        }
        assert owner_key(body) == ResourceKey("ClusterDatabase", None, "shared-db")

    def test_managed_credentials_secret(self):
        body = {
            "kind": "Secret",
            "metadata": {
                "name": "test-db-credentials",
                "namespace": "default",
                "labels": {"app.kubernetes.io/managed-by": "database-operator"},
            },
        }
        assert owner_key(body) == DB

    def test_unrelated_object(self):
        body = {"kind": "Secret", "metadata": {"name": "tls-credentials", "namespace": "default"}}
        assert owner_key(body) is None


class TestReferenceIndex:
    """Test cases for ReferenceIndex."""

    def test_dependents(self):
        index = ReferenceIndex()
        index.update(make_backup())
        index.update(make_restore())

        assert index.dependents(DB) == [
            ResourceKey("Backup", "default", "nightly"),
            ResourceKey("Restore", "default", "rollback"),
        ]
        assert index.dependents(ResourceKey("Backup", "default", "nightly")) == [
            ResourceKey("Restore", "default", "rollback")
        ]

    def test_update_moves_reference(self):
        index = ReferenceIndex()
        index.update(make_backup())
        index.update(make_backup(database="other-db"))

        assert index.dependents(DB) == []
        assert index.dependents(ResourceKey("Database", "default", "other-db")) == [
            ResourceKey("Backup", "default", "nightly")
        ]

    def test_remove(self):
        index = ReferenceIndex()
        index.update(make_backup())
        index.remove(ResourceKey("Backup", "default", "nightly"))

        assert index.dependents(DB) == []


class TestEventRouter:
    """Test cases for EventRouter.route."""

    def test_database_phase_change_triggers_dependents(self):
        """kopf handles the Database itself, so only its dependents are triggered."""
        recorder = RecordingRouter()
        recorder.router.route(None, make_backup())
        recorder.router.route(None, make_database())

        ready = make_database()
        ready["status"] = {"phase": "Ready"}
        keys = recorder.router.route(EVENT_MODIFIED, ready)

        assert keys == [ResourceKey("Backup", "default", "nightly")]
        assert recorder.triggered == keys

    def test_unchanged_phase_triggers_nothing(self):
        recorder = RecordingRouter()
        recorder.router.route(None, make_backup())
        recorder.router.route(None, make_database())

        assert recorder.router.route(EVENT_MODIFIED, make_database()) == []
        assert recorder.triggered == []

    def test_backup_phase_change_triggers_restores(self):
        recorder = RecordingRouter()
        recorder.router.route(None, make_restore())
        recorder.router.route(None, make_backup())

        completed = make_backup()
        completed["status"] = {"phase": "Completed"}

        assert recorder.router.route(EVENT_MODIFIED, completed) == [
            ResourceKey("Restore", "default", "rollback")
        ]

    def test_restore_changes_trigger_nothing(self):
        recorder = RecordingRouter()
        restore = make_restore()
        restore["status"] = {"phase": "InProgress"}

        assert recorder.router.route(EVENT_MODIFIED, restore) == []

    def test_initial_listing_only_primes(self):
        """Events without a type come from kopf's initial listing; startup resumes every owner."""
        recorder = RecordingRouter()

        assert recorder.router.route(None, make_backup()) == []
        assert recorder.router.route(None, make_statefulset()) == []
        assert recorder.triggered == []

    def test_deleted_backup_leaves_index(self):
        recorder = RecordingRouter()
        recorder.router.route(None, make_backup())
        recorder.router.route(EVENT_DELETED, make_backup())

        ready = make_database()
        ready["status"] = {"phase": "Ready"}
        assert recorder.router.route(EVENT_MODIFIED, ready) == []

    def test_child_routes_to_owner(self):
        recorder = RecordingRouter()
        service = {
            "kind": "Service",
            "metadata": {
                "name": "test-db",
                "namespace": "default",
                "ownerReferences": [{"kind": "Database", "name": "test-db"}],
            },
        }

        assert recorder.router.route(EVENT_DELETED, service) == [DB]
        assert recorder.triggered == [DB]

    def test_unowned_child_is_ignored(self):
        recorder = RecordingRouter()
        body = {"kind": "Service", "metadata": {"name": "x", "namespace": "default"}}

        assert recorder.router.route(EVENT_MODIFIED, body) == []
        assert recorder.triggered == []

    def test_statefulset_status_churn_is_filtered(self):
        """Only generation or readyReplicas changes are routed for StatefulSets."""
        router = RecordingRouter().router

        assert router.route(None, make_statefulset(1, 0)) == []
        assert router.route(EVENT_MODIFIED, make_statefulset(1, 0)) == []
        assert router.route(EVENT_MODIFIED, make_statefulset(1, 1)) == [DB]
        assert router.route(EVENT_MODIFIED, make_statefulset(2, 1)) == [DB]
        assert router.route(EVENT_DELETED, make_statefulset(2, 1)) == [DB]
        assert router.route(EVENT_MODIFIED, make_statefulset(2, 1)) == [DB]

    def test_phase_counts(self):
        router = RecordingRouter().router
        ready = make_database()
        ready["status"] = {"phase": "Ready"}
        router.route(None, ready)
        router.route(None, make_database(name="new-db"))

        assert router.phase_counts("Database") == {"Ready": 1, "Pending": 1}

        router.route(EVENT_DELETED, ready)
        assert router.phase_counts("Database") == {"Pending": 1}
