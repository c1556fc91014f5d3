"""Unit tests for the Restore controller."""

from __future__ import annotations

import pytest
from conftest import make_database

from database_operator.constants import API_GROUP_VERSION, KIND_BACKUP, KIND_JOB, KIND_RESTORE
from database_operator.handlers.restore import RestoreReconciler
from database_operator.models import JobPhase, Phase, ResourceKey, Result
from database_operator.services.store.base import ConflictRetriesExhausted, TransientStoreError
from database_operator.utils.conditions import find_condition

KEY = ResourceKey(KIND_RESTORE, "default", "rollback")
LOCATION = "pvc://database-backups/default/test-db-20240101-000000.sql"


def make_restore() -> dict:
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": KIND_RESTORE,
        "metadata": {"name": "rollback", "namespace": "default"},
        "spec": {"databaseRef": {"name": "test-db"}, "backupRef": {"name": "nightly"}},
    }


def make_backup(phase: str = JobPhase.COMPLETED.value, location: str | None = LOCATION) -> dict:
    status = {"phase": phase}
    if location:
        status["backupLocation"] = location
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": KIND_BACKUP,
        "metadata": {"name": "nightly", "namespace": "default"},
        "spec": {"databaseRef": {"name": "test-db"}},
        "status": status,
    }


def seed_ready_database(store) -> None:
    body = make_database()
    body["status"] = {"phase": Phase.READY.value}
    store.seed(body)


def seed_all(store) -> None:
    seed_ready_database(store)
    store.seed(make_backup())
    store.seed(make_restore())


def restore_status(store) -> dict:
    return store.peek(KIND_RESTORE, "default", "rollback").get("status", {})


def active_job(store) -> str:
    return restore_status(store)["activeJob"]["name"]


class TestRestorePreconditions:
    """The Database must be Ready and the Backup Completed."""

    def test_waits_for_database(self, store, config, metrics, events, clock) -> None:
        store.seed(make_backup())
        store.seed(make_restore())
        reconciler = RestoreReconciler(store, config, metrics, events, clock=clock)

        assert reconciler.reconcile(KEY) == Result.after(config.dependency_wait)
        status = restore_status(store)
        assert status["phase"] == JobPhase.PENDING.value
        assert find_condition(status["conditions"], "RestoreReady")["reason"] == "DatabaseNotFound"
        assert store.names(KIND_JOB) == []

    def test_waits_for_backup_completion(self, store, config, metrics, events, clock) -> None:
        seed_ready_database(store)
        store.seed(make_backup(phase=JobPhase.IN_PROGRESS.value))
        store.seed(make_restore())
        reconciler = RestoreReconciler(store, config, metrics, events, clock=clock)

        reconciler.reconcile(KEY)

        status = restore_status(store)
        assert status["phase"] == JobPhase.PENDING.value
        assert find_condition(status["conditions"], "RestoreReady")["reason"] == "BackupNotCompleted"
        assert store.names(KIND_JOB) == []

    def test_backup_without_location_fails(self, store, config, metrics, events, clock) -> None:
        seed_ready_database(store)
        store.seed(make_backup(location=None))
        store.seed(make_restore())
        reconciler = RestoreReconciler(store, config, metrics, events, clock=clock)

        assert reconciler.reconcile(KEY) == Result.done()
        status = restore_status(store)
        assert status["phase"] == JobPhase.FAILED.value
        assert find_condition(status["conditions"], "RestoreReady")["reason"] == "BackupLocationMissing"

    def test_unsupported_location_fails(self, store, config, metrics, events, clock) -> None:
        """A location no Job can read is an explicit failure, not a silent success."""
        seed_ready_database(store)
        store.seed(make_backup(location="s3://backups/default/test-db.sql"))
        store.seed(make_restore())
        reconciler = RestoreReconciler(store, config, metrics, events, clock=clock)

        assert reconciler.reconcile(KEY) == Result.done()

        status = restore_status(store)
        assert status["phase"] == JobPhase.FAILED.value
        reason = find_condition(status["conditions"], "RestoreReady")["reason"]
        assert reason == "UnsupportedStorageLocation"
        assert store.names(KIND_JOB) == []
        assert "RestoreFailed" in events.reasons()


class TestRestoreStart:
    """Starting the restore Job."""

    def test_in_progress_is_persisted_before_the_job_starts(
        self, store, config, metrics, events, clock
    ) -> None:
        seed_all(store)
        observed = []

        class RecordingExecutor:
            def start(self, job) -> None:
                observed.append(restore_status(store).get("phase"))

            def poll(self, namespace, name):
                return None

        reconciler = RestoreReconciler(
            store, config, metrics, events, executor=RecordingExecutor(), clock=clock
        )

        assert reconciler.reconcile(KEY) == Result.now()
        assert observed == [JobPhase.IN_PROGRESS.value]

    def test_job_runs_psql_against_the_database(self, store, config, metrics, events, clock) -> None:
        seed_all(store)
        reconciler = RestoreReconciler(store, config, metrics, events, clock=clock)

        reconciler.reconcile(KEY)

        job = store.peek(KIND_JOB, "default", active_job(store))
        container = job["spec"]["template"]["spec"]["containers"][0]
        assert "psql" in container["command"][-1]
        env = {item["name"]: item for item in container["env"]}
        assert env["PGHOST"]["value"] == "test-db"
        assert env["BACKUP_FILE"]["value"] == "/backups/default/test-db-20240101-000000.sql"
        assert job["metadata"]["ownerReferences"][0]["kind"] == KIND_RESTORE
        assert "RestoreStarted" in events.reasons()

    def test_start_failure_rolls_back_to_pending(self, store, config, metrics, events, clock) -> None:
        seed_all(store)
        store.fail_next("create", KIND_JOB, TransientStoreError("apiserver unavailable"))
        reconciler = RestoreReconciler(store, config, metrics, events, clock=clock)

        with pytest.raises(TransientStoreError):
            reconciler.reconcile(KEY)

        status = restore_status(store)
        assert status["phase"] == JobPhase.PENDING.value
        assert "activeJob" not in status

        assert reconciler.reconcile(KEY) == Result.now()
        assert restore_status(store)["phase"] == JobPhase.IN_PROGRESS.value
        assert len(store.names(KIND_JOB)) == 1


class TestRestoreProgress:
    """InProgress is re-entrant: it polls, it never restarts."""

    def test_in_progress_does_not_restart(self, store, config, metrics, events, clock) -> None:
        seed_all(store)
        reconciler = RestoreReconciler(store, config, metrics, events, clock=clock)

        assert reconciler.reconcile(KEY) == Result.now()
        assert restore_status(store)["phase"] == JobPhase.IN_PROGRESS.value

        assert reconciler.reconcile(KEY) == Result.after(config.dependency_wait)
        assert reconciler.reconcile(KEY) == Result.after(config.dependency_wait)
        assert [call for call in store.calls if call[0] == "create"] == [
            ("create", KIND_JOB, "default", active_job(store))
        ]

        store.set_status(KIND_JOB, "default", active_job(store), succeeded=1)
        assert reconciler.reconcile(KEY) == Result.done()

        status = restore_status(store)
        assert status["phase"] == JobPhase.COMPLETED.value
        assert status["restoreTime"] == clock().isoformat()
        assert "activeJob" not in status
        assert "RestoreCompleted" in events.reasons()

    def test_completed_but_unpersisted(self, store, config, metrics, events, clock) -> None:
        """A Job that finished while its status write was lost completes on the next pass."""
        seed_all(store)
        reconciler = RestoreReconciler(store, config, metrics, events, clock=clock)

        reconciler.reconcile(KEY)
        store.set_status(KIND_JOB, "default", active_job(store), succeeded=1)
        store.inject_conflicts(KIND_RESTORE, config.conflict_retry_attempts + 1)
        with pytest.raises(ConflictRetriesExhausted):
            reconciler.reconcile(KEY)
        assert restore_status(store)["phase"] == JobPhase.IN_PROGRESS.value

        assert reconciler.reconcile(KEY) == Result.done()
        assert restore_status(store)["phase"] == JobPhase.COMPLETED.value

    def test_failed_restore(self, store, config, metrics, events, clock) -> None:
        seed_all(store)
        reconciler = RestoreReconciler(store, config, metrics, events, clock=clock)

        reconciler.reconcile(KEY)
        store.set_status(
            KIND_JOB,
            "default",
            active_job(store),
            conditions=[
                {
                    "type": "Failed",
                    "status": "True",
                    "reason": "BackoffLimitExceeded",
                    "message": "Job has reached the specified backoff limit",
                }
            ],
        )
        reconciler.reconcile(KEY)

        status = restore_status(store)
        assert status["phase"] == JobPhase.FAILED.value
        assert "backoff limit" in status["message"]
        assert "RestoreFailed" in events.reasons()

    def test_lost_job(self, store, config, metrics, events, clock) -> None:
        """InProgress whose Job is gone fails instead of restarting."""
        seed_ready_database(store)
        store.seed(make_backup())
        body = make_restore()
        body["status"] = {
            "phase": JobPhase.IN_PROGRESS.value,
            "activeJob": {"name": "rollback-restore-gone", "location": LOCATION},
        }
        store.seed(body)
        reconciler = RestoreReconciler(store, config, metrics, events, clock=clock)

        assert reconciler.reconcile(KEY) == Result.done()

        status = restore_status(store)
        assert status["phase"] == JobPhase.FAILED.value
        assert find_condition(status["conditions"], "RestoreReady")["reason"] == "RestoreStateLost"
        assert store.names(KIND_JOB) == []
