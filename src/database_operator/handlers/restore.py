"""Restore controller: restores a Database from a completed Backup."""

from __future__ import annotations

from typing import Any

from ..builders.jobs import UnsupportedLocation, build_restore_job, job_name
from ..config import OperatorConfig
from ..constants import (
    EVENT_REASON_RESTORE_STARTED,
    KIND_RESTORE,
    REASON_BACKUP_LOCATION_MISSING,
    REASON_RESTORE_COMPLETED,
    REASON_RESTORE_FAILED,
    REASON_RESTORE_IN_PROGRESS,
    REASON_RESTORE_STATE_LOST,
    REASON_RETRYING,
    REASON_UNSUPPORTED_LOCATION,
)
from ..metrics import OperatorMetrics
from ..models import JobPhase, Result
from ..services.jobs import JobExecutor, KubernetesJobExecutor
from ..services.store.base import ResourceStore
from ..utils.conditions import set_restore_ready_condition
from ..utils.events import EventRecorder, emit_restore_completed, emit_restore_failed
from .base import BaseReconciler, Clock, utcnow
from .coordination import Precondition, check_backup_completed, check_database_ready


class RestoreReconciler(BaseReconciler):
    """Gate a Restore on its Database and Backup, then drive the restore Job.

    InProgress is written before the Job is created. Observing InProgress
    never starts a second Job; it asks whether the one recorded in
    ``status.activeJob`` has finished.
    """

    def __init__(
        self,
        store: ResourceStore,
        config: OperatorConfig,
        metrics: OperatorMetrics,
        events: EventRecorder,
        executor: JobExecutor | None = None,
        clock: Clock = utcnow,
    ) -> None:
        super().__init__(KIND_RESTORE, store, config, metrics, events, clock)
        self.executor = executor if executor is not None else KubernetesJobExecutor(store)

    def _write(
        self,
        body: dict[str, Any],
        phase: JobPhase,
        condition: tuple[bool, str, str],
        **fields: Any,
    ) -> dict[str, Any]:
        generation = body["metadata"].get("generation")

        def mutate(obj: dict[str, Any]) -> None:
            status = obj.setdefault("status", {})
            status["phase"] = phase.value
            status["message"] = condition[2]
            set_restore_ready_condition(
                status.setdefault("conditions", []), *condition, observed_generation=generation
            )
            for field, value in fields.items():
                if value is None:
                    status.pop(field, None)
                else:
                    status[field] = value

        return self.update_status(body, mutate)

    def reconcile_resource(self, body: dict[str, Any]) -> Result:
        if body["metadata"].get("deletionTimestamp"):
            return Result.done()

        phase = body.get("status", {}).get("phase") or JobPhase.PENDING.value
        if phase in (JobPhase.COMPLETED.value, JobPhase.FAILED.value):
            return Result.done()
        if phase == JobPhase.IN_PROGRESS.value:
            return self._check_progress(body)
        return self._begin(body)

    def _begin(self, body: dict[str, Any]) -> Result:
        spec = body.get("spec", {})
        namespace = body["metadata"]["namespace"]

        database_check = check_database_ready(
            self.store, namespace, spec.get("databaseRef", {}).get("name", "")
        )
        if not database_check.satisfied:
            return self._wait(body, database_check)

        backup_check = check_backup_completed(
            self.store, namespace, spec.get("backupRef", {}).get("name", "")
        )
        if not backup_check.satisfied:
            return self._wait(body, backup_check)

        database, backup = database_check.obj, backup_check.obj
        location = backup.get("status", {}).get("backupLocation")
        if not location:
            message = f"Backup {backup['metadata']['name']} has no backup location"
            return self._fail(body, REASON_BACKUP_LOCATION_MISSING, message)

        name = job_name(body["metadata"]["name"], f"restore-{body['metadata']['uid'][:8]}")
        try:
            job = build_restore_job(name, body, database, location)
        except UnsupportedLocation as e:
            return self._fail(body, REASON_UNSUPPORTED_LOCATION, str(e))

        body = self._write(
            body,
            JobPhase.IN_PROGRESS,
            (False, REASON_RESTORE_IN_PROGRESS, f"Restoring {database['metadata']['name']} from {location}"),
            activeJob={"name": name, "location": location},
        )
        try:
            self.executor.start(job)
        except Exception:
            self._write(
                body,
                JobPhase.PENDING,
                (False, REASON_RETRYING, "Restore Job could not be started"),
                activeJob=None,
            )
            raise
        self.events.record(body, EVENT_REASON_RESTORE_STARTED, f"Restoring from {location}")
        return Result.now()

    def _wait(self, body: dict[str, Any], precondition: Precondition) -> Result:
        self.log_info(body, precondition.message, reason=precondition.reason)
        self._write(body, JobPhase.PENDING, (False, precondition.reason, precondition.message))
        return Result.after(self.config.dependency_wait)

    def _fail(self, body: dict[str, Any], reason: str, message: str) -> Result:
        self.log_error(body, message, reason=reason)
        emit_restore_failed(self.events, body, message)
        self._write(body, JobPhase.FAILED, (False, reason, message), activeJob=None)
        return Result.done()

    def _check_progress(self, body: dict[str, Any]) -> Result:
        active = body.get("status", {}).get("activeJob") or {}
        outcome = None
        if active.get("name"):
            outcome = self.executor.poll(body["metadata"]["namespace"], active["name"])
        if outcome is None:
            # A lost Job is never recreated
            return self._fail(
                body, REASON_RESTORE_STATE_LOST, "Restore was started but its Job is gone"
            )

        if not outcome.finished:
            return Result.after(self.config.dependency_wait)

        if not outcome.succeeded:
            return self._fail(body, REASON_RESTORE_FAILED, f"Restore failed: {outcome.message}")

        backup_name = body.get("spec", {}).get("backupRef", {}).get("name", "")
        self._write(
            body,
            JobPhase.COMPLETED,
            (True, REASON_RESTORE_COMPLETED, outcome.message or "Restore completed"),
            restoreTime=self.clock().isoformat(),
            activeJob=None,
        )
        self.log_info(body, "Restore completed", reason=REASON_RESTORE_COMPLETED)
        emit_restore_completed(self.events, body, backup_name)
        return Result.done()
