"""Backup controller: dumps a Database with a Job once the Database is Ready."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from ..builders.jobs import UnsupportedLocation, backup_location, build_backup_job, job_name
from ..config import OperatorConfig
from ..constants import (
    DEFAULT_BACKUP_RETENTION,
    EVENT_REASON_BACKUP_STARTED,
    KIND_BACKUP,
    REASON_BACKUP_COMPLETED,
    REASON_BACKUP_FAILED,
    REASON_BACKUP_IN_PROGRESS,
    REASON_BACKUP_STATE_LOST,
    REASON_RETRYING,
    REASON_UNSUPPORTED_LOCATION,
)
from ..metrics import OperatorMetrics
from ..models import JobPhase, Result
from ..services.jobs import JobExecutor, KubernetesJobExecutor
from ..services.store.base import ResourceStore
from ..utils.conditions import set_backup_ready_condition
from ..utils.events import EventRecorder, emit_backup_completed, emit_backup_failed
from .base import BaseReconciler, Clock, utcnow
from .coordination import check_database_ready


class BackupReconciler(BaseReconciler):
    """Gate a Backup on its Database, run a dump Job and record the outcome.

    The running Job is remembered in ``status.activeJob``. A Backup with
    ``spec.schedule`` runs again every ``backup_schedule_interval`` seconds
    after its last run; without one a Completed or Failed Backup is terminal.
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
        super().__init__(KIND_BACKUP, store, config, metrics, events, clock)
        self.executor = executor if executor is not None else KubernetesJobExecutor(store)

    def _write(
        self,
        body: dict[str, Any],
        phase: JobPhase,
        condition: tuple[bool, str, str],
        mutate_extra: Callable[[dict[str, Any]], None] | None = None,
    ) -> dict[str, Any]:
        generation = body["metadata"].get("generation")

        def mutate(obj: dict[str, Any]) -> None:
            status = obj.setdefault("status", {})
            status["phase"] = phase.value
            status["message"] = condition[2]
            set_backup_ready_condition(
                status.setdefault("conditions", []), *condition, observed_generation=generation
            )
            if mutate_extra is not None:
                mutate_extra(status)

        return self.update_status(body, mutate)

    def _until_next_run(self, body: dict[str, Any]) -> float | None:
        """Seconds until a scheduled backup is due again, None for one-shot backups."""
        if not body.get("spec", {}).get("schedule"):
            return None
        last = body.get("status", {}).get("lastScheduledTime")
        if not last:
            return 0.0
        elapsed = (self.clock() - datetime.fromisoformat(last)).total_seconds()
        return max(self.config.backup_schedule_interval - elapsed, 0.0)

    def _next(self, body: dict[str, Any]) -> Result:
        wait = self._until_next_run(body)
        return Result.done() if wait is None else Result.after(wait)

    def reconcile_resource(self, body: dict[str, Any]) -> Result:
        if body["metadata"].get("deletionTimestamp"):
            return Result.done()

        phase = body.get("status", {}).get("phase") or JobPhase.PENDING.value
        if phase == JobPhase.IN_PROGRESS.value:
            return self._check_progress(body)
        if phase in (JobPhase.COMPLETED.value, JobPhase.FAILED.value):
            wait = self._until_next_run(body)
            if wait is None:
                return Result.done()
            if wait > 0:
                return Result.after(wait)
        return self._begin(body)

    def _begin(self, body: dict[str, Any]) -> Result:
        spec = body.get("spec", {})
        namespace = body["metadata"]["namespace"]
        precondition = check_database_ready(
            self.store, namespace, spec.get("databaseRef", {}).get("name", "")
        )
        if not precondition.satisfied:
            self.log_info(body, precondition.message, reason=precondition.reason)
            self._write(body, JobPhase.PENDING, (False, precondition.reason, precondition.message))
            return Result.after(self.config.dependency_wait)

        database = precondition.obj
        started_at = self.clock()
        location = backup_location(database, body, started_at)
        name = job_name(body["metadata"]["name"], f"{started_at:%Y%m%d%H%M%S}")
        try:
            job = build_backup_job(name, body, database, location)
        except UnsupportedLocation as e:
            return self._finish_failed(body, REASON_UNSUPPORTED_LOCATION, str(e), started_at)

        def record_job(status: dict[str, Any]) -> None:
            status["activeJob"] = {
                "name": name,
                "location": location,
                "startTime": started_at.isoformat(),
            }

        body = self._write(
            body,
            JobPhase.IN_PROGRESS,
            (False, REASON_BACKUP_IN_PROGRESS, f"Backing up {database['metadata']['name']} to {location}"),
            record_job,
        )
        try:
            self.executor.start(job)
        except Exception:
            self._write(
                body,
                JobPhase.PENDING,
                (False, REASON_RETRYING, "Backup Job could not be started"),
                lambda status: status.pop("activeJob", None),
            )
            raise
        self.events.record(body, EVENT_REASON_BACKUP_STARTED, f"Started Job {name}")
        return Result.now()

    def _check_progress(self, body: dict[str, Any]) -> Result:
        active = body.get("status", {}).get("activeJob") or {}
        outcome = None
        if active.get("name"):
            outcome = self.executor.poll(body["metadata"]["namespace"], active["name"])
        started_at = self.clock()
        if active.get("startTime"):
            started_at = datetime.fromisoformat(active["startTime"])

        if outcome is None:
            message = "Backup was started but its Job is gone"
            self.log_warning(body, message, reason=REASON_BACKUP_STATE_LOST)
            return self._finish_failed(body, REASON_BACKUP_STATE_LOST, message, started_at)
        if not outcome.finished:
            return Result.after(self.config.dependency_wait)
        if not outcome.succeeded:
            return self._finish_failed(
                body, REASON_BACKUP_FAILED, f"Backup failed: {outcome.message}", started_at
            )

        location = active["location"]
        retention = int(body.get("spec", {}).get("retention") or DEFAULT_BACKUP_RETENTION)
        scheduled = bool(body.get("spec", {}).get("schedule"))

        def record_success(status: dict[str, Any]) -> None:
            status.pop("activeJob", None)
            status["backupTime"] = started_at.isoformat()
            status["backupLocation"] = location
            status["backupCount"] = int(status.get("backupCount") or 0) + 1
            history = [*status.get("history", []), location]
            status["history"] = history[-retention:]
            if scheduled:
                status["lastScheduledTime"] = started_at.isoformat()

        body = self._write(
            body,
            JobPhase.COMPLETED,
            (True, REASON_BACKUP_COMPLETED, f"Backup written to {location}"),
            record_success,
        )
        self.log_info(body, f"Backup written to {location}", reason=REASON_BACKUP_COMPLETED)
        emit_backup_completed(self.events, body, location)
        return self._next(body)

    def _finish_failed(
        self, body: dict[str, Any], reason: str, message: str, started_at: datetime
    ) -> Result:
        scheduled = bool(body.get("spec", {}).get("schedule"))
        self.log_error(body, message, reason=reason)
        emit_backup_failed(self.events, body, message)

        def record_failure(status: dict[str, Any]) -> None:
            status.pop("activeJob", None)
            if scheduled:
                status["lastScheduledTime"] = started_at.isoformat()

        body = self._write(body, JobPhase.FAILED, (False, reason, message), record_failure)
        return self._next(body)
