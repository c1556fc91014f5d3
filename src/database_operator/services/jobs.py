"""Run backup and restore Jobs and read back their outcome."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from ..constants import KIND_JOB
from .store.base import AlreadyExistsError, ResourceStore, get_or_none

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobOutcome:
    finished: bool
    succeeded: bool = False
    message: str = ""


class JobExecutor(Protocol):
    """Starts Jobs and reports on them.

    ``start`` must be idempotent for a given Job name; ``poll`` returns None
    when no such Job exists.
    """

    def start(self, job: dict[str, Any]) -> None:
        ...

    def poll(self, namespace: str, name: str) -> JobOutcome | None:
        ...


def job_outcome(job: dict[str, Any]) -> JobOutcome:
    """Read a Job's status as finished/succeeded."""
    status = job.get("status") or {}
    if status.get("succeeded"):
        return JobOutcome(True, True, f"Job {job['metadata']['name']} completed")
    for condition in status.get("conditions") or []:
        if condition.get("type") == "Failed" and condition.get("status") == "True":
            detail = condition.get("message") or condition.get("reason") or "Job failed"
            return JobOutcome(True, False, detail)
    return JobOutcome(False)


class KubernetesJobExecutor:
    """JobExecutor creating batch/v1 Jobs through the resource store.

    Job state lives in the API server, so a restarted operator picks up
    Jobs started before the restart.
    """

    def __init__(self, store: ResourceStore) -> None:
        self.store = store

    def start(self, job: dict[str, Any]) -> None:
        meta = job["metadata"]
        try:
            self.store.create(job)
            logger.info(f"Started Job {meta['namespace']}/{meta['name']}")
        except AlreadyExistsError:
            logger.debug(f"Job {meta['namespace']}/{meta['name']} already exists")

    def poll(self, namespace: str, name: str) -> JobOutcome | None:
        job = get_or_none(self.store, KIND_JOB, namespace, name)
        if job is None:
            return None
        return job_outcome(job)
