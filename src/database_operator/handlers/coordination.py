"""Read-only preconditions one resource places on another."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..constants import (
    KIND_BACKUP,
    KIND_DATABASE,
    REASON_BACKUP_NOT_COMPLETED,
    REASON_BACKUP_NOT_FOUND,
    REASON_DATABASE_NOT_FOUND,
    REASON_DATABASE_NOT_READY,
)
from ..models import JobPhase, Phase
from ..services.store.base import ResourceStore, get_or_none


@dataclass(frozen=True)
class Precondition:
    """Outcome of a dependency check; ``obj`` is the dependency when found."""

    satisfied: bool
    reason: str = ""
    message: str = ""
    obj: dict[str, Any] | None = None


def check_database_ready(store: ResourceStore, namespace: str, name: str) -> Precondition:
    """Require the referenced Database to exist and be in the Ready phase."""
    if not name:
        return Precondition(False, REASON_DATABASE_NOT_FOUND, "spec.databaseRef.name is required")
    database = get_or_none(store, KIND_DATABASE, namespace, name)
    if database is None:
        return Precondition(False, REASON_DATABASE_NOT_FOUND, f"Database {name} not found")
    phase = database.get("status", {}).get("phase")
    if phase != Phase.READY.value:
        return Precondition(
            False,
            REASON_DATABASE_NOT_READY,
            f"Database {name} is not ready (phase: {phase or Phase.PENDING.value})",
            database,
        )
    return Precondition(True, obj=database)


def check_backup_completed(store: ResourceStore, namespace: str, name: str) -> Precondition:
    """Require the referenced Backup to exist and have completed."""
    if not name:
        return Precondition(False, REASON_BACKUP_NOT_FOUND, "spec.backupRef.name is required")
    backup = get_or_none(store, KIND_BACKUP, namespace, name)
    if backup is None:
        return Precondition(False, REASON_BACKUP_NOT_FOUND, f"Backup {name} not found")
    phase = backup.get("status", {}).get("phase")
    if phase != JobPhase.COMPLETED.value:
        return Precondition(
            False,
            REASON_BACKUP_NOT_COMPLETED,
            f"Backup {name} is not completed (phase: {phase or JobPhase.PENDING.value})",
            backup,
        )
    return Precondition(True, obj=backup)
