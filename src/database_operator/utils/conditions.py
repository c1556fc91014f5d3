"""Utilities for managing Kubernetes conditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..constants import (
    COND_BACKUP_READY,
    COND_PROGRESSING,
    COND_READY,
    COND_RESTORE_READY,
)


def update_condition(
    conditions: list[dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Update or add a condition to the conditions list.

    At most one condition per type is kept. The lastTransitionTime of an
    existing condition survives when its status does not change.

    Args:
        conditions: List of existing conditions
        condition_type: Type of condition
        status: Status of condition ("True", "False", "Unknown")
        reason: Reason for the condition
        message: Human-readable message
        observed_generation: Generation when condition was observed

    Returns:
        Updated list of conditions
    """
    now = datetime.now(timezone.utc).isoformat()

    existing_idx = None
    for idx, cond in enumerate(conditions):
        if cond.get("type") == condition_type:
            existing_idx = idx
            break

    new_condition = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": now,
    }

    if observed_generation is not None:
        new_condition["observedGeneration"] = observed_generation

    if existing_idx is not None:
        existing = conditions[existing_idx]
        if existing.get("status") == status:
            new_condition["lastTransitionTime"] = existing.get("lastTransitionTime", now)
        conditions[existing_idx] = new_condition
    else:
        conditions.append(new_condition)

    return conditions


def find_condition(
    conditions: list[dict[str, Any]] | None, condition_type: str
) -> dict[str, Any] | None:
    """Return the condition of the given type, if present."""
    for cond in conditions or []:
        if cond.get("type") == condition_type:
            return cond
    return None


def is_condition_true(conditions: list[dict[str, Any]] | None, condition_type: str) -> bool:
    """Check whether the condition of the given type has status "True"."""
    cond = find_condition(conditions, condition_type)
    return cond is not None and cond.get("status") == "True"


def _bool_status(status: bool) -> str:
    return "True" if status else "False"


def set_ready_condition(
    conditions: list[dict[str, Any]],
    status: bool,
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the Ready condition."""
    return update_condition(
        conditions, COND_READY, _bool_status(status), reason, message, observed_generation
    )


def set_progressing_condition(
    conditions: list[dict[str, Any]],
    status: bool,
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the Progressing condition."""
    return update_condition(
        conditions, COND_PROGRESSING, _bool_status(status), reason, message, observed_generation
    )


def set_backup_ready_condition(
    conditions: list[dict[str, Any]],
    status: bool,
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the BackupReady condition."""
    return update_condition(
        conditions, COND_BACKUP_READY, _bool_status(status), reason, message, observed_generation
    )


def set_restore_ready_condition(
    conditions: list[dict[str, Any]],
    status: bool,
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the RestoreReady condition."""
    return update_condition(
        conditions, COND_RESTORE_READY, _bool_status(status), reason, message, observed_generation
    )
