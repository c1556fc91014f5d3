"""Utilities for emitting Kubernetes events."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import kopf

from ..constants import (
    EVENT_REASON_BACKUP_COMPLETED,
    EVENT_REASON_BACKUP_FAILED,
    EVENT_REASON_CHILD_CREATED,
    EVENT_REASON_DELETED,
    EVENT_REASON_FAILED,
    EVENT_REASON_READY,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_RESTORE_COMPLETED,
    EVENT_REASON_RESTORE_FAILED,
)

logger = logging.getLogger(__name__)


def emit_event(
    body: dict[str, Any],
    reason: str,
    message: str,
    type_: str = "Normal",
) -> None:
    """Emit a Kubernetes event.

    Args:
        body: Resource body (needs apiVersion, kind and metadata)
        reason: Event reason
        message: Event message
        type_: Event type (Normal or Warning)
    """
    kopf.event(
        body,
        reason=reason,
        message=message,
        type=type_,
    )


class EventRecorder(Protocol):
    """Sink for Kubernetes Events raised by the reconcilers."""

    def record(
        self, body: dict[str, Any], reason: str, message: str, type_: str = "Normal"
    ) -> None:
        ...


class KopfEventRecorder:
    """EventRecorder posting through kopf's event queue.

    kopf posts events from the operator's event loop, so this only works
    inside kopf handlers, whose sync threads carry kopf's context.
    """

    def record(
        self, body: dict[str, Any], reason: str, message: str, type_: str = "Normal"
    ) -> None:
        try:
            emit_event(body, reason, message, type_=type_)
        except LookupError:
            # No kopf event queue in this context (e.g. outside the operator)
            logger.debug(f"Dropped event {reason}: {message}")


class NullEventRecorder:
    """EventRecorder that discards everything."""

    def record(
        self, body: dict[str, Any], reason: str, message: str, type_: str = "Normal"
    ) -> None:
        return None


def emit_reconcile_failed(recorder: EventRecorder, body: dict[str, Any], message: str) -> None:
    """Emit reconcile failed event."""
    recorder.record(body, EVENT_REASON_RECONCILE_FAILED, message, type_="Warning")


def emit_child_created(
    recorder: EventRecorder, body: dict[str, Any], child_kind: str, child_name: str
) -> None:
    """Emit child created event."""
    recorder.record(body, EVENT_REASON_CHILD_CREATED, f"{child_kind} {child_name} created")


def emit_child_deleted(
    recorder: EventRecorder, body: dict[str, Any], child_kind: str, child_name: str
) -> None:
    """Emit child deleted event."""
    recorder.record(body, EVENT_REASON_DELETED, f"{child_kind} {child_name} deleted")


def emit_ready(recorder: EventRecorder, body: dict[str, Any], endpoint: str) -> None:
    """Emit database ready event."""
    recorder.record(body, EVENT_REASON_READY, f"Database is ready at {endpoint}")


def emit_failed(recorder: EventRecorder, body: dict[str, Any], reason: str, message: str) -> None:
    """Emit database failed event."""
    recorder.record(body, EVENT_REASON_FAILED, f"{reason}: {message}", type_="Warning")


def emit_backup_completed(recorder: EventRecorder, body: dict[str, Any], location: str) -> None:
    """Emit backup completed event."""
    recorder.record(body, EVENT_REASON_BACKUP_COMPLETED, f"Backup written to {location}")


def emit_backup_failed(recorder: EventRecorder, body: dict[str, Any], message: str) -> None:
    """Emit backup failed event."""
    recorder.record(body, EVENT_REASON_BACKUP_FAILED, message, type_="Warning")


def emit_restore_completed(recorder: EventRecorder, body: dict[str, Any], backup: str) -> None:
    """Emit restore completed event."""
    recorder.record(body, EVENT_REASON_RESTORE_COMPLETED, f"Restored from backup {backup}")


def emit_restore_failed(recorder: EventRecorder, body: dict[str, Any], message: str) -> None:
    """Emit restore failed event."""
    recorder.record(body, EVENT_REASON_RESTORE_FAILED, message, type_="Warning")
