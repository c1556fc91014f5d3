"""Base reconciler class with functionality shared by all controllers."""

from __future__ import annotations

import copy
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

from ..config import OperatorConfig
from ..constants import CONTROLLER_NAME
from ..logging import log_resource_event
from ..metrics import OperatorMetrics
from ..models import ResourceKey, Result
from ..services.store.base import NotFoundError, ReconcileCancelled, ResourceStore, get_or_none
from ..tracing import annotate_resource, set_span_status, trace_span
from ..utils.errors import sanitize_exception
from ..utils.events import EventRecorder, emit_reconcile_failed
from ..utils.retry import update_with_retry

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseReconciler:
    """Base class for all reconcilers with common functionality."""

    def __init__(
        self,
        kind: str,
        store: ResourceStore,
        config: OperatorConfig,
        metrics: OperatorMetrics,
        events: EventRecorder,
        clock: Clock = utcnow,
    ) -> None:
        """Initialize base reconciler.

        Args:
            kind: The resource kind handled (e.g., "Database", "Backup")
            store: Store to read and write resources through
            config: Operator configuration
            metrics: Metric collectors
            events: Kubernetes Event sink
            clock: Source of the current time
        """
        self.kind = kind
        self.store = store
        self.config = config
        self.metrics = metrics
        self.events = events
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__module__)

    # -- logging ----------------------------------------------------------

    def _get_resource_context(self, body: dict[str, Any]) -> dict[str, Any]:
        meta = body.get("metadata", {})
        status = body.get("status") or {}
        return {
            "name": meta.get("name", "unknown"),
            "namespace": meta.get("namespace"),
            "uid": meta.get("uid", "unknown"),
            "phase": status.get("phase"),
            "generation": meta.get("generation"),
            "observed_generation": status.get("observedGeneration"),
        }

    def _log(
        self,
        level: int,
        body: dict[str, Any],
        message: str,
        event: str,
        reason: str,
        **kwargs: Any,
    ) -> None:
        ctx = self._get_resource_context(body)
        log_resource_event(
            self.logger,
            controller=CONTROLLER_NAME,
            resource_kind=self.kind,
            resource_name=ctx["name"],
            namespace=ctx["namespace"],
            uid=ctx["uid"],
            event=event,
            reason=reason,
            message=message,
            level=level,
            phase=ctx["phase"],
            generation=ctx["generation"],
            observed_generation=ctx["observed_generation"],
            **kwargs,
        )

    def log_info(
        self,
        body: dict[str, Any],
        message: str,
        event: str = "info",
        reason: str = "Info",
        **kwargs: Any,
    ) -> None:
        """Log an info-level structured log message."""
        self._log(logging.INFO, body, message, event, reason, **kwargs)

    def log_warning(
        self,
        body: dict[str, Any],
        message: str,
        event: str = "warning",
        reason: str = "Warning",
        **kwargs: Any,
    ) -> None:
        """Log a warning-level structured log message."""
        self._log(logging.WARNING, body, message, event, reason, **kwargs)

    def log_error(
        self,
        body: dict[str, Any],
        message: str,
        error: BaseException | None = None,
        event: str = "error",
        reason: str = "Error",
        **kwargs: Any,
    ) -> None:
        """Log an error-level structured log message.

        Args:
            body: Resource body
            message: Log message
            error: Optional exception to include sanitized error details
            event: Event type (default: "error")
            reason: Reason for the event (default: "Error")
            **kwargs: Additional fields to include in the log
        """
        log_data = kwargs.copy()
        if error is not None:
            log_data["error"] = sanitize_exception(error)
            log_data["error_type"] = type(error).__name__
        self._log(logging.ERROR, body, message, event, reason, **log_data)

    # -- writes -----------------------------------------------------------

    def _count_conflict(self, attempt: int) -> None:
        self.metrics.conflict_retries_total.labels(kind=self.kind).inc()

    def update_status(
        self, body: dict[str, Any], mutate: Callable[[dict[str, Any]], None]
    ) -> dict[str, Any]:
        """Write a status mutation, retrying on conflicts.

        Nothing is written when the mutation leaves the status unchanged,
        so repeated invocations do not generate watch events.
        """
        preview = copy.deepcopy(body)
        mutate(preview)
        if preview.get("status") == body.get("status"):
            return body
        return update_with_retry(
            self.store,
            body,
            mutate,
            attempts=self.config.conflict_retry_attempts,
            status=True,
            on_conflict=self._count_conflict,
        )

    def update_metadata(
        self, body: dict[str, Any], mutate: Callable[[dict[str, Any]], None]
    ) -> dict[str, Any]:
        """Write a metadata/spec mutation, retrying on conflicts."""
        return update_with_retry(
            self.store,
            body,
            mutate,
            attempts=self.config.conflict_retry_attempts,
            on_conflict=self._count_conflict,
        )

    def ensure_finalizer(self, body: dict[str, Any], finalizer: str) -> dict[str, Any]:
        """Ensure finalizer is present in metadata."""
        if finalizer in body.get("metadata", {}).get("finalizers", []):
            return body

        def add(obj: dict[str, Any]) -> None:
            finalizers = obj["metadata"].setdefault("finalizers", [])
            if finalizer not in finalizers:
                finalizers.append(finalizer)

        self.log_info(body, "Adding finalizer", reason="FinalizerAdded", finalizer=finalizer)
        return self.update_metadata(body, add)

    def remove_finalizer(self, body: dict[str, Any], finalizer: str) -> dict[str, Any]:
        """Remove finalizer from metadata."""
        if finalizer not in body.get("metadata", {}).get("finalizers", []):
            return body

        def remove(obj: dict[str, Any]) -> None:
            finalizers = obj["metadata"].get("finalizers") or []
            obj["metadata"]["finalizers"] = [f for f in finalizers if f != finalizer]

        return self.update_metadata(body, remove)

    # -- entry point ------------------------------------------------------

    def reconcile(self, key: ResourceKey) -> Result:
        """Fetch the resource behind ``key`` and reconcile it once.

        An absent resource is a no-op. Errors are logged, counted and
        re-raised so the scheduler can back off.
        """
        start_time = time.time()
        body: dict[str, Any] | None = None
        with trace_span(
            f"reconcile.{self.kind}",
            kind=self.kind,
            attributes={"resource.name": key.name, "resource.namespace": key.namespace or ""},
        ):
            try:
                body = get_or_none(self.store, key.kind, key.namespace, key.name)
                if body is None:
                    self.logger.debug(f"{key} no longer exists, nothing to do")
                    self.metrics.reconcile_total.labels(kind=self.kind, result="not_found").inc()
                    return Result.done()

                annotate_resource(body)
                result = self.reconcile_resource(body)
                self.metrics.reconcile_total.labels(
                    kind=self.kind, result="requeue" if result.requeue else "success"
                ).inc()
                set_span_status(True)
                return result
            except ReconcileCancelled:
                raise
            except NotFoundError as e:
                # The resource vanished between the read and a write
                self.logger.debug(f"{key} disappeared during reconciliation: {e}")
                self.metrics.reconcile_total.labels(kind=self.kind, result="not_found").inc()
                return Result.now()
            except Exception as e:
                sanitized_error = sanitize_exception(e)
                self.metrics.error_total.labels(kind=self.kind, error_type=type(e).__name__).inc()
                self.metrics.reconcile_total.labels(kind=self.kind, result="error").inc()
                if body is not None:
                    self.log_error(body, "Reconciliation failed", error=e, reason="ReconciliationFailed")
                    emit_reconcile_failed(self.events, body, f"Reconciliation failed: {sanitized_error}")
                raise
            finally:
                self.metrics.reconcile_duration_seconds.labels(kind=self.kind).observe(
                    time.time() - start_time
                )

    def reconcile_resource(self, body: dict[str, Any]) -> Result:
        raise NotImplementedError
