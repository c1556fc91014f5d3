"""Phase state machine driving a Database or ClusterDatabase to Ready."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from kubernetes.utils.quantity import parse_quantity

from ..builders.database import (
    build_credentials_secret,
    build_service,
    build_statefulset,
    credentials_secret_name,
    desired_replicas,
    endpoint_for,
)
from ..builders.diff import FIELD_REPLICAS, apply_drift, replicas_patch, statefulset_drift
from ..config import OperatorConfig
from ..constants import (
    CLUSTER_FINALIZER,
    EVENT_REASON_PROVISIONING,
    FINALIZER,
    KIND_CLUSTER_DATABASE,
    KIND_DATABASE,
    KIND_NAMESPACE,
    KIND_RESOURCE_QUOTA,
    KIND_SECRET,
    KIND_SERVICE,
    KIND_STATEFULSET,
    LABEL_NAMESPACE_TENANT,
    QUOTA_NAME,
    QUOTA_RESOURCE_KEY,
    REASON_ALL_CHECKS_PASSED,
    REASON_CONFIGURING,
    REASON_DEPLOYING,
    REASON_FAILED,
    REASON_NAMESPACE_INVALID,
    REASON_PROVISIONING,
    REASON_QUOTA_EXCEEDED,
    REASON_RECONCILIATION_COMPLETE,
    REASON_RETRYING,
    REASON_SCALING_IN_PROGRESS,
    REASON_SECRET_CREATION_FAILED,
    REASON_SERVICE_CREATION_FAILED,
    REASON_STATEFULSET_CREATION_FAILED,
    REASON_STATEFULSET_MISSING,
    REASON_STATEFULSET_UPDATE_FAILED,
    REASON_VERIFICATION_PENDING,
    REASON_VERIFYING,
    REASON_WAITING_FOR_REPLICAS,
)
from ..metrics import OperatorMetrics
from ..models import Ownership, Phase, Result, ownership_for, parse_phase
from ..services.store.base import (
    AlreadyExistsError,
    NotFoundError,
    ResourceStore,
    StoreError,
    get_or_none,
    is_retryable,
)
from ..utils.conditions import set_progressing_condition, set_ready_condition
from ..utils.events import EventRecorder, emit_child_created, emit_failed, emit_ready
from ..utils.retry import update_with_retry
from .base import BaseReconciler, Clock, utcnow
from .deletion import DeletionOrchestrator

# Post-deployment check: (database body, statefulset body or None) -> (passed, message)
HealthCheck = Callable[[dict[str, Any], dict[str, Any] | None], tuple[bool, str]]

# (status, reason, message) for a Ready or Progressing condition
ConditionUpdate = tuple[bool, str, str]


class ChildMutationFailed(Exception):
    """A create or update of a child failed for good."""

    def __init__(self, reason: str, error: StoreError) -> None:
        super().__init__(str(error))
        self.reason = reason
        self.error = error


def list_cluster_databases(
    store: ResourceStore,
    tenant: str | None = None,
    target_namespace: str | None = None,
) -> list[dict[str, Any]]:
    """List ClusterDatabases, optionally narrowed to a tenant or target namespace."""
    items = store.list(KIND_CLUSTER_DATABASE)
    if tenant is not None:
        items = [item for item in items if item.get("spec", {}).get("tenant") == tenant]
    if target_namespace is not None:
        items = [
            item
            for item in items
            if item.get("spec", {}).get("targetNamespace") == target_namespace
        ]
    return items


class DatabaseReconciler(BaseReconciler):
    """Drive a database resource through its provisioning phases.

    One invocation performs at most one phase transition, persists it and
    returns a scheduling directive; the next step happens on the next
    invocation. The same state machine serves the namespaced Database and
    the cluster-scoped ClusterDatabase, which differ only in ownership and
    in the placement checks of the latter.
    """

    def __init__(
        self,
        store: ResourceStore,
        config: OperatorConfig,
        metrics: OperatorMetrics,
        events: EventRecorder,
        kind: str = KIND_DATABASE,
        health_check: HealthCheck | None = None,
        clock: Clock = utcnow,
    ) -> None:
        super().__init__(kind, store, config, metrics, events, clock)
        self.health_check = health_check
        self.finalizer = CLUSTER_FINALIZER if kind == KIND_CLUSTER_DATABASE else FINALIZER
        self.deletion = DeletionOrchestrator(self, self.finalizer)
        self._handlers: dict[Phase, Callable[[dict[str, Any], Ownership], Result]] = {
            Phase.PENDING: self._handle_pending,
            Phase.PROVISIONING: self._handle_provisioning,
            Phase.CONFIGURING: self._handle_configuring,
            Phase.DEPLOYING: self._handle_deploying,
            Phase.VERIFYING: self._handle_verifying,
            Phase.READY: self._handle_ready,
            Phase.FAILED: self._handle_failed,
        }

    # -- entry point ------------------------------------------------------

    def reconcile_resource(self, body: dict[str, Any]) -> Result:
        ownership = ownership_for(body)

        if body["metadata"].get("deletionTimestamp"):
            return self.deletion.finalize(body, ownership)

        body = self.ensure_finalizer(body, self.finalizer)

        raw_phase = body.get("status", {}).get("phase")
        phase = parse_phase(raw_phase)
        if phase is None:
            self.log_warning(body, f"Unrecognized phase {raw_phase!r}, resetting", reason="PhaseReset")
            self._write(body, Phase.PENDING)
            return Result.now()

        try:
            return self._handlers[phase](body, ownership)
        except ChildMutationFailed as e:
            return self._fail(body, e.reason, str(e))

    # -- status writes ----------------------------------------------------

    def _write(
        self,
        body: dict[str, Any],
        phase: Phase | None,
        ready: ConditionUpdate | None = None,
        progressing: ConditionUpdate | None = None,
        **fields: Any,
    ) -> dict[str, Any]:
        """Persist phase, conditions and derived fields in one status write."""
        generation = body["metadata"].get("generation")
        old_phase = body.get("status", {}).get("phase")

        def mutate(obj: dict[str, Any]) -> None:
            status = obj.setdefault("status", {})
            conditions = status.setdefault("conditions", [])
            if ready is not None:
                set_ready_condition(conditions, *ready, observed_generation=generation)
            if progressing is not None:
                set_progressing_condition(conditions, *progressing, observed_generation=generation)
            if phase is not None:
                status["phase"] = phase.value
                status["ready"] = phase == Phase.READY
            status.update(fields)

        updated = self.update_status(body, mutate)
        if phase is not None and old_phase != phase.value:
            self.metrics.phase_transitions_total.labels(
                kind=self.kind, from_phase=old_phase or "", to_phase=phase.value
            ).inc()
            self.log_info(
                body,
                f"Phase {old_phase or '<none>'} -> {phase.value}",
                event="transition",
                reason=phase.value,
            )
        return updated

    def _fail(self, body: dict[str, Any], reason: str, message: str) -> Result:
        self.log_error(body, message, reason=reason)
        emit_failed(self.events, body, reason, message)
        self._write(
            body,
            Phase.FAILED,
            ready=(False, reason, message),
            progressing=(False, REASON_FAILED, message),
            lastFailureTime=self.clock().isoformat(),
        )
        return Result.after(self.config.failed_retry_delay)

    # -- child helpers ----------------------------------------------------

    def _mutate_child(self, reason: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except (AlreadyExistsError, NotFoundError):
            raise
        except StoreError as e:
            if is_retryable(e):
                raise
            raise ChildMutationFailed(reason, e) from e

    def _create_child(self, body: dict[str, Any], child: dict[str, Any], reason: str) -> None:
        kind, name = child["kind"], child["metadata"]["name"]
        try:
            self._mutate_child(reason, lambda: self.store.create(child))
        except AlreadyExistsError:
            # Created by an earlier pass whose status write did not land
            self.metrics.child_operations_total.labels(
                child=kind, operation="create", result="exists"
            ).inc()
            return
        except ChildMutationFailed:
            self.metrics.child_operations_total.labels(
                child=kind, operation="create", result="error"
            ).inc()
            raise
        self.metrics.child_operations_total.labels(
            child=kind, operation="create", result="success"
        ).inc()
        self.log_info(body, f"Created {kind} {name}", event="create", reason="Created")
        emit_child_created(self.events, body, kind, name)

    def _ensure_credentials(self, body: dict[str, Any], ownership: Ownership) -> None:
        name = body["metadata"]["name"]
        # Existence only: the password is never read back or regenerated
        if get_or_none(self.store, KIND_SECRET, ownership.namespace, credentials_secret_name(name)):
            return
        secret = build_credentials_secret(name, body.get("spec", {}), ownership)
        self._create_child(body, secret, REASON_SECRET_CREATION_FAILED)

    def _get_workload(self, body: dict[str, Any], ownership: Ownership) -> dict[str, Any] | None:
        return get_or_none(self.store, KIND_STATEFULSET, ownership.namespace, body["metadata"]["name"])

    def _workload_missing(self, body: dict[str, Any]) -> Result:
        self.log_warning(body, "StatefulSet not found, provisioning again", reason=REASON_STATEFULSET_MISSING)
        self._write(
            body,
            Phase.PROVISIONING,
            ready=(False, REASON_STATEFULSET_MISSING, "StatefulSet not found, recreating"),
            progressing=(True, REASON_PROVISIONING, "Recreating database workload"),
        )
        return Result.now()

    # -- placement (ClusterDatabase) ---------------------------------------

    def check_placement(self, body: dict[str, Any]) -> tuple[str, str] | None:
        """Validate the target namespace of a ClusterDatabase.

        Returns:
            ``(reason, message)`` describing the violation, or None
        """
        spec = body.get("spec", {})
        name = body["metadata"]["name"]
        target = spec.get("targetNamespace")
        if not target:
            return REASON_NAMESPACE_INVALID, "spec.targetNamespace is required"

        namespace = get_or_none(self.store, KIND_NAMESPACE, None, target)
        if namespace is None:
            return REASON_NAMESPACE_INVALID, f"target namespace {target} does not exist"

        tenant = spec.get("tenant")
        namespace_tenant = (namespace.get("metadata", {}).get("labels") or {}).get(
            LABEL_NAMESPACE_TENANT
        )
        if tenant and namespace_tenant and namespace_tenant != tenant:
            return (
                REASON_NAMESPACE_INVALID,
                f"namespace {target} belongs to tenant {namespace_tenant}, not {tenant}",
            )

        quota = get_or_none(self.store, KIND_RESOURCE_QUOTA, target, QUOTA_NAME)
        hard = ((quota or {}).get("spec", {}).get("hard") or {}).get(QUOTA_RESOURCE_KEY)
        if hard is not None:
            limit = int(parse_quantity(str(hard)))
            others = [
                item
                for item in list_cluster_databases(self.store, target_namespace=target)
                if item["metadata"]["name"] != name
            ]
            if len(others) >= limit:
                return (
                    REASON_QUOTA_EXCEEDED,
                    f"namespace {target} already hosts {len(others)} of {limit} allowed databases",
                )
        return None

    # -- phase handlers ---------------------------------------------------

    def _handle_pending(self, body: dict[str, Any], ownership: Ownership) -> Result:
        if self.kind == KIND_CLUSTER_DATABASE:
            violation = self.check_placement(body)
            if violation is not None:
                return self._fail(body, *violation)

        self.events.record(body, EVENT_REASON_PROVISIONING, "Provisioning database resources")
        self._write(
            body,
            Phase.PROVISIONING,
            ready=(False, REASON_PROVISIONING, "Database is being provisioned"),
            progressing=(True, REASON_PROVISIONING, "Provisioning database resources"),
        )
        return Result.now()

    def _handle_provisioning(self, body: dict[str, Any], ownership: Ownership) -> Result:
        self._ensure_credentials(body, ownership)

        if self._get_workload(body, ownership) is None:
            statefulset = build_statefulset(body["metadata"]["name"], body.get("spec", {}), ownership)
            self._create_child(body, statefulset, REASON_STATEFULSET_CREATION_FAILED)
            return Result.now()

        self._write(
            body,
            Phase.CONFIGURING,
            progressing=(True, REASON_CONFIGURING, "Configuring database endpoint"),
        )
        return Result.now()

    def _handle_configuring(self, body: dict[str, Any], ownership: Ownership) -> Result:
        name = body["metadata"]["name"]
        if get_or_none(self.store, KIND_SERVICE, ownership.namespace, name) is None:
            service = build_service(name, body.get("spec", {}), ownership)
            self._create_child(body, service, REASON_SERVICE_CREATION_FAILED)

        self._write(
            body,
            Phase.DEPLOYING,
            progressing=(True, REASON_DEPLOYING, "Waiting for database workload"),
        )
        return Result.now()

    def _handle_deploying(self, body: dict[str, Any], ownership: Ownership) -> Result:
        workload = self._get_workload(body, ownership)
        if workload is None:
            return self._workload_missing(body)

        desired = desired_replicas(body.get("spec", {}))
        ready = workload.get("status", {}).get("readyReplicas") or 0
        if ready < desired:
            self._write(
                body,
                None,
                progressing=(
                    True,
                    REASON_WAITING_FOR_REPLICAS,
                    f"Waiting for replicas: {ready}/{desired} ready",
                ),
            )
            return Result.after(self.config.deploy_check_delay)

        self._write(
            body,
            Phase.VERIFYING,
            progressing=(True, REASON_VERIFYING, "Running post-deployment checks"),
        )
        return Result.now()

    def _handle_verifying(self, body: dict[str, Any], ownership: Ownership) -> Result:
        if self.health_check is not None:
            passed, message = self.health_check(body, self._get_workload(body, ownership))
            if not passed:
                self._write(body, None, progressing=(True, REASON_VERIFICATION_PENDING, message))
                return Result.after(self.config.deploy_check_delay)

        name = body["metadata"]["name"]
        endpoint = endpoint_for(name, ownership.namespace)
        fields: dict[str, Any] = {
            "endpoint": endpoint,
            "secretName": credentials_secret_name(name),
            "observedGeneration": body["metadata"].get("generation"),
        }
        if self.kind == KIND_CLUSTER_DATABASE:
            fields["targetNamespace"] = ownership.namespace

        self._write(
            body,
            Phase.READY,
            ready=(True, REASON_ALL_CHECKS_PASSED, "Database is ready"),
            progressing=(False, REASON_RECONCILIATION_COMPLETE, "Reconciliation complete"),
            **fields,
        )
        emit_ready(self.events, body, endpoint)
        return Result.done()

    def _handle_ready(self, body: dict[str, Any], ownership: Ownership) -> Result:
        workload = self._get_workload(body, ownership)
        if workload is None:
            return self._workload_missing(body)

        desired = build_statefulset(body["metadata"]["name"], body.get("spec", {}), ownership)
        drift = statefulset_drift(workload, desired)
        if drift:
            for field in drift:
                self.metrics.drift_detected_total.labels(kind=self.kind, field=field).inc()
            self.log_info(body, f"Workload drift in {', '.join(drift)}", event="drift", reason="DriftDetected")
            self._converge_workload(workload, desired, drift)
            self._write(
                body,
                Phase.DEPLOYING,
                ready=(False, REASON_SCALING_IN_PROGRESS, f"Updating workload {', '.join(drift)}"),
                progressing=(True, REASON_DEPLOYING, "Rolling out workload changes"),
            )
            return Result.now()

        replicas = desired_replicas(body.get("spec", {}))
        ready_replicas = workload.get("status", {}).get("readyReplicas") or 0
        if ready_replicas < replicas:
            self.log_warning(
                body,
                f"Ready replicas dropped to {ready_replicas}/{replicas}",
                event="degraded",
                reason="ReplicasUnready",
            )
            self._write(
                body,
                Phase.DEPLOYING,
                ready=(False, REASON_SCALING_IN_PROGRESS, f"{ready_replicas}/{replicas} replicas ready"),
                progressing=(True, REASON_DEPLOYING, "Waiting for replicas to recover"),
            )
            return Result.now()

        generation = body["metadata"].get("generation")
        if body.get("status", {}).get("observedGeneration") != generation:
            self._write(body, None, observedGeneration=generation)
        return Result.done()

    def _converge_workload(
        self, workload: dict[str, Any], desired: dict[str, Any], drift: list[str]
    ) -> None:
        meta = workload["metadata"]
        if drift == [FIELD_REPLICAS]:
            patch = replicas_patch(workload, desired)
            self._mutate_child(
                REASON_STATEFULSET_UPDATE_FAILED,
                lambda: self.store.patch(KIND_STATEFULSET, meta.get("namespace"), meta["name"], patch),
            )
            operation = "patch"
        else:
            self._mutate_child(
                REASON_STATEFULSET_UPDATE_FAILED,
                lambda: update_with_retry(
                    self.store,
                    workload,
                    lambda obj: apply_drift(obj, desired, drift),
                    attempts=self.config.conflict_retry_attempts,
                    on_conflict=self._count_conflict,
                ),
            )
            operation = "update"
        self.metrics.child_operations_total.labels(
            child=KIND_STATEFULSET, operation=operation, result="success"
        ).inc()

    def _handle_failed(self, body: dict[str, Any], ownership: Ownership) -> Result:
        failed_at = body.get("status", {}).get("lastFailureTime")
        if failed_at:
            elapsed = (self.clock() - datetime.fromisoformat(failed_at)).total_seconds()
            remaining = self.config.failed_retry_delay - elapsed
            if remaining > 0:
                return Result.after(remaining)

        self._write(
            body,
            Phase.PENDING,
            progressing=(True, REASON_RETRYING, "Retrying after failure"),
        )
        return Result.now()
