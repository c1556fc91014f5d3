"""Main entry point for the Database Operator.

kopf owns the watches, the per-object serialization of change handlers and
the admission webhooks. Every handler hands its object to the dispatcher,
which runs the reconciler for the object's kind.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

import kopf

from . import health
from . import logging as structured_logging
from .config import OperatorConfig
from .constants import (
    API_GROUP,
    API_GROUP_VERSION,
    KIND_BACKUP,
    KIND_CLUSTER_DATABASE,
    KIND_DATABASE,
    KIND_RESTORE,
    LABEL_MANAGED_BY,
    MANAGED_BY_VALUE,
)
from .controller import Dispatcher, EventRouter
from .controller.router import EVENT_DELETED, TOP_LEVEL_KINDS
from .handlers import BackupReconciler, DatabaseReconciler, RestoreReconciler
from .metrics import OperatorMetrics
from .models import ResourceKey
from .services.kubernetes import KubernetesStore, load_kubernetes_config
from .services.store import get_or_none
from .tracing import initialize_tracing
from .utils.events import KopfEventRecorder
from .utils.rate_limit import RateLimiter
from .webhooks.admission import default_database, raise_for_errors, validate_database
from .webhooks.conversion import handle_conversion_review

logger = logging.getLogger(__name__)

CHILD_LABELS = {LABEL_MANAGED_BY: MANAGED_BY_VALUE}

RESYNC_INTERVAL = OperatorConfig.from_env().resync_interval


@dataclass
class OperatorState:
    config: OperatorConfig
    store: KubernetesStore
    dispatcher: Dispatcher
    router: EventRouter
    metrics: OperatorMetrics
    app: Any
    stop_event: threading.Event = field(default_factory=threading.Event)
    started: threading.Event = field(default_factory=threading.Event)
    http_server: Any = None

    @property
    def ready(self) -> bool:
        return self.started.is_set() and not self.stop_event.is_set()


_state: OperatorState | None = None


def build_operator(config: OperatorConfig, metrics: OperatorMetrics | None = None) -> OperatorState:
    """Assemble store, reconcilers, dispatcher and router."""
    metrics = metrics or OperatorMetrics()
    stop_event = threading.Event()
    store = KubernetesStore(
        metrics=metrics,
        rate_limiter=RateLimiter(config.k8s_rate_limit_per_second),
        stop_event=stop_event,
        request_timeout=config.request_timeout,
    )
    events = KopfEventRecorder()

    reconcilers = {
        KIND_DATABASE: DatabaseReconciler(store, config, metrics, events),
        KIND_CLUSTER_DATABASE: DatabaseReconciler(
            store, config, metrics, events, kind=KIND_CLUSTER_DATABASE
        ),
        KIND_BACKUP: BackupReconciler(store, config, metrics, events),
        KIND_RESTORE: RestoreReconciler(store, config, metrics, events),
    }
    dispatcher = Dispatcher(reconcilers, config, metrics, store=store)
    router = EventRouter(dispatcher.request_reconcile)

    state = OperatorState(config, store, dispatcher, router, metrics, app=None, stop_event=stop_event)
    state.app = health.create_combined_wsgi_app(
        metrics.registry,
        readiness=lambda: state.ready,
        conversion_handler=handle_conversion_review,
    )
    return state


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Configure kopf and start the HTTP endpoints."""
    global _state

    config = OperatorConfig.from_env()
    structured_logging.setup_structured_logging(config.log_level)
    initialize_tracing()

    # Handler progress and the last-handled spec live in annotations; status belongs to the reconcilers
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage()
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage()

    settings.posting.level = logging.INFO
    settings.networking.request_timeout = config.request_timeout
    settings.execution.max_workers = config.max_workers
    settings.batching.worker_limit = config.max_workers

    if config.admission_webhooks_enabled:
        settings.admission.server = kopf.WebhookServer(
            addr="0.0.0.0",
            port=config.webhook_port,
            host=config.webhook_host,
            certfile=config.webhook_certfile,
            pkeyfile=config.webhook_keyfile,
        )
        settings.admission.managed = f"webhook.{API_GROUP}"

    load_kubernetes_config()

    state = build_operator(config)
    state.http_server = health.start_http_server(config.metrics_port, state.app)
    state.started.set()
    _state = state
    logger.info(f"Database operator started with {config.max_workers} workers")


@kopf.on.cleanup()
def shutdown(**_: Any) -> None:
    """Cancel in-flight store calls and stop the HTTP endpoints."""
    global _state

    if _state is None:
        return
    _state.stop_event.set()
    if _state.http_server is not None:
        _state.http_server.shutdown()
    _state = None


def _key(body: dict[str, Any], name: str, namespace: str | None) -> ResourceKey:
    return ResourceKey(body.get("kind", ""), namespace or None, name)


def _require_state() -> OperatorState:
    if _state is None:
        raise kopf.TemporaryError("Operator is still starting", delay=1)
    return _state


@kopf.on.create(API_GROUP_VERSION, KIND_DATABASE)
@kopf.on.update(API_GROUP_VERSION, KIND_DATABASE)
@kopf.on.resume(API_GROUP_VERSION, KIND_DATABASE)
@kopf.on.delete(API_GROUP_VERSION, KIND_DATABASE)
@kopf.on.create(API_GROUP_VERSION, KIND_CLUSTER_DATABASE)
@kopf.on.update(API_GROUP_VERSION, KIND_CLUSTER_DATABASE)
@kopf.on.resume(API_GROUP_VERSION, KIND_CLUSTER_DATABASE)
@kopf.on.delete(API_GROUP_VERSION, KIND_CLUSTER_DATABASE)
@kopf.on.create(API_GROUP_VERSION, KIND_BACKUP)
@kopf.on.update(API_GROUP_VERSION, KIND_BACKUP)
@kopf.on.resume(API_GROUP_VERSION, KIND_BACKUP)
@kopf.on.create(API_GROUP_VERSION, KIND_RESTORE)
@kopf.on.update(API_GROUP_VERSION, KIND_RESTORE)
@kopf.on.resume(API_GROUP_VERSION, KIND_RESTORE)
def reconcile_resource(body: dict[str, Any], name: str, namespace: str | None, **_: Any) -> None:
    """Reconcile a top-level resource after a change, on startup, or on deletion."""
    _require_state().dispatcher.handle(_key(body, name, namespace))


@kopf.timer(API_GROUP_VERSION, KIND_DATABASE, interval=RESYNC_INTERVAL)
@kopf.timer(API_GROUP_VERSION, KIND_CLUSTER_DATABASE, interval=RESYNC_INTERVAL)
@kopf.timer(API_GROUP_VERSION, KIND_BACKUP, interval=RESYNC_INTERVAL)
@kopf.timer(API_GROUP_VERSION, KIND_RESTORE, interval=RESYNC_INTERVAL)
def resync_resource(body: dict[str, Any], name: str, namespace: str | None, **_: Any) -> None:
    """Periodic pass that catches drift no watch event reported."""
    _require_state().dispatcher.resync(_key(body, name, namespace))


def route(event: dict[str, Any]) -> None:
    if _state is None:
        return
    body = event.get("object") or {}
    event_type = event.get("type")
    kind = body.get("kind")
    keys = _state.router.route(event_type, body)
    if kind in TOP_LEVEL_KINDS:
        if event_type == EVENT_DELETED:
            _state.dispatcher.forget(ResourceKey.from_body(body))
        _state.metrics.observe_phases(kind, _state.router.phase_counts(kind))
    if keys:
        logger.debug(f"Routed {event_type} {kind} to {keys}")


@kopf.on.event(API_GROUP_VERSION, KIND_DATABASE)
@kopf.on.event(API_GROUP_VERSION, KIND_CLUSTER_DATABASE)
@kopf.on.event(API_GROUP_VERSION, KIND_BACKUP)
@kopf.on.event(API_GROUP_VERSION, KIND_RESTORE)
def on_resource_event(event: dict[str, Any], **_: Any) -> None:
    """Re-trigger the Backups and Restores depending on a resource."""
    route(event)


@kopf.on.event("apps/v1", "StatefulSet", labels=CHILD_LABELS)
@kopf.on.event("v1", "Service", labels=CHILD_LABELS)
@kopf.on.event("v1", "Secret", labels=CHILD_LABELS)
def on_child_event(event: dict[str, Any], **_: Any) -> None:
    """Re-trigger the owner of a managed child object."""
    route(event)


@kopf.on.mutate(API_GROUP_VERSION, KIND_DATABASE, id="default-database")
def mutate_database(
    namespace: str | None,
    spec: dict[str, Any],
    labels: dict[str, str],
    annotations: dict[str, str],
    patch: kopf.Patch,
    **_: Any,
) -> None:
    """Fill in unset Database fields."""
    defaults = default_database(namespace, dict(spec), dict(labels), dict(annotations))
    for section, values in defaults.items():
        for field_name, value in values.items():
            patch.setdefault(section, {})[field_name] = value


@kopf.on.validate(API_GROUP_VERSION, KIND_DATABASE, id="validate-database")
def validate(
    operation: str,
    name: str,
    namespace: str | None,
    spec: dict[str, Any],
    **kwargs: Any,
) -> None:
    """Reject invalid Databases."""
    old_spec = None
    if operation == "UPDATE":
        old = kwargs.get("old")
        if old is None and _state is not None:
            old = get_or_none(_state.store, KIND_DATABASE, namespace, name)
        old_spec = dict((old or {}).get("spec") or {})
        if not old_spec:
            return
    raise_for_errors(validate_database(operation, dict(spec), old_spec))


def run() -> None:
    """Console entry point: run the operator standalone."""
    config = OperatorConfig.from_env()
    if config.watch_namespace:
        kopf.run(standalone=True, namespaces=[config.watch_namespace])
    else:
        kopf.run(standalone=True, clusterwide=True)
