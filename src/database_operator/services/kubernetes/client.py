"""Kubernetes API implementation of the ResourceStore."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from ...constants import (
    API_GROUP,
    API_VERSION,
    FIELD_MANAGER,
    KIND_CLUSTER_DATABASE,
    KIND_JOB,
    KIND_NAMESPACE,
    KIND_RESOURCE_QUOTA,
    KIND_SECRET,
    KIND_SERVICE,
    KIND_STATEFULSET,
    PLURALS,
)
from ...metrics import OperatorMetrics
from ...utils.rate_limit import RateLimiter, handle_rate_limit_error
from ..store.base import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ReconcileCancelled,
    StoreError,
    TransientStoreError,
)

logger = logging.getLogger(__name__)

# kind -> (apiVersion, api group attribute, method suffix, namespaced)
TYPED_KINDS: dict[str, tuple[str, str, str, bool]] = {
    KIND_STATEFULSET: ("apps/v1", "apps", "stateful_set", True),
    KIND_JOB: ("batch/v1", "batch", "job", True),
    KIND_SERVICE: ("v1", "core", "service", True),
    KIND_SECRET: ("v1", "core", "secret", True),
    KIND_RESOURCE_QUOTA: ("v1", "core", "resource_quota", True),
    KIND_NAMESPACE: ("v1", "core", "namespace", False),
}

# Cluster-scoped custom kinds
CLUSTER_SCOPED_CUSTOM_KINDS = {KIND_CLUSTER_DATABASE}


def load_kubernetes_config() -> None:
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


def label_selector(labels: dict[str, str] | None) -> str | None:
    """Render an equality label selector."""
    if not labels:
        return None
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


class KubernetesStore:
    """ResourceStore backed by the Kubernetes API server.

    Built-in kinds go through the typed APIs and are converted to plain dicts
    with ``ApiClient.sanitize_for_serialization``; the operator's own kinds go
    through ``CustomObjectsApi``. Every call is rate limited, timed, counted
    and refused once ``stop_event`` is set.
    """

    def __init__(
        self,
        api_client: client.ApiClient | None = None,
        metrics: OperatorMetrics | None = None,
        rate_limiter: RateLimiter | None = None,
        stop_event: threading.Event | None = None,
        request_timeout: float | None = None,
    ) -> None:
        self.api_client = api_client or client.ApiClient()
        self.core = client.CoreV1Api(self.api_client)
        self.apps = client.AppsV1Api(self.api_client)
        self.batch = client.BatchV1Api(self.api_client)
        self.custom = client.CustomObjectsApi(self.api_client)
        self.metrics = metrics
        self.rate_limiter = rate_limiter
        self.stop_event = stop_event
        self.request_timeout = request_timeout

    # -- plumbing ---------------------------------------------------------

    def _call(
        self,
        operation: str,
        kind: str,
        namespace: str | None,
        name: str,
        fn: Callable[..., Any],
        /,
        **kwargs: Any,
    ) -> Any:
        if self.stop_event is not None and self.stop_event.is_set():
            raise ReconcileCancelled(f"{operation} {kind} {name}: operator is stopping")
        if self.rate_limiter is not None:
            self.rate_limiter.acquire()
        if self.request_timeout:
            kwargs.setdefault("_request_timeout", self.request_timeout)

        metric_op = f"{operation}_{kind.lower()}"
        start_time = time.time()
        try:
            result = fn(**kwargs)
            self._count(metric_op, "success")
            return result
        except ApiException as e:
            self._count(metric_op, "error")
            raise self._translate(e, operation, kind, namespace, name) from e
        finally:
            if self.metrics is not None:
                self.metrics.api_call_duration_seconds.labels(operation=metric_op).observe(
                    time.time() - start_time
                )

    def _count(self, operation: str, result: str) -> None:
        if self.metrics is not None:
            self.metrics.api_call_total.labels(operation=operation, result=result).inc()

    def _translate(
        self,
        e: ApiException,
        operation: str,
        kind: str,
        namespace: str | None,
        name: str,
    ) -> StoreError:
        target = f"{kind} {namespace}/{name}" if namespace else f"{kind} {name}"
        message = f"{operation} {target} failed: {e.status} {e.reason}"
        if e.status == 404:
            return NotFoundError(f"{target} not found")
        if e.status == 409:
            if operation == "create":
                return AlreadyExistsError(f"{target} already exists")
            return ConflictError(message)
        if handle_rate_limit_error(e):
            if self.metrics is not None:
                self.metrics.rate_limit_hits_total.inc()
            return TransientStoreError(message)
        if e.status is None or e.status >= 500 or e.status == 408:
            return TransientStoreError(message)
        return StoreError(message)

    def _to_dict(self, obj: Any, kind: str) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        body = self.api_client.sanitize_for_serialization(obj)
        api_version, _, _, _ = TYPED_KINDS[kind]
        body.setdefault("apiVersion", api_version)
        body.setdefault("kind", kind)
        return body

    def _typed_api(self, kind: str) -> tuple[Any, str, bool]:
        _, group, suffix, namespaced = TYPED_KINDS[kind]
        api = {"apps": self.apps, "batch": self.batch}.get(group, self.core)
        return api, suffix, namespaced

    @staticmethod
    def _custom_args(kind: str, namespace: str | None) -> dict[str, Any]:
        try:
            plural = PLURALS[kind]
        except KeyError:
            raise StoreError(f"Unsupported kind {kind!r}") from None
        args: dict[str, Any] = {"group": API_GROUP, "version": API_VERSION, "plural": plural}
        if kind not in CLUSTER_SCOPED_CUSTOM_KINDS:
            args["namespace"] = namespace
        return args

    @staticmethod
    def _is_cluster(kind: str) -> bool:
        return kind in CLUSTER_SCOPED_CUSTOM_KINDS

    @staticmethod
    def _meta(obj: dict[str, Any]) -> tuple[str, str | None, str]:
        meta = obj.get("metadata", {})
        return obj["kind"], meta.get("namespace") or None, meta["name"]

    # -- ResourceStore ----------------------------------------------------

    def get(self, kind: str, namespace: str | None, name: str) -> dict[str, Any]:
        if kind in TYPED_KINDS:
            api, suffix, namespaced = self._typed_api(kind)
            if namespaced:
                fn = getattr(api, f"read_namespaced_{suffix}")
                result = self._call("get", kind, namespace, name, fn, name=name, namespace=namespace)
            else:
                fn = getattr(api, f"read_{suffix}")
                result = self._call("get", kind, namespace, name, fn, name=name)
            return self._to_dict(result, kind)

        args = self._custom_args(kind, namespace)
        fn = self.custom.get_cluster_custom_object if self._is_cluster(kind) else self.custom.get_namespaced_custom_object
        return self._call("get", kind, namespace, name, fn, name=name, **args)

    def list(
        self,
        kind: str,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        selector = label_selector(labels)
        if kind in TYPED_KINDS:
            api, suffix, namespaced = self._typed_api(kind)
            if namespaced and namespace:
                fn = getattr(api, f"list_namespaced_{suffix}")
                result = self._call(
                    "list", kind, namespace, "*", fn, namespace=namespace, label_selector=selector
                )
            elif namespaced:
                fn = getattr(api, f"list_{suffix}_for_all_namespaces")
                result = self._call("list", kind, None, "*", fn, label_selector=selector)
            else:
                fn = getattr(api, f"list_{suffix}")
                result = self._call("list", kind, None, "*", fn, label_selector=selector)
            return [self._to_dict(item, kind) for item in result.items]

        args = self._custom_args(kind, namespace)
        if self._is_cluster(kind) or not namespace:
            args.pop("namespace", None)
            fn = self.custom.list_cluster_custom_object
        else:
            fn = self.custom.list_namespaced_custom_object
        if selector:
            args["label_selector"] = selector
        result = self._call("list", kind, namespace, "*", fn, **args)
        items = result.get("items", [])
        for item in items:
            item.setdefault("kind", kind)
            item.setdefault("apiVersion", f"{API_GROUP}/{API_VERSION}")
        return items

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        kind, namespace, name = self._meta(obj)
        if kind in TYPED_KINDS:
            api, suffix, namespaced = self._typed_api(kind)
            if namespaced:
                fn = getattr(api, f"create_namespaced_{suffix}")
                result = self._call(
                    "create", kind, namespace, name, fn,
                    namespace=namespace, body=obj, field_manager=FIELD_MANAGER,
                )
            else:
                fn = getattr(api, f"create_{suffix}")
                result = self._call("create", kind, None, name, fn, body=obj, field_manager=FIELD_MANAGER)
            return self._to_dict(result, kind)

        args = self._custom_args(kind, namespace)
        fn = self.custom.create_cluster_custom_object if self._is_cluster(kind) else self.custom.create_namespaced_custom_object
        return self._call("create", kind, namespace, name, fn, body=obj, **args)

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        return self._replace(obj, status=False)

    def update_status(self, obj: dict[str, Any]) -> dict[str, Any]:
        return self._replace(obj, status=True)

    def _replace(self, obj: dict[str, Any], status: bool) -> dict[str, Any]:
        kind, namespace, name = self._meta(obj)
        operation = "update_status" if status else "update"
        tail = "_status" if status else ""
        if kind in TYPED_KINDS:
            api, suffix, namespaced = self._typed_api(kind)
            if namespaced:
                fn = getattr(api, f"replace_namespaced_{suffix}{tail}")
                result = self._call(
                    operation, kind, namespace, name, fn,
                    name=name, namespace=namespace, body=obj, field_manager=FIELD_MANAGER,
                )
            else:
                fn = getattr(api, f"replace_{suffix}{tail}")
                result = self._call(
                    operation, kind, None, name, fn, name=name, body=obj, field_manager=FIELD_MANAGER
                )
            return self._to_dict(result, kind)

        args = self._custom_args(kind, namespace)
        scope = "cluster" if self._is_cluster(kind) else "namespaced"
        fn = getattr(self.custom, f"replace_{scope}_custom_object{tail}")
        return self._call(operation, kind, namespace, name, fn, name=name, body=obj, **args)

    def patch(
        self, kind: str, namespace: str | None, name: str, diff: dict[str, Any]
    ) -> dict[str, Any]:
        if kind in TYPED_KINDS:
            api, suffix, namespaced = self._typed_api(kind)
            if namespaced:
                fn = getattr(api, f"patch_namespaced_{suffix}")
                result = self._call(
                    "patch", kind, namespace, name, fn,
                    name=name, namespace=namespace, body=diff, field_manager=FIELD_MANAGER,
                )
            else:
                fn = getattr(api, f"patch_{suffix}")
                result = self._call(
                    "patch", kind, None, name, fn, name=name, body=diff, field_manager=FIELD_MANAGER
                )
            return self._to_dict(result, kind)

        args = self._custom_args(kind, namespace)
        fn = self.custom.patch_cluster_custom_object if self._is_cluster(kind) else self.custom.patch_namespaced_custom_object
        return self._call("patch", kind, namespace, name, fn, name=name, body=diff, **args)

    def delete(self, kind: str, namespace: str | None, name: str) -> None:
        if kind in TYPED_KINDS:
            api, suffix, namespaced = self._typed_api(kind)
            if namespaced:
                fn = getattr(api, f"delete_namespaced_{suffix}")
                self._call(
                    "delete", kind, namespace, name, fn,
                    name=name, namespace=namespace, propagation_policy="Background",
                )
            else:
                fn = getattr(api, f"delete_{suffix}")
                self._call("delete", kind, None, name, fn, name=name)
            return

        args = self._custom_args(kind, namespace)
        fn = self.custom.delete_cluster_custom_object if self._is_cluster(kind) else self.custom.delete_namespaced_custom_object
        self._call("delete", kind, namespace, name, fn, name=name, **args)
