"""Run reconcilers from kopf handlers and translate their Results for kopf."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Protocol

import kopf

from ..config import OperatorConfig
from ..constants import ANNOTATION_RECONCILE_REQUESTED
from ..metrics import OperatorMetrics
from ..models import ResourceKey, Result
from ..services.store.base import NotFoundError, ReconcileCancelled, ResourceStore
from ..utils.errors import sanitize_exception

logger = logging.getLogger(__name__)

# Consecutive Result.now() passes run inline before handing back to kopf
IMMEDIATE_REQUEUE_LIMIT = 10


class Reconciler(Protocol):
    def reconcile(self, key: ResourceKey) -> Result:
        ...


class Dispatcher:
    """Bridge between kopf handlers and the per-kind reconcilers.

    kopf serializes change handlers per object but lets timers run beside
    them, so every key also gets a lock here: change handlers wait for it,
    timers skip the pass when it is held. A ``Result.after`` becomes a
    ``kopf.TemporaryError`` with that delay, and failures back off
    exponentially per key until the next success.
    """

    def __init__(
        self,
        reconcilers: dict[str, Reconciler],
        config: OperatorConfig,
        metrics: OperatorMetrics,
        store: ResourceStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.reconcilers = reconcilers
        self.config = config
        self.metrics = metrics
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._guard = threading.Lock()
        self._locks: dict[ResourceKey, threading.Lock] = defaultdict(threading.Lock)
        self._failures: dict[ResourceKey, int] = defaultdict(int)

    def _lock_for(self, key: ResourceKey) -> threading.Lock:
        with self._guard:
            return self._locks[key]

    def backoff(self, key: ResourceKey) -> float:
        """Delay before retrying ``key`` after its latest failure."""
        with self._guard:
            failures = self._failures[key]
        delay = self.config.min_retry_delay * self.config.retry_backoff ** failures
        return min(delay, self.config.max_retry_delay)

    def handle(self, key: ResourceKey) -> None:
        """Reconcile from a change handler.

        Raises:
            kopf.TemporaryError: The reconciler asked for a later pass, or failed
        """
        result = self.reconcile(key, blocking=True)
        if result is not None and result.requeue_after is not None:
            self.metrics.requeue_total.labels(kind=key.kind, mode="after").inc()
            raise kopf.TemporaryError(
                f"{key} rechecks in {result.requeue_after:g}s", delay=result.requeue_after
            )

    def resync(self, key: ResourceKey) -> None:
        """Reconcile from the periodic timer, unless a pass is already running."""
        result = self.reconcile(key, blocking=False)
        if result is not None and result.requeue_after is not None:
            # The change handler already owns the follow-up
            logger.debug(f"Resync of {key} deferred {result.requeue_after:g}s")

    def reconcile(self, key: ResourceKey, blocking: bool = True) -> Result | None:
        """Run the reconciler for ``key`` until it stops asking for an immediate pass.

        Returns:
            The last Result, or None when nothing ran
        """
        reconciler = self.reconcilers.get(key.kind)
        if reconciler is None:
            logger.warning(f"No reconciler registered for kind {key.kind}, ignoring {key}")
            return None

        lock = self._lock_for(key)
        if not lock.acquire(blocking=blocking):
            logger.debug(f"Reconcile of {key} already running, skipping")
            return None
        try:
            for _ in range(IMMEDIATE_REQUEUE_LIMIT):
                result = self._run_once(reconciler, key)
                if result is None or not result.requeue or result.requeue_after is not None:
                    return result
                self.metrics.requeue_total.labels(kind=key.kind, mode="now").inc()
        finally:
            lock.release()

        delay = self.config.min_retry_delay
        raise kopf.TemporaryError(
            f"{key} asked for {IMMEDIATE_REQUEUE_LIMIT} immediate passes in a row", delay=delay
        )

    def _run_once(self, reconciler: Reconciler, key: ResourceKey) -> Result | None:
        try:
            result = reconciler.reconcile(key)
        except ReconcileCancelled:
            logger.debug(f"Reconcile of {key} cancelled")
            return None
        except Exception as e:
            delay = self.backoff(key)
            with self._guard:
                self._failures[key] += 1
            self.metrics.requeue_total.labels(kind=key.kind, mode="rate_limited").inc()
            message = f"Reconcile of {key} failed, retrying in {delay:.1f}s: {sanitize_exception(e)}"
            raise kopf.TemporaryError(message, delay=delay) from e

        with self._guard:
            self._failures.pop(key, None)
        return result

    def forget(self, key: ResourceKey) -> None:
        """Drop the lock and failure count of a deleted resource."""
        with self._guard:
            self._failures.pop(key, None)
            lock = self._locks.get(key)
            if lock is not None and not lock.locked():
                del self._locks[key]

    def request_reconcile(self, key: ResourceKey) -> None:
        """Touch an annotation on ``key`` so kopf runs its update handler.

        The pass then goes through kopf's per-object serialization like any
        other change.
        """
        if self.store is None:
            return
        stamp = self.clock().isoformat()
        diff = {"metadata": {"annotations": {ANNOTATION_RECONCILE_REQUESTED: stamp}}}
        try:
            self.store.patch(key.kind, key.namespace, key.name, diff)
        except NotFoundError:
            logger.debug(f"Reconcile requested for vanished {key}")
            return
        logger.debug(f"Requested reconcile of {key}")
