"""Prometheus metrics for the Database Operator."""

from __future__ import annotations

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram


class OperatorMetrics:
    """Collectors for one operator instance.

    The collectors are bound to the registry passed in, so tests can use a
    private ``CollectorRegistry`` and reconcilers receive the instance
    instead of reaching for module globals.
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY) -> None:
        self.registry = registry
        self._phases: dict[str, set[str]] = {}

        # Reconciliation metrics
        self.reconcile_total = Counter(
            "database_operator_reconcile_total",
            "Total number of reconciliations",
            ["kind", "result"],
            registry=registry,
        )
        self.reconcile_duration_seconds = Histogram(
            "database_operator_reconcile_duration_seconds",
            "Duration of reconciliations in seconds",
            ["kind"],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=registry,
        )
        self.phase_transitions_total = Counter(
            "database_operator_phase_transitions_total",
            "Total number of phase transitions",
            ["kind", "from_phase", "to_phase"],
            registry=registry,
        )
        self.resources = Gauge(
            "database_operator_resources",
            "Number of resources last observed in each phase",
            ["kind", "phase"],
            registry=registry,
        )

        # Child resource metrics
        self.child_operations_total = Counter(
            "database_operator_child_operations_total",
            "Total number of child resource operations",
            ["child", "operation", "result"],
            registry=registry,
        )
        self.drift_detected_total = Counter(
            "database_operator_drift_detected_total",
            "Total number of workload drift detections",
            ["kind", "field"],
            registry=registry,
        )
        self.conflict_retries_total = Counter(
            "database_operator_conflict_retries_total",
            "Total number of optimistic concurrency retries",
            ["kind"],
            registry=registry,
        )

        # Scheduling metrics
        self.requeue_total = Counter(
            "database_operator_requeue_total",
            "Total number of requeue directives",
            ["kind", "mode"],
            registry=registry,
        )

        # API call metrics
        self.api_call_total = Counter(
            "database_operator_api_call_total",
            "Total number of Kubernetes API calls",
            ["operation", "result"],
            registry=registry,
        )
        self.api_call_duration_seconds = Histogram(
            "database_operator_api_call_duration_seconds",
            "Duration of Kubernetes API calls in seconds",
            ["operation"],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
            registry=registry,
        )
        self.rate_limit_hits_total = Counter(
            "database_operator_rate_limit_hits_total",
            "Total number of throttled Kubernetes API calls",
            registry=registry,
        )

        # Error metrics
        self.error_total = Counter(
            "database_operator_error_total",
            "Total number of reconciliation errors",
            ["kind", "error_type"],
            registry=registry,
        )

    def observe_phases(self, kind: str, phase_counts: dict[str, int]) -> None:
        """Publish the per-phase resource counts of one kind.

        Phases published earlier but absent from ``phase_counts`` drop to zero.
        """
        previous = self._phases.get(kind, set())
        for phase in previous - set(phase_counts):
            self.resources.labels(kind=kind, phase=phase).set(0)
        for phase, count in phase_counts.items():
            self.resources.labels(kind=kind, phase=phase).set(count)
        self._phases[kind] = set(phase_counts)
