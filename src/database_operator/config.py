"""Runtime configuration for the Database Operator, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class OperatorConfig:
    """Tunables for the reconcilers, the work queue and the HTTP endpoints."""

    watch_namespace: str | None = None
    max_workers: int = 4
    resync_interval: float = 300.0
    deploy_check_delay: float = 5.0
    failed_retry_delay: float = 60.0
    dependency_wait: float = 10.0
    deletion_recheck_delay: float = 2.0
    backup_schedule_interval: float = 86400.0
    conflict_retry_attempts: int = 3
    min_retry_delay: float = 1.0
    max_retry_delay: float = 60.0
    retry_backoff: float = 2.0
    k8s_rate_limit_per_second: float = 10.0
    request_timeout: float = 30.0
    metrics_port: int = 8080
    admission_webhooks_enabled: bool = False
    webhook_port: int = 9443
    webhook_host: str | None = None
    webhook_certfile: str | None = None
    webhook_keyfile: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> OperatorConfig:
        """Build the configuration from environment variables.

        Unset variables fall back to the dataclass defaults.
        """
        return cls(
            watch_namespace=os.getenv("WATCH_NAMESPACE") or None,
            max_workers=_env_int("MAX_WORKERS", cls.max_workers),
            resync_interval=_env_float("RESYNC_INTERVAL_SECONDS", cls.resync_interval),
            deploy_check_delay=_env_float("DEPLOY_CHECK_DELAY_SECONDS", cls.deploy_check_delay),
            failed_retry_delay=_env_float("FAILED_RETRY_DELAY_SECONDS", cls.failed_retry_delay),
            dependency_wait=_env_float("DEPENDENCY_WAIT_SECONDS", cls.dependency_wait),
            deletion_recheck_delay=_env_float(
                "DELETION_RECHECK_DELAY_SECONDS", cls.deletion_recheck_delay
            ),
            backup_schedule_interval=_env_float(
                "BACKUP_SCHEDULE_INTERVAL_SECONDS", cls.backup_schedule_interval
            ),
            conflict_retry_attempts=_env_int("CONFLICT_RETRY_ATTEMPTS", cls.conflict_retry_attempts),
            min_retry_delay=_env_float("MIN_RETRY_DELAY_SECONDS", cls.min_retry_delay),
            max_retry_delay=_env_float("MAX_RETRY_DELAY_SECONDS", cls.max_retry_delay),
            retry_backoff=_env_float("RETRY_BACKOFF", cls.retry_backoff),
            k8s_rate_limit_per_second=_env_float(
                "K8S_RATE_LIMIT_PER_SECOND", cls.k8s_rate_limit_per_second
            ),
            request_timeout=_env_float("REQUEST_TIMEOUT_SECONDS", cls.request_timeout),
            metrics_port=_env_int("METRICS_PORT", cls.metrics_port),
            admission_webhooks_enabled=_env_bool(
                "ADMISSION_WEBHOOKS_ENABLED", cls.admission_webhooks_enabled
            ),
            webhook_port=_env_int("WEBHOOK_PORT", cls.webhook_port),
            webhook_host=os.getenv("WEBHOOK_HOST") or None,
            webhook_certfile=os.getenv("WEBHOOK_CERTFILE") or None,
            webhook_keyfile=os.getenv("WEBHOOK_KEYFILE") or None,
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )
