"""Structured logging configuration for the Database Operator."""

import json
import logging
import sys
from typing import Any

from .utils.errors import SENSITIVE_ENV_VARS, sanitize_dict

# Fields whose whole value is dropped: Secret payloads and passwords
SECRET_FIELDS = {"password", "token", "stringData", "data", *SENSITIVE_ENV_VARS}


def setup_structured_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )


def log_resource_event(
    logger: logging.Logger,
    controller: str,
    resource_kind: str,
    resource_name: str,
    namespace: str | None,
    uid: str,
    event: str,
    reason: str,
    message: str,
    level: int = logging.INFO,
    phase: str | None = None,
    generation: int | None = None,
    observed_generation: int | None = None,
    **kwargs: Any,
) -> None:
    """Log a structured resource event.

    ``phase``, ``generation`` and ``observedGeneration`` describe the
    resource as it was read at the start of the pass; they are omitted when
    unknown.
    """
    log_data = {
        "controller": controller,
        "resource": resource_kind,
        "name": resource_name,
        "namespace": namespace,
        "uid": uid,
        "event": event,
        "reason": reason,
        "message": message,
    }
    for field, value in (
        ("phase", phase),
        ("generation", generation),
        ("observedGeneration", observed_generation),
    ):
        if value is not None:
            log_data[field] = value
    log_data.update(kwargs)
    logger.log(level, json.dumps(sanitize_secrets(log_data), default=str))


def sanitize_secrets(log_data: dict[str, Any]) -> dict[str, Any]:
    """Remove secret fields and credentials embedded in log data."""
    sanitized = sanitize_dict(log_data)
    for field in SECRET_FIELDS:
        if field in sanitized:
            sanitized[field] = "***REDACTED***"
    return sanitized
