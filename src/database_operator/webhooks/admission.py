"""Defaulting and validation applied to Databases at admission time.

Both functions are pure; ``main`` registers them with kopf's
``on.mutate`` and ``on.validate`` handlers.
"""

from __future__ import annotations

import logging
from typing import Any

import kopf
from kubernetes.utils.quantity import parse_quantity

from ..constants import ANNOTATION_VERSION, API_VERSION, MANAGED_BY_VALUE

logger = logging.getLogger(__name__)

PRODUCTION_NAMESPACE = "production"
PRODUCTION_IMAGE = "postgres:14"
PRODUCTION_REPLICAS = 3
DEVELOPMENT_IMAGE = "postgres:latest"
DEVELOPMENT_REPLICAS = 1
DEFAULT_STORAGE_CLASS = "standard"
DEFAULTED_LABEL = "managed-by"

MAX_DATABASE_NAME_LENGTH = 63
HIGH_REPLICA_THRESHOLD = 5
HIGH_REPLICA_MIN_STORAGE = "50Gi"

OPERATION_CREATE = "CREATE"
OPERATION_UPDATE = "UPDATE"


class ValidationRejected(kopf.AdmissionError):
    """Admission rejection carrying every validation error found."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"validation failed: {'; '.join(self.errors)}", code=400)


def default_database(
    namespace: str | None,
    spec: dict[str, Any],
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Compute the merge patch filling in unset Database fields.

    Only missing fields are set, so applying the patch twice changes nothing.

    Args:
        namespace: Namespace the Database is admitted into
        spec: Database spec as submitted
        labels: Current labels
        annotations: Current annotations

    Returns:
        Merge patch with ``spec`` and ``metadata`` sections; empty when
        nothing needs defaulting
    """
    if namespace == PRODUCTION_NAMESPACE:
        image, replicas = PRODUCTION_IMAGE, PRODUCTION_REPLICAS
    else:
        image, replicas = DEVELOPMENT_IMAGE, DEVELOPMENT_REPLICAS

    spec_patch: dict[str, Any] = {}
    if not spec.get("image"):
        spec_patch["image"] = image
    if spec.get("replicas") is None:
        spec_patch["replicas"] = replicas
    if not (spec.get("storage") or {}).get("storageClass"):
        spec_patch["storage"] = {"storageClass": DEFAULT_STORAGE_CLASS}

    metadata_patch: dict[str, Any] = {}
    if DEFAULTED_LABEL not in (labels or {}):
        metadata_patch["labels"] = {DEFAULTED_LABEL: MANAGED_BY_VALUE}
    if ANNOTATION_VERSION not in (annotations or {}):
        metadata_patch["annotations"] = {ANNOTATION_VERSION: API_VERSION}

    patch: dict[str, Any] = {}
    if spec_patch:
        patch["spec"] = spec_patch
    if metadata_patch:
        patch["metadata"] = metadata_patch
    return patch


def _storage_bytes(spec: dict[str, Any]):
    size = (spec.get("storage") or {}).get("size")
    if not size:
        return None
    try:
        return parse_quantity(size)
    except ValueError:
        return None


def validate_create(spec: dict[str, Any]) -> list[str]:
    errors = []

    image = spec.get("image") or ""
    if "postgres" not in image:
        errors.append(
            f"spec.image: must be a PostgreSQL image, got '{image}'. "
            "Valid examples: postgres:14, postgres:13"
        )

    replicas = spec.get("replicas")
    if replicas is not None and replicas > HIGH_REPLICA_THRESHOLD:
        size = _storage_bytes(spec)
        if size is None or size < parse_quantity(HIGH_REPLICA_MIN_STORAGE):
            errors.append(
                f"spec.storage.size: when replicas > {HIGH_REPLICA_THRESHOLD}, storage must be "
                f">= {HIGH_REPLICA_MIN_STORAGE}, got '{(spec.get('storage') or {}).get('size', '')}'"
            )

    database_name = spec.get("databaseName") or ""
    if len(database_name) > MAX_DATABASE_NAME_LENGTH:
        errors.append(
            f"spec.databaseName: must be <= {MAX_DATABASE_NAME_LENGTH} characters, "
            f"got {len(database_name)}"
        )
    return errors


def validate_update(spec: dict[str, Any], old_spec: dict[str, Any]) -> list[str]:
    errors = []

    old_size, new_size = _storage_bytes(old_spec), _storage_bytes(spec)
    if old_size is not None and new_size is not None and new_size < old_size:
        errors.append(
            f"spec.storage.size: cannot reduce storage from {old_spec['storage']['size']} "
            f"to {spec['storage']['size']}"
        )

    old_name = old_spec.get("databaseName")
    if old_name != spec.get("databaseName"):
        errors.append(
            f"spec.databaseName: cannot change from {old_name} to {spec.get('databaseName')}"
        )
    return errors


def validate_database(
    operation: str, spec: dict[str, Any] | None, old_spec: dict[str, Any] | None = None
) -> list[str]:
    """Return every validation error for an admission request.

    DELETE (and any other operation) is always admitted.
    """
    if operation == OPERATION_CREATE:
        return validate_create(spec or {})
    if operation == OPERATION_UPDATE:
        return validate_update(spec or {}, old_spec or {})
    return []


def raise_for_errors(errors: list[str]) -> None:
    """Reject the admission request when any error was found."""
    if errors:
        logger.info(f"Rejecting Database admission: {'; '.join(errors)}")
        raise ValidationRejected(errors)
