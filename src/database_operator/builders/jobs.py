"""Builders for the Jobs that dump a database to, and load it from, a backup volume."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from ..constants import (
    BACKUP_LOCATION_SCHEME,
    BACKUP_MOUNT_PATH,
    BACKUP_VOLUME_NAME,
    DEFAULT_BACKUP_LOCATION,
    JOB_BACKOFF_LIMIT,
    KIND_JOB,
    LABEL_DATABASE,
    MAX_NAME_LENGTH,
    POSTGRES_PORT,
    SECRET_KEY_DATABASE,
    SECRET_KEY_PASSWORD,
    SECRET_KEY_USERNAME,
)
from ..models import OwnerReferenceOwnership
from .database import credentials_secret_name, desired_image, tracking_labels

BACKUP_SCRIPT = (
    'mkdir -p "$(dirname "$BACKUP_FILE")" && '
    'pg_dump --clean --if-exists --no-owner -f "$BACKUP_FILE"'
)
RESTORE_SCRIPT = 'psql -v ON_ERROR_STOP=1 -f "$BACKUP_FILE"'


class UnsupportedLocation(ValueError):
    """A backup location the Jobs cannot write to or read from."""


def parse_location(location: str) -> tuple[str, str]:
    """Split ``pvc://<claim>/<path>`` into the claim name and the file path.

    Raises:
        UnsupportedLocation: For any other scheme, or a location without a path
    """
    if not location.startswith(BACKUP_LOCATION_SCHEME):
        raise UnsupportedLocation(
            f"Unsupported storage location {location!r}: only {BACKUP_LOCATION_SCHEME}<claim>/<path> is supported"
        )
    claim, _, path = location[len(BACKUP_LOCATION_SCHEME):].partition("/")
    if not claim or not path:
        raise UnsupportedLocation(f"Storage location {location!r} must name a claim and a file")
    return claim, path


def backup_location(database: dict[str, Any], backup: dict[str, Any], started_at: datetime) -> str:
    """Location a dump of ``database`` taken at ``started_at`` is written to."""
    prefix = (backup.get("spec", {}).get("storageLocation") or DEFAULT_BACKUP_LOCATION).rstrip("/")
    namespace = database["metadata"]["namespace"]
    name = database["metadata"]["name"]
    return f"{prefix}/{namespace}/{name}-{started_at:%Y%m%d-%H%M%S}.sql"


def job_name(base: str, suffix: str) -> str:
    """``<base>-<suffix>``, with ``base`` shortened to fit a label value."""
    keep = MAX_NAME_LENGTH - len(suffix) - 1
    return f"{base[:keep].rstrip('-.')}-{suffix}"


def _connection_env(database: dict[str, Any], backup_file: str) -> list[dict[str, Any]]:
    secret_name = credentials_secret_name(database["metadata"]["name"])

    def from_secret(env_name: str, key: str) -> dict[str, Any]:
        return {"name": env_name, "valueFrom": {"secretKeyRef": {"name": secret_name, "key": key}}}

    return [
        {"name": "PGHOST", "value": database["metadata"]["name"]},
        {"name": "PGPORT", "value": str(POSTGRES_PORT)},
        from_secret("PGUSER", SECRET_KEY_USERNAME),
        from_secret("PGPASSWORD", SECRET_KEY_PASSWORD),
        from_secret("PGDATABASE", SECRET_KEY_DATABASE),
        {"name": "BACKUP_FILE", "value": f"{BACKUP_MOUNT_PATH}/{backup_file}"},
    ]


def _build_job(
    name: str,
    owner: dict[str, Any],
    database: dict[str, Any],
    location: str,
    container_name: str,
    script: str,
) -> dict[str, Any]:
    claim, path = parse_location(location)
    meta = owner["metadata"]
    ownership = OwnerReferenceOwnership(
        kind=owner["kind"],
        name=meta["name"],
        namespace=meta["namespace"],
        uid=meta.get("uid", ""),
    )
    labels = {**tracking_labels(ownership), LABEL_DATABASE: database["metadata"]["name"]}
    container = {
        "name": container_name,
        "image": desired_image(database.get("spec", {})),
        "command": ["sh", "-c", script],
        "env": _connection_env(database, path),
        "volumeMounts": [{"name": BACKUP_VOLUME_NAME, "mountPath": BACKUP_MOUNT_PATH}],
    }
    return {
        "apiVersion": "batch/v1",
        "kind": KIND_JOB,
        "metadata": {
            "name": name,
            "namespace": meta["namespace"],
            "labels": labels,
            "ownerReferences": ownership.owner_references(),
        },
        "spec": {
            "backoffLimit": JOB_BACKOFF_LIMIT,
            "template": {
                # No database selector labels here, so the Service never routes to Job pods
                "metadata": {"labels": dict(tracking_labels(ownership))},
                "spec": {
                    "restartPolicy": "Never",
                    "containers": [container],
                    "volumes": [
                        {"name": BACKUP_VOLUME_NAME, "persistentVolumeClaim": {"claimName": claim}}
                    ],
                },
            },
        },
    }


def build_backup_job(
    name: str, backup: dict[str, Any], database: dict[str, Any], location: str
) -> dict[str, Any]:
    """Build the Job running ``pg_dump`` of ``database`` into ``location``.

    Args:
        name: Job name
        backup: Backup owning the Job
        database: Database being dumped
        location: ``pvc://`` location of the dump file

    Returns:
        Job body

    Raises:
        UnsupportedLocation: If ``location`` is not on a volume claim
    """
    return _build_job(name, backup, database, location, "pg-dump", BACKUP_SCRIPT)


def build_restore_job(
    name: str, restore: dict[str, Any], database: dict[str, Any], location: str
) -> dict[str, Any]:
    """Build the Job loading the dump at ``location`` into ``database`` with ``psql``."""
    return _build_job(name, restore, database, location, "psql", RESTORE_SCRIPT)
