"""Builders for the child resources of a Database."""

from __future__ import annotations

from typing import Any

from ..constants import (
    APP_NAME,
    CLUSTER_DOMAIN,
    CONTAINER_NAME,
    CREDENTIALS_SUFFIX,
    DATA_MOUNT_PATH,
    DATA_VOLUME_NAME,
    DEFAULT_IMAGE,
    DEFAULT_REPLICAS,
    DEFAULT_STORAGE_SIZE,
    KIND_SECRET,
    KIND_SERVICE,
    KIND_STATEFULSET,
    LABEL_APP,
    LABEL_DATABASE,
    LABEL_MANAGED_BY,
    LABEL_OWNER_KIND,
    LABEL_OWNER_NAME,
    LABEL_TENANT,
    MANAGED_BY_VALUE,
    PGDATA_PATH,
    POSTGRES_PORT,
    POSTGRES_PORT_NAME,
    SECRET_KEY_DATABASE,
    SECRET_KEY_PASSWORD,
    SECRET_KEY_USERNAME,
)
from ..models import LabelOwnership, Ownership
from ..utils.credentials import generate_password


def credentials_secret_name(name: str) -> str:
    """Name of the credentials Secret for a database."""
    return f"{name}{CREDENTIALS_SUFFIX}"


def endpoint_for(name: str, namespace: str) -> str:
    """In-cluster connection endpoint of a database."""
    return f"{name}.{namespace}.{CLUSTER_DOMAIN}:{POSTGRES_PORT}"


def selector_labels(name: str) -> dict[str, str]:
    """Labels selecting the pods of a database workload."""
    return {LABEL_APP: APP_NAME, LABEL_DATABASE: name}


def tracking_labels(ownership: Ownership) -> dict[str, str]:
    """Labels that tie a child back to the resource that owns it."""
    labels = {
        LABEL_MANAGED_BY: MANAGED_BY_VALUE,
        LABEL_OWNER_KIND: ownership.kind,
        LABEL_OWNER_NAME: ownership.name,
    }
    if isinstance(ownership, LabelOwnership) and ownership.tenant:
        labels[LABEL_TENANT] = ownership.tenant
    return labels


def desired_replicas(spec: dict[str, Any]) -> int:
    replicas = spec.get("replicas")
    return DEFAULT_REPLICAS if replicas is None else int(replicas)


def desired_image(spec: dict[str, Any]) -> str:
    return spec.get("image") or DEFAULT_IMAGE


def _child_metadata(name: str, ownership: Ownership, db_name: str) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": ownership.namespace,
        "labels": {**tracking_labels(ownership), **selector_labels(db_name)},
    }
    owner_references = ownership.owner_references()
    if owner_references:
        metadata["ownerReferences"] = owner_references
    return metadata


def build_credentials_secret(
    name: str,
    spec: dict[str, Any],
    ownership: Ownership,
    password: str | None = None,
) -> dict[str, Any]:
    """Build the credentials Secret.

    The password is generated here and nowhere else; callers create the
    Secret once and never rewrite it.

    Args:
        name: Database name
        spec: Database spec
        ownership: Ownership of the children
        password: Fixed password, for tests

    Returns:
        Secret body
    """
    return {
        "apiVersion": "v1",
        "kind": KIND_SECRET,
        "metadata": _child_metadata(credentials_secret_name(name), ownership, name),
        "type": "Opaque",
        "stringData": {
            SECRET_KEY_USERNAME: spec.get("username", ""),
            SECRET_KEY_PASSWORD: password if password is not None else generate_password(),
            SECRET_KEY_DATABASE: spec.get("databaseName", ""),
        },
    }


def build_statefulset(name: str, spec: dict[str, Any], ownership: Ownership) -> dict[str, Any]:
    """Build the StatefulSet running the database.

    Args:
        name: Database name
        spec: Database spec
        ownership: Ownership of the children

    Returns:
        StatefulSet body
    """
    labels = selector_labels(name)
    secret_name = credentials_secret_name(name)
    storage = spec.get("storage", {})

    container: dict[str, Any] = {
        "name": CONTAINER_NAME,
        "image": desired_image(spec),
        "ports": [{"name": POSTGRES_PORT_NAME, "containerPort": POSTGRES_PORT}],
        "env": [
            {"name": "POSTGRES_DB", "value": spec.get("databaseName", "")},
            {
                "name": "POSTGRES_USER",
                "valueFrom": {"secretKeyRef": {"name": secret_name, "key": SECRET_KEY_USERNAME}},
            },
            {
                "name": "POSTGRES_PASSWORD",
                "valueFrom": {"secretKeyRef": {"name": secret_name, "key": SECRET_KEY_PASSWORD}},
            },
            {"name": "PGDATA", "value": PGDATA_PATH},
        ],
        "volumeMounts": [{"name": DATA_VOLUME_NAME, "mountPath": DATA_MOUNT_PATH}],
    }
    if spec.get("resources"):
        container["resources"] = spec["resources"]

    claim_spec: dict[str, Any] = {
        "accessModes": ["ReadWriteOnce"],
        "resources": {"requests": {"storage": storage.get("size") or DEFAULT_STORAGE_SIZE}},
    }
    if storage.get("storageClass"):
        claim_spec["storageClassName"] = storage["storageClass"]

    return {
        "apiVersion": "apps/v1",
        "kind": KIND_STATEFULSET,
        "metadata": _child_metadata(name, ownership, name),
        "spec": {
            "serviceName": name,
            "replicas": desired_replicas(spec),
            "selector": {"matchLabels": dict(labels)},
            "template": {
                "metadata": {"labels": dict(labels)},
                "spec": {"containers": [container]},
            },
            "volumeClaimTemplates": [
                {"metadata": {"name": DATA_VOLUME_NAME}, "spec": claim_spec},
            ],
        },
    }


def build_service(name: str, spec: dict[str, Any], ownership: Ownership) -> dict[str, Any]:
    """Build the Service exposing the database pods."""
    return {
        "apiVersion": "v1",
        "kind": KIND_SERVICE,
        "metadata": _child_metadata(name, ownership, name),
        "spec": {
            "selector": selector_labels(name),
            "ports": [
                {
                    "name": POSTGRES_PORT_NAME,
                    "port": POSTGRES_PORT,
                    "targetPort": POSTGRES_PORT,
                    "protocol": "TCP",
                }
            ],
        },
    }
