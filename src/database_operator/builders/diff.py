"""Drift detection between desired and observed workloads."""

from __future__ import annotations

import copy
from typing import Any

from ..constants import CONTAINER_NAME

FIELD_REPLICAS = "replicas"
FIELD_IMAGE = "image"
FIELD_LABELS = "labels"


def _container(body: dict[str, Any]) -> dict[str, Any] | None:
    containers = body.get("spec", {}).get("template", {}).get("spec", {}).get("containers") or []
    for container in containers:
        if container.get("name") == CONTAINER_NAME:
            return container
    return containers[0] if containers else None


def _managed_labels_match(current: dict[str, str] | None, desired: dict[str, str]) -> bool:
    current = current or {}
    return all(current.get(key) == value for key, value in desired.items())


def statefulset_drift(current: dict[str, Any], desired: dict[str, Any]) -> list[str]:
    """List the controller-owned fields where ``current`` differs from ``desired``.

    Only replicas, the database container image and the generated labels are
    compared. Anything else on the live object belongs to someone else.
    """
    drift = []

    if current.get("spec", {}).get("replicas") != desired["spec"]["replicas"]:
        drift.append(FIELD_REPLICAS)

    current_container = _container(current)
    desired_container = _container(desired)
    current_image = current_container.get("image") if current_container else None
    if desired_container and current_image != desired_container.get("image"):
        drift.append(FIELD_IMAGE)

    template_labels = current.get("spec", {}).get("template", {}).get("metadata", {}).get("labels")
    if not _managed_labels_match(
        template_labels, desired["spec"]["template"]["metadata"]["labels"]
    ) or not _managed_labels_match(
        current.get("metadata", {}).get("labels"), desired["metadata"]["labels"]
    ):
        drift.append(FIELD_LABELS)

    return drift


def replicas_patch(snapshot: dict[str, Any], desired: dict[str, Any]) -> dict[str, Any]:
    """Minimal merge patch moving ``snapshot`` to the desired replica count."""
    patch: dict[str, Any] = {}
    if snapshot.get("spec", {}).get("replicas") != desired["spec"]["replicas"]:
        patch["spec"] = {"replicas": desired["spec"]["replicas"]}
    return patch


def apply_drift(current: dict[str, Any], desired: dict[str, Any], fields: list[str]) -> None:
    """Overwrite each drifted field of ``current`` with its full desired value.

    Mutates ``current`` in place so it can be used as a retry mutation.
    """
    spec = current.setdefault("spec", {})
    if FIELD_REPLICAS in fields:
        spec["replicas"] = desired["spec"]["replicas"]

    if FIELD_IMAGE in fields:
        container = _container(current)
        desired_container = _container(desired)
        if container is None:
            template_spec = spec.setdefault("template", {}).setdefault("spec", {})
            template_spec["containers"] = [copy.deepcopy(desired_container)]
        else:
            container["image"] = desired_container["image"]

    if FIELD_LABELS in fields:
        template_meta = spec.setdefault("template", {}).setdefault("metadata", {})
        template_meta["labels"] = {
            **(template_meta.get("labels") or {}),
            **desired["spec"]["template"]["metadata"]["labels"],
        }
        meta = current.setdefault("metadata", {})
        meta["labels"] = {**(meta.get("labels") or {}), **desired["metadata"]["labels"]}
