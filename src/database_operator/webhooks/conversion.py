"""Conversion between the v1 (storage) and v2 Database schemas.

v1 keeps ``spec.replicas`` at the top level; v2 moves it under
``spec.replication`` and adds ``replication.mode`` and ``spec.backup``.
Converting v2 down to v1 drops those two fields: v1 cannot represent them.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from ..constants import API_GROUP_VERSION, API_GROUP_VERSION_V2
from ..utils.errors import sanitize_exception

logger = logging.getLogger(__name__)

DEFAULT_REPLICATION_MODE = "async"
CONVERSION_REVIEW_API_VERSION = "apiextensions.k8s.io/v1"


class ConversionError(ValueError):
    """Raised for an object or target version that cannot be converted."""


def _to_v2(spec: dict[str, Any]) -> dict[str, Any]:
    replicas = spec.pop("replicas", None)
    if replicas is not None:
        replication = spec.setdefault("replication", {})
        replication["replicas"] = replicas
        replication.setdefault("mode", DEFAULT_REPLICATION_MODE)
    return spec


def _to_v1(spec: dict[str, Any]) -> dict[str, Any]:
    replication = spec.pop("replication", None) or {}
    spec.pop("backup", None)
    if replication.get("replicas") is not None:
        spec["replicas"] = replication["replicas"]
    return spec


def convert_database(obj: dict[str, Any], desired_api_version: str) -> dict[str, Any]:
    """Return a copy of ``obj`` expressed in ``desired_api_version``.

    Metadata and status are carried over unchanged.

    Raises:
        ConversionError: If either version is not served
    """
    source = obj.get("apiVersion")
    served = (API_GROUP_VERSION, API_GROUP_VERSION_V2)
    if source not in served:
        raise ConversionError(f"unsupported source version {source}")
    if desired_api_version not in served:
        raise ConversionError(f"unsupported target version {desired_api_version}")

    converted = copy.deepcopy(obj)
    converted["apiVersion"] = desired_api_version
    if source == desired_api_version:
        return converted

    spec = converted.get("spec") or {}
    if desired_api_version == API_GROUP_VERSION_V2:
        converted["spec"] = _to_v2(spec)
    else:
        converted["spec"] = _to_v1(spec)
    return converted


def handle_conversion_review(review: dict[str, Any]) -> dict[str, Any]:
    """Answer an ``apiextensions.k8s.io/v1`` ConversionReview.

    A failure to convert any object fails the whole request, as the API
    server expects.
    """
    request = review.get("request") or {}
    uid = request.get("uid", "")
    desired = request.get("desiredAPIVersion", "")

    try:
        converted = [convert_database(obj, desired) for obj in request.get("objects") or []]
    except ConversionError as e:
        logger.warning(f"Conversion to {desired} failed: {sanitize_exception(e)}")
        response = {"uid": uid, "result": {"status": "Failed", "message": str(e)}}
    else:
        response = {"uid": uid, "convertedObjects": converted, "result": {"status": "Success"}}

    return {
        "apiVersion": review.get("apiVersion") or CONVERSION_REVIEW_API_VERSION,
        "kind": "ConversionReview",
        "response": response,
    }
