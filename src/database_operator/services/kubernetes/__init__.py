"""Kubernetes API backend for the resource store."""

from .client import KubernetesStore, load_kubernetes_config

__all__ = ["KubernetesStore", "load_kubernetes_config"]
