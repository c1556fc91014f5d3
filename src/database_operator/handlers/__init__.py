"""Reconcilers for the operator's resource kinds."""

from .backup import BackupReconciler
from .database import DatabaseReconciler
from .restore import RestoreReconciler

__all__ = ["BackupReconciler", "DatabaseReconciler", "RestoreReconciler"]
