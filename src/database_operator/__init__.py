"""Kubernetes operator managing PostgreSQL Databases, Backups and Restores."""

__version__ = "0.1.0"
