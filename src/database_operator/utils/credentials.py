"""Credential generation for database users."""

from __future__ import annotations

import secrets

from ..constants import PASSWORD_LENGTH


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """Generate a random URL-safe password of exactly ``length`` characters."""
    password = secrets.token_urlsafe(length)
    return password[:length]
