"""Admission and conversion webhooks for the Database resource."""

from .admission import ValidationRejected, default_database, validate_database
from .conversion import ConversionError, convert_database, handle_conversion_review

__all__ = [
    "ConversionError",
    "ValidationRejected",
    "convert_database",
    "default_database",
    "handle_conversion_review",
    "validate_database",
]
