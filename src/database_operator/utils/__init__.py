"""Utility functions for the Database Operator."""

from .conditions import (
    find_condition,
    is_condition_true,
    set_progressing_condition,
    set_ready_condition,
    update_condition,
)
from .credentials import generate_password
from .events import EventRecorder, KopfEventRecorder, NullEventRecorder, emit_event
from .rate_limit import RateLimiter, handle_rate_limit_error
from .retry import update_with_retry

__all__ = [
    "update_condition",
    "find_condition",
    "is_condition_true",
    "set_ready_condition",
    "set_progressing_condition",
    "generate_password",
    "emit_event",
    "EventRecorder",
    "KopfEventRecorder",
    "NullEventRecorder",
    "RateLimiter",
    "handle_rate_limit_error",
    "update_with_retry",
]
