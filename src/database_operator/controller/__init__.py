"""Work scheduling: event routing and dispatch of kopf handlers to reconcilers."""

from .dispatch import Dispatcher
from .router import EventRouter, ReferenceIndex, owner_key

__all__ = ["Dispatcher", "EventRouter", "ReferenceIndex", "owner_key"]
