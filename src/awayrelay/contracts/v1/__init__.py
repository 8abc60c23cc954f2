from __future__ import annotations

from .event import EventCategory, EventKind, NotifyEvent, classify_event

__all__ = [
    "EventCategory",
    "EventKind",
    "NotifyEvent",
    "classify_event",
]
