"""Shared domain models for the Sagipero client."""
from .emergency import (
    EmergencyStatus,
    STATUS_RANK,
    TERMINAL_STATUSES,
    EventType,
    SINGLETON_EVENT_TYPES,
    EVENT_STATUS,
    EventSource,
    Role,
    LocalAction,
    Location,
    NormalizedEvent,
    TimelineEntry,
    EmergencyRecord,
    EmergencySnapshot,
)

__all__ = [
    "EmergencyStatus",
    "STATUS_RANK",
    "TERMINAL_STATUSES",
    "EventType",
    "SINGLETON_EVENT_TYPES",
    "EVENT_STATUS",
    "EventSource",
    "Role",
    "LocalAction",
    "Location",
    "NormalizedEvent",
    "TimelineEntry",
    "EmergencyRecord",
    "EmergencySnapshot",
]
