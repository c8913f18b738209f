"""Emergency lifecycle domain models.

This file defines the core enums and data structures shared by the
synchronization core and the channel adapters. Status precedence lives
here so every component ranks statuses the same way.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class EmergencyStatus(Enum):
    """Lifecycle status of a single emergency.

    IN_PROGRESS is the backend's name for an assigned-but-not-yet-accepted
    emergency and shares ASSIGNED's rank.
    """
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    ACCEPTED = "ACCEPTED"
    ARRIVED = "ARRIVED"
    RESOLVED = "RESOLVED"
    FRAUD_FLAGGED = "FRAUD_FLAGGED"

    @property
    def rank(self) -> int:
        return STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def parse(cls, value: Any) -> Optional["EmergencyStatus"]:
        """Parse a backend status string, returning None when unrecognised."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value.strip():
            return None
        key = value.strip().upper().replace(" ", "_").replace("-", "_")
        if key in ("FRAUD", "MARKED_FRAUD", "FRAUDULENT"):
            key = "FRAUD_FLAGGED"
        try:
            return cls(key)
        except ValueError:
            return None


STATUS_RANK: Dict[EmergencyStatus, int] = {
    EmergencyStatus.PENDING: 0,
    EmergencyStatus.ASSIGNED: 1,
    EmergencyStatus.IN_PROGRESS: 1,
    EmergencyStatus.ACCEPTED: 2,
    EmergencyStatus.ARRIVED: 3,
    EmergencyStatus.RESOLVED: 4,
    EmergencyStatus.FRAUD_FLAGGED: 4,
}

TERMINAL_STATUSES = frozenset({
    EmergencyStatus.RESOLVED,
    EmergencyStatus.FRAUD_FLAGGED,
})


class EventType(Enum):
    """Kinds of lifecycle facts observed for an emergency."""
    CREATED = "CREATED"
    ASSIGNED = "ASSIGNED"
    ACCEPTED = "ACCEPTED"
    ARRIVED = "ARRIVED"
    RESOLVED = "RESOLVED"
    RESPONDER_LOCATION = "RESPONDER_LOCATION"
    UPDATE = "UPDATE"
    UNKNOWN = "UNKNOWN"     # Payload shape not recognised; never enters the timeline

    @classmethod
    def parse(cls, value: Any) -> Optional["EventType"]:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value.strip():
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


# At most one entry of each of these per record
SINGLETON_EVENT_TYPES = frozenset({
    EventType.CREATED,
    EventType.ACCEPTED,
    EventType.ARRIVED,
    EventType.RESOLVED,
})

EVENT_STATUS: Dict[EventType, EmergencyStatus] = {
    EventType.CREATED: EmergencyStatus.PENDING,
    EventType.ASSIGNED: EmergencyStatus.ASSIGNED,
    EventType.ACCEPTED: EmergencyStatus.ACCEPTED,
    EventType.ARRIVED: EmergencyStatus.ARRIVED,
    EventType.RESOLVED: EmergencyStatus.RESOLVED,
}


class EventSource(Enum):
    """Channel a fact arrived on."""
    PUSH = "push"
    POLL = "poll"
    HISTORY = "history"
    CONFIRMED = "confirmed"     # Write-response of a local user action


class Role(Enum):
    """Session role; decides which identifying fields mean "mine"."""
    RESIDENT = "resident"
    RESPONDER = "responder"


class LocalAction(Enum):
    """User-initiated writes that are confirmed into the record."""
    ACCEPT = "accept"
    ARRIVE = "arrive"
    RESOLVE = "resolve"
    MARK_FRAUD = "mark-fraud"

    @property
    def target_status(self) -> EmergencyStatus:
        return {
            LocalAction.ACCEPT: EmergencyStatus.ACCEPTED,
            LocalAction.ARRIVE: EmergencyStatus.ARRIVED,
            LocalAction.RESOLVE: EmergencyStatus.RESOLVED,
            LocalAction.MARK_FRAUD: EmergencyStatus.FRAUD_FLAGGED,
        }[self]

    @property
    def event_type(self) -> EventType:
        return {
            LocalAction.ACCEPT: EventType.ACCEPTED,
            LocalAction.ARRIVE: EventType.ARRIVED,
            LocalAction.RESOLVE: EventType.RESOLVED,
            LocalAction.MARK_FRAUD: EventType.UPDATE,
        }[self]


@dataclass(frozen=True)
class Location:
    """A WGS84 point."""
    lat: float
    lng: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True)
class NormalizedEvent:
    """Producer-agnostic view of one incoming payload.

    Ephemeral: built by the normalizer and consumed once by the
    reconciliation engine. The owner fields are kept separately because
    the ownership resolver checks them in a fixed order.
    """
    source: EventSource
    kind: EventType
    emergency_id: Optional[str] = None
    user_id: Optional[str] = None
    resident_id: Optional[str] = None
    created_by: Optional[str] = None
    nested_user_id: Optional[str] = None
    resolved_for: Optional[str] = None
    responder_id: Optional[str] = None
    location: Optional[Location] = None
    status: Optional[EmergencyStatus] = None
    occurred_at: Optional[datetime] = None
    created_at: Optional[datetime] = None   # Record creation time, poll records only
    payload: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def owner_claims(self) -> List[Tuple[str, str]]:
        """Present owner fields, in resolver order."""
        claims = [
            ("userId", self.user_id),
            ("residentId", self.resident_id),
            ("createdBy", self.created_by),
            ("user.id", self.nested_user_id),
            ("resolvedFor", self.resolved_for),
        ]
        return [(name, value) for name, value in claims if value is not None]

    @property
    def owner_user_id(self) -> Optional[str]:
        """First owner field the event carries, if any."""
        claims = self.owner_claims
        return claims[0][1] if claims else None

    @property
    def candidate_status(self) -> Optional[EmergencyStatus]:
        """Highest-ranked status this event implies.

        Combines the explicit status field with the status implied by the
        event kind, so an ARRIVED event carrying a stale status string still
        proposes ARRIVED.
        """
        candidates = [s for s in (self.status, EVENT_STATUS.get(self.kind)) if s is not None]
        if not candidates:
            return None
        return max(candidates, key=lambda s: s.rank)


@dataclass(frozen=True)
class TimelineEntry:
    """One observed lifecycle fact. Never mutated once created."""
    event_type: EventType
    payload: Dict[str, Any]
    occurred_at: Optional[datetime]
    source: EventSource
    observed_at: datetime = field(compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
            "source": self.source.value,
        }


@dataclass
class EmergencyRecord:
    """Authoritative client-side view of one emergency.

    Mutated only by the reconciliation engine.
    """
    id: Optional[str] = None
    status: EmergencyStatus = EmergencyStatus.PENDING
    owner_user_id: Optional[str] = None
    responder_id: Optional[str] = None
    responder_location: Optional[Location] = None
    last_responder_location_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class EmergencySnapshot:
    """Read-only model handed to presentation collaborators."""
    emergency_id: Optional[str]
    status: EmergencyStatus
    responder_location: Optional[Location]
    last_responder_location_at: Optional[datetime]
    timeline: Tuple[TimelineEntry, ...]
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emergency_id": self.emergency_id,
            "status": self.status.value,
            "responder_location": (
                self.responder_location.to_dict() if self.responder_location else None
            ),
            "last_responder_location_at": (
                self.last_responder_location_at.isoformat()
                if self.last_responder_location_at else None
            ),
            "timeline": [entry.to_dict() for entry in self.timeline],
            "version": self.version,
        }
