"""Event envelope normalization.

Push events, poll responses and history records all describe the same
emergency with different field names (lat/latitude, userId/residentId,
emergencyId/id, ...). This module maps every known variant onto a single
NormalizedEvent through explicit alias tables. Shapes that match nothing
become EventType.UNKNOWN instead of being guessed at.
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sagipero.shared.models import (
    EmergencyStatus,
    EventSource,
    EventType,
    Location,
    NormalizedEvent,
)
from sagipero.shared.utils import parse_timestamp

logger = logging.getLogger(__name__)


# Realtime event names and the lifecycle kind each one reports
PUSH_EVENT_KINDS: Dict[str, EventType] = {
    "sos:triggered": EventType.CREATED,
    "emergency:created": EventType.CREATED,
    "emergency:assigned": EventType.ASSIGNED,
    "emergency:accepted": EventType.ACCEPTED,
    "emergency:updated": EventType.UPDATE,
    "emergency:arrived": EventType.ARRIVED,
    "emergency:resolved": EventType.RESOLVED,
    "emergency:responderLocation": EventType.RESPONDER_LOCATION,
}

# Events whose payload may name its own kind via eventType
SELF_DESCRIBING_EVENTS = frozenset({
    "emergency:updated",
    "emergency:responderLocation",
})

RESPONDER_LOCATION_EVENT = "emergency:responderLocation"

# Field aliases, checked left to right; dotted names are nested lookups
EMERGENCY_ID_FIELDS: Tuple[str, ...] = ("emergencyId", "emergency_id")
USER_ID_FIELDS: Tuple[str, ...] = ("userId", "user_id")
RESIDENT_ID_FIELDS: Tuple[str, ...] = ("residentId", "resident_id")
CREATED_BY_FIELDS: Tuple[str, ...] = ("createdBy", "created_by")
NESTED_USER_ID_FIELDS: Tuple[str, ...] = ("user.id",)
RESOLVED_FOR_FIELDS: Tuple[str, ...] = ("resolvedFor", "resolved_for")
RESPONDER_ID_FIELDS: Tuple[str, ...] = (
    "responderId",
    "responder_id",
    "responder.id",
    "User_Emergency_responderIdToUser.id",
)
EVENT_TYPE_FIELDS: Tuple[str, ...] = ("eventType", "event_type")
RESPONDER_LOCATION_FIELDS: Tuple[str, ...] = (
    "responderLocation",
    "responder_location",
    "User_Emergency_responderIdToUser.responderLocation",
)
CREATED_AT_FIELDS: Tuple[str, ...] = ("createdAt", "created_at")
UPDATED_AT_FIELDS: Tuple[str, ...] = ("updatedAt", "updated_at")
OCCURRED_AT_FIELDS: Tuple[str, ...] = (
    "occurredAt",
    "occurred_at",
    "timestamp",
    "ts",
    "createdAt",
    "created_at",
)

# Kind-specific timestamps take precedence over the generic ones
KIND_TIMESTAMP_FIELDS: Dict[EventType, Tuple[str, ...]] = {
    EventType.ACCEPTED: ("acceptedAt", "accepted_at"),
    EventType.ARRIVED: ("arrivedAt", "arrived_at"),
    EventType.RESOLVED: ("resolvedAt", "resolved_at"),
}

LAT_FIELDS: Tuple[str, ...] = ("lat", "latitude")
LNG_FIELDS: Tuple[str, ...] = ("lng", "lon", "longitude")


def _lookup(payload: Mapping[str, Any], path: str) -> Any:
    current: Any = payload
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def _first(payload: Mapping[str, Any], fields: Iterable[str]) -> Any:
    for name in fields:
        value = _lookup(payload, name)
        if value is not None and value != "":
            return value
    return None


def _as_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (str, int)):
        text = str(value).strip()
        return text or None
    return None


def _as_coordinate(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_location(raw: Any) -> Optional[Location]:
    """Parse a coordinate object in any of the known shapes.

    Accepts {lat, lng}, {latitude, longitude}, {lat, lon} and a nested
    {coords: {latitude, longitude}}. Zero is a valid coordinate.
    """
    if not isinstance(raw, Mapping):
        return None
    if isinstance(raw.get("coords"), Mapping):
        nested = parse_location(raw["coords"])
        if nested is not None:
            return nested
    lat = _as_coordinate(_first(raw, LAT_FIELDS))
    lng = _as_coordinate(_first(raw, LNG_FIELDS))
    if lat is None or lng is None:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        logger.warning(
            "LOCATION_OUT_OF_RANGE",
            extra={"lat": lat, "lng": lng}
        )
        return None
    return Location(lat=lat, lng=lng)


class EventNormalizer:
    """Converts heterogeneous payloads into NormalizedEvent.

    Stateless and total: every input yields an event, malformed input
    yields an UNKNOWN event with whatever fields could be read.
    """

    def normalize_push(self, event_name: str, payload: Any) -> NormalizedEvent:
        """Normalize one realtime event.

        Args:
            event_name: Realtime event name, e.g. "emergency:arrived"
            payload: Raw JSON object delivered with the event

        Returns:
            NormalizedEvent with source PUSH
        """
        data = self._as_mapping(payload, EventSource.PUSH, event_name)
        kind = PUSH_EVENT_KINDS.get(event_name, EventType.UNKNOWN)

        if event_name in SELF_DESCRIBING_EVENTS or kind is EventType.UNKNOWN:
            declared = EventType.parse(_first(data, EVENT_TYPE_FIELDS))
            if declared is not None:
                kind = declared
            elif event_name == RESPONDER_LOCATION_EVENT and _first(data, ("arrivedAt",)):
                kind = EventType.ARRIVED

        if kind is EventType.UNKNOWN:
            logger.warning(
                "PUSH_EVENT_UNRECOGNISED",
                extra={"event_name": event_name, "fields": sorted(data.keys())}
            )

        location_fields = RESPONDER_LOCATION_FIELDS
        if event_name == RESPONDER_LOCATION_EVENT or kind is EventType.RESPONDER_LOCATION:
            location_fields = ("location",) + RESPONDER_LOCATION_FIELDS

        emergency_id = _as_id(_first(data, EMERGENCY_ID_FIELDS))
        if emergency_id is None:
            # Record-shaped payloads (assigned/updated/created) carry the id directly
            emergency_id = _as_id(data.get("id"))

        return self._build(
            source=EventSource.PUSH,
            kind=kind,
            data=data,
            emergency_id=emergency_id,
            location=self._first_location(data, location_fields),
            occurred_at=self._occurred_at(data, kind),
        )

    def normalize_poll(self, record: Any) -> NormalizedEvent:
        """Normalize an authoritative emergency record (by-id or latest).

        The record's own `location` is the incident position, not the
        responder's, so only responder-location fields are read.
        """
        data = self._as_mapping(record, EventSource.POLL, "poll")
        emergency_id = _as_id(data.get("id")) or _as_id(_first(data, EMERGENCY_ID_FIELDS))

        return self._build(
            source=EventSource.POLL,
            kind=EventType.UPDATE if data else EventType.UNKNOWN,
            data=data,
            emergency_id=emergency_id,
            location=self._first_location(data, RESPONDER_LOCATION_FIELDS),
            occurred_at=parse_timestamp(_first(data, UPDATED_AT_FIELDS)),
            created_at=parse_timestamp(_first(data, CREATED_AT_FIELDS)),
        )

    def normalize_history_entry(self, entry: Any) -> NormalizedEvent:
        """Normalize one {event_type, payload, created_at} history record."""
        data = self._as_mapping(entry, EventSource.HISTORY, "history")
        kind = EventType.parse(_first(data, EVENT_TYPE_FIELDS)) or EventType.UNKNOWN
        inner = data.get("payload")
        inner = inner if isinstance(inner, Mapping) else {}

        if kind is EventType.RESPONDER_LOCATION:
            location = parse_location(inner.get("location")) or parse_location(inner)
        else:
            location = self._first_location(inner, RESPONDER_LOCATION_FIELDS)

        occurred_at = parse_timestamp(_first(data, ("created_at", "createdAt", "occurredAt")))
        if occurred_at is None:
            occurred_at = self._occurred_at(inner, kind)

        emergency_id = (
            _as_id(_first(data, EMERGENCY_ID_FIELDS))
            or _as_id(_first(inner, EMERGENCY_ID_FIELDS))
        )

        return self._build(
            source=EventSource.HISTORY,
            kind=kind,
            data=dict(inner),
            emergency_id=emergency_id,
            location=location,
            occurred_at=occurred_at,
        )

    def normalize_history(self, entries: Any) -> List[NormalizedEvent]:
        """Normalize a history list; non-list input yields an empty list."""
        if not isinstance(entries, list):
            logger.warning(
                "HISTORY_PAYLOAD_NOT_A_LIST",
                extra={"payload_type": type(entries).__name__}
            )
            return []
        return [self.normalize_history_entry(entry) for entry in entries]

    def _build(
        self,
        source: EventSource,
        kind: EventType,
        data: Mapping[str, Any],
        emergency_id: Optional[str],
        location: Optional[Location],
        occurred_at,
        created_at=None,
    ) -> NormalizedEvent:
        raw_status = data.get("status")
        status = EmergencyStatus.parse(raw_status)
        if raw_status is not None and status is None:
            logger.info(
                "STATUS_VALUE_UNRECOGNISED",
                extra={"source": source.value, "status": str(raw_status)}
            )

        return NormalizedEvent(
            source=source,
            kind=kind,
            emergency_id=emergency_id,
            user_id=_as_id(_first(data, USER_ID_FIELDS)),
            resident_id=_as_id(_first(data, RESIDENT_ID_FIELDS)),
            created_by=_as_id(_first(data, CREATED_BY_FIELDS)),
            nested_user_id=_as_id(_first(data, NESTED_USER_ID_FIELDS)),
            resolved_for=_as_id(_first(data, RESOLVED_FOR_FIELDS)),
            responder_id=_as_id(_first(data, RESPONDER_ID_FIELDS)),
            location=location,
            status=status,
            occurred_at=occurred_at,
            created_at=created_at,
            payload=dict(data),
        )

    @staticmethod
    def _as_mapping(payload: Any, source: EventSource, origin: str) -> Mapping[str, Any]:
        if isinstance(payload, Mapping):
            return payload
        logger.warning(
            "PAYLOAD_NOT_AN_OBJECT",
            extra={
                "source": source.value,
                "origin": origin,
                "payload_type": type(payload).__name__,
            }
        )
        return {}

    @staticmethod
    def _first_location(data: Mapping[str, Any], fields: Iterable[str]) -> Optional[Location]:
        for name in fields:
            location = parse_location(_lookup(data, name))
            if location is not None:
                return location
        return None

    @staticmethod
    def _occurred_at(data: Mapping[str, Any], kind: EventType):
        fields = KIND_TIMESTAMP_FIELDS.get(kind, ()) + OCCURRED_AT_FIELDS
        for name in fields:
            parsed = parse_timestamp(_lookup(data, name))
            if parsed is not None:
                return parsed
        return None
