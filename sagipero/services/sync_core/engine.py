"""Reconciliation engine - the single mutation point for a tracked emergency.

Receives normalized events from every channel (push callback, poll timer,
local user action), decides what to apply and what to ignore, and emits a
read-only snapshot to subscribed observers.

The engine performs no I/O. When ownership of an event cannot be decided
locally it parks the event and asks the caller for one authoritative
fetch; the caller reports back through resolve_pending().
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from sagipero.shared.models import (
    EmergencyRecord,
    EmergencySnapshot,
    EmergencyStatus,
    EventSource,
    EventType,
    LocalAction,
    Location,
    NormalizedEvent,
)
from sagipero.shared.utils import redact_id, utcnow
from .config import LOCATION_POLICY_MAX_TIMESTAMP, SyncConfig
from .normalizer import EventNormalizer
from .ownership import Ownership, OwnershipResolver
from .state_machine import StatusStateMachine, TransitionResult
from .timeline import TimelineMerger

logger = logging.getLogger(__name__)

SnapshotObserver = Callable[[EmergencySnapshot], None]


class IngestDecision(Enum):
    """What ingest() did with an event."""
    APPLIED = "applied"                         # Record or timeline changed
    NO_CHANGE = "no_change"                     # Mine, but nothing new
    DISCARDED = "discarded"                     # Not mine, or unverifiable
    PENDING_OWNERSHIP = "pending_ownership"     # Parked until resolve_pending()
    OTHER_RECORD = "other_record"               # Mine, but a different emergency


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ingest() call."""
    decision: IngestDecision
    event: NormalizedEvent
    transition: Optional[TransitionResult] = None
    fetch_required: bool = False    # Caller must fetch event.emergency_id once


class ReconciliationEngine:
    """Owns the EmergencyRecord and timeline for one tracked emergency.

    All mutations run under a re-entrant lock so a presentation thread can
    read snapshots while the event loop ingests. Observers are notified
    outside the lock, only when something visible changed.
    """

    def __init__(
        self,
        resolver: OwnershipResolver,
        config: Optional[SyncConfig] = None,
        normalizer: Optional[EventNormalizer] = None,
        clock: Callable[[], datetime] = utcnow,
        emergency_id: Optional[str] = None,
    ):
        """Initialize engine.

        Args:
            resolver: Ownership resolver bound to the session user
            config: Sync tuning (location policy, timeline limits)
            normalizer: Normalizer for write-responses and raw history
            clock: Time source, injectable for tests
            emergency_id: Emergency to track from the start, if known
        """
        self.resolver = resolver
        self.config = config or SyncConfig()
        self.normalizer = normalizer or EventNormalizer()
        self._clock = clock
        self._lock = threading.RLock()
        self._observers: List[SnapshotObserver] = []

        self._record = EmergencyRecord(id=emergency_id)
        self._machine = StatusStateMachine()
        self._timeline = TimelineMerger(self.config, clock=clock)
        self._location_event_at: Optional[datetime] = None
        self._confirmed_responder_id: Optional[str] = None
        self._pending: Dict[str, List[NormalizedEvent]] = {}
        self._version = 0

        logger.info(
            "RECONCILIATION_ENGINE_INITIALIZED",
            extra={
                "emergency_id": emergency_id,
                "role": resolver.role.value,
                "location_policy": self.config.location_policy,
            }
        )

    # Observers

    def subscribe(self, observer: SnapshotObserver) -> Callable[[], None]:
        """Register an observer; returns a callable that unsubscribes it."""
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

        def _unsubscribe() -> None:
            self.unsubscribe(observer)

        return _unsubscribe

    def unsubscribe(self, observer: SnapshotObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    # Read model

    @property
    def emergency_id(self) -> Optional[str]:
        with self._lock:
            return self._record.id

    @property
    def status(self) -> EmergencyStatus:
        with self._lock:
            return self._machine.status

    @property
    def is_terminal(self) -> bool:
        with self._lock:
            return self._machine.is_terminal

    @property
    def owner_user_id(self) -> Optional[str]:
        with self._lock:
            return self._record.owner_user_id

    @property
    def responder_id(self) -> Optional[str]:
        with self._lock:
            return self._record.responder_id

    def snapshot(self) -> EmergencySnapshot:
        with self._lock:
            return self._snapshot_locked()

    # Tracking

    def track(self, emergency_id: Optional[str]) -> bool:
        """Switch to a different emergency, resetting record and timeline.

        Returns:
            True if the tracked identity changed
        """
        with self._lock:
            if emergency_id == self._record.id:
                return False
            previous = self._record.id
            self._record = EmergencyRecord(id=emergency_id)
            self._machine.reset()
            self._timeline.reset()
            self._location_event_at = None
            self._confirmed_responder_id = None
            self._pending = {}
            self._version += 1
            snapshot = self._snapshot_locked()

        logger.info(
            "TRACKED_EMERGENCY_CHANGED",
            extra={"previous_id": previous, "emergency_id": emergency_id}
        )
        self._notify(snapshot)
        return True

    # Mutations

    def ingest(
        self,
        event: NormalizedEvent,
        ownership: Optional[Ownership] = None,
    ) -> IngestResult:
        """Apply one normalized event.

        Args:
            event: Event from push, poll or history
            ownership: Pre-resolved ownership (after a confirmation fetch)

        Returns:
            IngestResult; PENDING_OWNERSHIP with fetch_required=True means
            the caller must fetch the record once and call resolve_pending()
        """
        snapshot = None
        with self._lock:
            if ownership is None:
                ownership = self.resolver.resolve(event, self._record.id)

            if ownership is Ownership.NOT_MINE:
                return IngestResult(IngestDecision.DISCARDED, event)

            if ownership is Ownership.UNKNOWN:
                return self._park_locked(event)

            if (
                event.emergency_id is not None
                and self._record.id is not None
                and event.emergency_id != self._record.id
            ):
                logger.info(
                    "INGEST_OTHER_RECORD",
                    extra={
                        "emergency_id": event.emergency_id,
                        "tracked_id": self._record.id,
                        "kind": event.kind.value,
                        "source": event.source.value,
                    }
                )
                return IngestResult(IngestDecision.OTHER_RECORD, event)

            if self._record.id is None and event.emergency_id is not None:
                self._record.id = event.emergency_id
                logger.info(
                    "TRACKED_EMERGENCY_ADOPTED",
                    extra={"emergency_id": event.emergency_id, "source": event.source.value}
                )

            changed, transition = self._apply_locked(event)
            if event.source is EventSource.PUSH:
                changed = self._timeline.add_live(event) or changed

            if changed:
                self._version += 1
                snapshot = self._snapshot_locked()

        if snapshot is not None:
            self._notify(snapshot)
            return IngestResult(IngestDecision.APPLIED, event, transition)
        return IngestResult(IngestDecision.NO_CHANGE, event, transition)

    def resolve_pending(
        self,
        emergency_id: str,
        record: Optional[Mapping[str, Any]],
    ) -> List[IngestResult]:
        """Finish the confirmation round-trip for parked events.

        Args:
            emergency_id: Id that was fetched
            record: Authoritative record, or None if the fetch failed

        Returns:
            Results of re-ingesting the parked events; empty when dropped
        """
        with self._lock:
            parked = self._pending.pop(emergency_id, [])

        if not parked:
            return []

        if record is None:
            logger.warning(
                "OWNERSHIP_CONFIRMATION_FAILED",
                extra={"emergency_id": emergency_id, "dropped_count": len(parked)}
            )
            return []

        authoritative = self.normalizer.normalize_poll(record)
        ownership = self.resolver.resolve_record(authoritative)
        logger.info(
            "OWNERSHIP_CONFIRMED",
            extra={
                "emergency_id": emergency_id,
                "ownership": ownership.value,
                "event_count": len(parked),
            }
        )
        if ownership is not Ownership.MINE:
            return []

        results = [self.ingest(event, ownership=Ownership.MINE) for event in parked]
        if authoritative.emergency_id in (None, emergency_id):
            self.ingest(authoritative, ownership=Ownership.MINE)
        return results

    def confirm_local_action(
        self,
        action: LocalAction,
        result: Optional[Mapping[str, Any]] = None,
    ) -> TransitionResult:
        """Force the status confirmed by a successful local write.

        Called right after accept/arrive/resolve/mark-fraud succeeds. The
        write-response is authoritative for this transition, and a timeline
        entry is synthesized immediately.

        Args:
            action: The local action that succeeded
            result: Write-response body (the updated record), may be empty

        Returns:
            TransitionResult of the forced status
        """
        response = self.normalizer.normalize_poll(dict(result or {}))
        with self._lock:
            if self._record.id is None and response.emergency_id is not None:
                self._record.id = response.emergency_id

            transition = self._machine.apply_status(action.target_status, EventSource.CONFIRMED)
            changed = transition.changed

            if transition.accepted:
                if response.responder_id is not None:
                    if response.responder_id != self._record.responder_id:
                        self._record.responder_id = response.responder_id
                        changed = True
                    self._confirmed_responder_id = response.responder_id
                if self._record.owner_user_id is None and response.owner_user_id is not None:
                    self._record.owner_user_id = response.owner_user_id
                if response.location is not None:
                    changed = self._apply_location_locked(response) or changed

                payload: Dict[str, Any] = {
                    "emergencyId": self._record.id,
                    "action": action.value,
                }
                if self._record.responder_id is not None:
                    payload["responderId"] = self._record.responder_id
                if action is LocalAction.MARK_FRAUD:
                    payload["status"] = EmergencyStatus.FRAUD_FLAGGED.value
                changed = self._timeline.add_confirmed(
                    action.event_type, payload, response.occurred_at
                ) or changed

            self._record.status = self._machine.status
            snapshot = None
            if changed:
                self._version += 1
                snapshot = self._snapshot_locked()
            emergency_id = self._record.id

        logger.info(
            "LOCAL_ACTION_CONFIRMED",
            extra={
                "emergency_id": emergency_id,
                "action": action.value,
                "outcome": transition.outcome.value,
                "status": transition.current.value,
            }
        )
        if snapshot is not None:
            self._notify(snapshot)
        return transition

    def merge_history(
        self,
        entries: Iterable[Any],
        fetched_at: datetime,
    ) -> bool:
        """Replace the timeline with authoritative history.

        Args:
            entries: Raw history records or already-normalized events
            fetched_at: When the history request was issued

        Returns:
            True if the timeline changed
        """
        events = [
            entry if isinstance(entry, NormalizedEvent)
            else self.normalizer.normalize_history_entry(entry)
            for entry in entries
        ]
        with self._lock:
            tracked = self._record.id
            events = [
                e for e in events
                if e.emergency_id is None or tracked is None or e.emergency_id == tracked
            ]
            changed = self._timeline.replace_with_history(events, fetched_at)
            snapshot = None
            if changed:
                self._version += 1
                snapshot = self._snapshot_locked()

        if snapshot is not None:
            self._notify(snapshot)
        return changed

    # Internals

    def _park_locked(self, event: NormalizedEvent) -> IngestResult:
        if event.emergency_id is None:
            logger.info(
                "INGEST_UNVERIFIABLE_DROPPED",
                extra={"kind": event.kind.value, "source": event.source.value}
            )
            return IngestResult(IngestDecision.DISCARDED, event)

        queue = self._pending.setdefault(event.emergency_id, [])
        fetch_required = not queue
        queue.append(event)
        logger.info(
            "OWNERSHIP_PENDING",
            extra={
                "emergency_id": event.emergency_id,
                "kind": event.kind.value,
                "queued": len(queue),
                "fetch_required": fetch_required,
            }
        )
        return IngestResult(
            IngestDecision.PENDING_OWNERSHIP, event, fetch_required=fetch_required
        )

    def _apply_locked(self, event: NormalizedEvent):
        changed = False
        record = self._record
        authoritative = event.source in (EventSource.POLL, EventSource.CONFIRMED)

        if authoritative and event.owner_user_id is not None:
            if record.owner_user_id is None:
                record.owner_user_id = event.owner_user_id
            elif record.owner_user_id != event.owner_user_id:
                logger.warning(
                    "OWNER_CHANGE_IGNORED",
                    extra={
                        "emergency_id": record.id,
                        "owner": redact_id(record.owner_user_id),
                        "candidate": redact_id(event.owner_user_id),
                    }
                )
        if authoritative and record.created_at is None and event.created_at is not None:
            record.created_at = event.created_at

        if event.location is not None:
            changed = self._apply_location_locked(event) or changed

        transition = None
        candidate = event.candidate_status
        if candidate is not None:
            transition = self._machine.apply_status(candidate, event.source)
            record.status = self._machine.status
            changed = transition.changed or changed

        if event.responder_id is not None and event.responder_id != record.responder_id:
            stale = transition is not None and not transition.accepted
            overridden = (
                self._confirmed_responder_id is not None
                and self._machine.confirmed_status is not None
            )
            if stale or overridden:
                logger.info(
                    "RESPONDER_UPDATE_DISCARDED",
                    extra={
                        "emergency_id": record.id,
                        "reason": "confirmed_write" if overridden else "stale_status",
                        "source": event.source.value,
                    }
                )
            else:
                record.responder_id = event.responder_id
                changed = True

        return changed, transition

    def _apply_location_locked(self, event: NormalizedEvent) -> bool:
        now = self._clock()
        event_at = event.occurred_at or now
        if (
            self.config.location_policy == LOCATION_POLICY_MAX_TIMESTAMP
            and self._location_event_at is not None
            and event_at < self._location_event_at
        ):
            logger.info(
                "RESPONDER_LOCATION_OUT_OF_ORDER",
                extra={"emergency_id": self._record.id, "source": event.source.value}
            )
            return False

        location: Location = event.location
        if location == self._record.responder_location:
            # Re-reported position keeps the stamp of its first report
            if self._location_event_at is None or event_at > self._location_event_at:
                self._location_event_at = event_at
            return False
        self._record.responder_location = location
        self._record.last_responder_location_at = now
        self._location_event_at = event_at
        return True

    def _snapshot_locked(self) -> EmergencySnapshot:
        return EmergencySnapshot(
            emergency_id=self._record.id,
            status=self._machine.status,
            responder_location=self._record.responder_location,
            last_responder_location_at=self._record.last_responder_location_at,
            timeline=self._timeline.entries,
            version=self._version,
        )

    def _notify(self, snapshot: EmergencySnapshot) -> None:
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(snapshot)
            except Exception as e:
                logger.error(
                    "SNAPSHOT_OBSERVER_FAILED",
                    extra={"error": str(e), "error_type": type(e).__name__}
                )
