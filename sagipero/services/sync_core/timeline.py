"""Timeline merger for a single tracked emergency.

Merges two overlapping sources into one oldest-first list:
- live events (push) appended between refreshes, deduplicated by key
- authoritative history (poll), which replaces the list wholesale

Singleton kinds (CREATED, ACCEPTED, ARRIVED, RESOLVED) appear at most once.
A singleton synthesized by a locally confirmed action survives a history
refresh that has not caught up with it yet, so the UI does not flicker.
"""
import hashlib
import json
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sagipero.shared.models import (
    EventSource,
    EventType,
    NormalizedEvent,
    SINGLETON_EVENT_TYPES,
    TimelineEntry,
)
from sagipero.shared.utils import bucket, utcnow
from .config import SyncConfig

logger = logging.getLogger(__name__)


def payload_fingerprint(payload: Dict[str, Any]) -> str:
    """Stable digest of a payload, used to recognise re-delivered events."""
    canonical = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


class TimelineMerger:
    """Maintains the ordered TimelineEntry list for the tracked record."""

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or SyncConfig()
        self._clock = clock
        self._entries: List[TimelineEntry] = []
        self._confirmed_at: Dict[EventType, datetime] = {}

    @property
    def entries(self) -> Tuple[TimelineEntry, ...]:
        return tuple(self._entries)

    def reset(self) -> None:
        """Drop everything; called when the tracked emergency changes."""
        self._entries = []
        self._confirmed_at = {}

    def add_live(self, event: NormalizedEvent) -> bool:
        """Merge one live event into the timeline.

        Returns:
            True if the timeline changed
        """
        if event.kind is EventType.UNKNOWN:
            return False

        entry = TimelineEntry(
            event_type=event.kind,
            payload=dict(event.payload),
            occurred_at=event.occurred_at,
            source=event.source,
            observed_at=self._clock(),
        )

        if entry.event_type in SINGLETON_EVENT_TYPES:
            return self._merge_singleton(entry)
        if entry.event_type is EventType.RESPONDER_LOCATION:
            return self._append_location(entry)
        return self._append_keyed(entry)

    def add_confirmed(
        self,
        event_type: EventType,
        payload: Dict[str, Any],
        occurred_at: Optional[datetime] = None,
    ) -> bool:
        """Synthesize an entry for a locally confirmed action.

        The entry shows up immediately instead of waiting for the push or
        poll echo.
        """
        now = self._clock()
        entry = TimelineEntry(
            event_type=event_type,
            payload=dict(payload),
            occurred_at=occurred_at or now,
            source=EventSource.CONFIRMED,
            observed_at=now,
        )
        if event_type in SINGLETON_EVENT_TYPES:
            changed = self._merge_singleton(entry)
            if self._index_of(event_type) is not None:
                self._confirmed_at[event_type] = now
            return changed
        return self._append_keyed(entry)

    def replace_with_history(
        self,
        events: Iterable[NormalizedEvent],
        fetched_at: datetime,
    ) -> bool:
        """Replace the timeline with authoritative history.

        Args:
            events: Normalized history records, oldest first
            fetched_at: When the history request was issued

        Returns:
            True if the timeline changed
        """
        observed_at = self._clock()
        history: List[TimelineEntry] = []
        seen_singletons = set()
        for event in events:
            if event.kind is EventType.UNKNOWN:
                continue
            if event.kind in SINGLETON_EVENT_TYPES:
                if event.kind in seen_singletons:
                    continue
                seen_singletons.add(event.kind)
            history.append(TimelineEntry(
                event_type=event.kind,
                payload=dict(event.payload),
                occurred_at=event.occurred_at,
                source=EventSource.HISTORY,
                observed_at=observed_at,
            ))

        grace = timedelta(seconds=self.config.confirmation_grace_seconds)
        preserved: List[TimelineEntry] = []
        for event_type, confirmed_at in list(self._confirmed_at.items()):
            if event_type in seen_singletons:
                # Server history caught up; it is the source of truth now
                del self._confirmed_at[event_type]
                continue
            if confirmed_at > fetched_at or fetched_at - confirmed_at <= grace:
                index = self._index_of(event_type)
                if index is not None:
                    preserved.append(self._entries[index])
            else:
                del self._confirmed_at[event_type]
                logger.info(
                    "TIMELINE_CONFIRMATION_EXPIRED",
                    extra={"event_type": event_type.value}
                )

        for entry in preserved:
            self._insert_ordered(history, entry)

        changed = history != self._entries
        self._entries = history
        if changed:
            logger.info(
                "TIMELINE_REPLACED_FROM_HISTORY",
                extra={"entry_count": len(history), "preserved_count": len(preserved)}
            )
        return changed

    def _merge_singleton(self, entry: TimelineEntry) -> bool:
        index = self._index_of(entry.event_type)
        if index is None:
            self._entries.append(entry)
            return True

        existing = self._entries[index]
        refined_payload = dict(existing.payload)
        if existing.source is not EventSource.HISTORY:
            refined_payload = {**entry.payload, **existing.payload}
        refined = replace(
            existing,
            occurred_at=existing.occurred_at or entry.occurred_at,
            payload=refined_payload,
        )
        if refined == existing:
            return False
        # Refined in place; position in the list never moves
        self._entries[index] = refined
        return True

    def _append_location(self, entry: TimelineEntry) -> bool:
        cap = self.config.live_location_cap
        if cap == 0:
            return False
        fingerprint = payload_fingerprint(entry.payload)
        live = [
            i for i, e in enumerate(self._entries)
            if e.event_type is EventType.RESPONDER_LOCATION and e.source is not EventSource.HISTORY
        ]
        if any(payload_fingerprint(self._entries[i].payload) == fingerprint for i in live):
            return False

        self._entries.append(entry)
        live.append(len(self._entries) - 1)
        overflow = len(live) - cap
        if overflow > 0:
            drop = set(live[:overflow])
            self._entries = [e for i, e in enumerate(self._entries) if i not in drop]
        return True

    def _append_keyed(self, entry: TimelineEntry) -> bool:
        key = self._dedup_key(entry)
        for existing in self._entries:
            if existing.event_type is entry.event_type and self._dedup_key(existing) == key:
                return False
        self._entries.append(entry)
        return True

    def _dedup_key(self, entry: TimelineEntry) -> Tuple[EventType, Optional[int], str]:
        return (
            entry.event_type,
            bucket(entry.occurred_at, self.config.dedup_bucket_seconds),
            payload_fingerprint(entry.payload),
        )

    def _index_of(self, event_type: EventType) -> Optional[int]:
        for index, entry in enumerate(self._entries):
            if entry.event_type is event_type:
                return index
        return None

    @staticmethod
    def _insert_ordered(entries: List[TimelineEntry], entry: TimelineEntry) -> None:
        if entry.occurred_at is None:
            entries.append(entry)
            return
        position = len(entries)
        while position > 0:
            previous = entries[position - 1].occurred_at
            if previous is None or previous <= entry.occurred_at:
                break
            position -= 1
        entries.insert(position, entry)
