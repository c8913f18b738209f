"""Emergency Lifecycle Synchronization Core.

Keeps one client's view of a single emergency consistent while facts
arrive from two unreliable, unordered channels (realtime push and
periodic authoritative poll) and from the user's own actions.

Components:
- normalizer.py: EventNormalizer, canonical shape for every payload
- ownership.py: OwnershipResolver, tri-state "is this mine?"
- state_machine.py: StatusStateMachine, rank-monotonic status
- timeline.py: TimelineMerger, deduplicated oldest-first history
- engine.py: ReconciliationEngine, the single mutation point
- config.py: SyncConfig

Usage:
    resolver = OwnershipResolver(user_id="u1", role=Role.RESIDENT)
    engine = ReconciliationEngine(resolver)
    engine.subscribe(render)
    engine.ingest(EventNormalizer().normalize_push("emergency:accepted", payload))
"""

from .config import SyncConfig
from .normalizer import EventNormalizer, PUSH_EVENT_KINDS, parse_location
from .ownership import Ownership, OwnershipResolver
from .state_machine import StatusStateMachine, TransitionOutcome, TransitionResult
from .timeline import TimelineMerger
from .engine import IngestDecision, IngestResult, ReconciliationEngine

__all__ = [
    "SyncConfig",
    "EventNormalizer",
    "PUSH_EVENT_KINDS",
    "parse_location",
    "Ownership",
    "OwnershipResolver",
    "StatusStateMachine",
    "TransitionOutcome",
    "TransitionResult",
    "TimelineMerger",
    "IngestDecision",
    "IngestResult",
    "ReconciliationEngine",
]
