"""Ownership resolution for normalized events.

Decides whether an event concerns the session's own emergency. Payloads
identify their owner inconsistently, so the answer is tri-state: an event
with no identifying field and no known emergency id is UNKNOWN and must be
confirmed against the authoritative record before it is applied.
"""
import logging
from enum import Enum
from typing import List, Optional, Tuple

from sagipero.shared.models import NormalizedEvent, Role
from sagipero.shared.utils import redact_id

logger = logging.getLogger(__name__)


class Ownership(Enum):
    """Result of an ownership check."""
    MINE = "mine"
    NOT_MINE = "not_mine"
    UNKNOWN = "unknown"     # Caller must confirm with an authoritative fetch


class OwnershipResolver:
    """Resolves event ownership against the session user.

    A resident owns the emergencies they reported (userId, residentId,
    createdBy, user.id, resolvedFor). A responder owns the emergency they
    are assigned to (responderId).
    """

    def __init__(self, user_id: str, role: Role = Role.RESIDENT):
        if not user_id:
            raise ValueError("OwnershipResolver requires a session user id")
        self.user_id = str(user_id)
        self.role = role

    def claims(self, event: NormalizedEvent) -> List[Tuple[str, str]]:
        """Identifying fields present on the event, in check order."""
        if self.role is Role.RESPONDER:
            return [("responderId", event.responder_id)] if event.responder_id else []
        return event.owner_claims

    def resolve(
        self,
        event: NormalizedEvent,
        tracked_id: Optional[str] = None,
    ) -> Ownership:
        """Resolve ownership of a live event.

        Args:
            event: Normalized event to check
            tracked_id: Id of the record currently tracked, if known

        Returns:
            MINE, NOT_MINE, or UNKNOWN when a confirmation fetch is needed
        """
        claims = self.claims(event)
        for field_name, value in claims:
            if value == self.user_id:
                return Ownership.MINE

        if claims:
            logger.info(
                "OWNERSHIP_MISMATCH",
                extra={
                    "emergency_id": event.emergency_id,
                    "fields": [name for name, _ in claims],
                    "session_user": redact_id(self.user_id),
                    "source": event.source.value,
                }
            )
            return Ownership.NOT_MINE

        if event.emergency_id is not None and tracked_id is not None:
            if event.emergency_id == tracked_id:
                return Ownership.MINE

        return Ownership.UNKNOWN

    def resolve_record(self, record: NormalizedEvent) -> Ownership:
        """Resolve ownership from an authoritative record.

        Used for the confirmation round-trip. A record that names no owner
        cannot be verified and is treated as NOT_MINE.
        """
        for field_name, value in self.claims(record):
            if value == self.user_id:
                return Ownership.MINE
        return Ownership.NOT_MINE
