"""Status state machine for the emergency lifecycle.

PENDING -> ASSIGNED/IN_PROGRESS -> ACCEPTED -> ARRIVED -> RESOLVED, with
FRAUD_FLAGGED as a terminal flag reachable from any non-RESOLVED state.

Updates arrive out of order from push, poll and local writes, so the
machine accepts a candidate only when its rank is at least the current
rank. A rejected candidate is an expected, benign condition: it is logged
and reported, never raised.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sagipero.shared.models import EmergencyStatus, EventSource

logger = logging.getLogger(__name__)


class TransitionOutcome(Enum):
    """What apply_status did with a candidate."""
    APPLIED = "applied"                         # Status changed
    UNCHANGED = "unchanged"                     # Accepted, idempotent re-application
    REJECTED_REGRESSION = "rejected_regression"
    REJECTED_TERMINAL = "rejected_terminal"


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a single apply_status call."""
    outcome: TransitionOutcome
    previous: EmergencyStatus
    current: EmergencyStatus
    candidate: EmergencyStatus
    source: EventSource

    @property
    def changed(self) -> bool:
        return self.outcome is TransitionOutcome.APPLIED

    @property
    def accepted(self) -> bool:
        return self.outcome in (TransitionOutcome.APPLIED, TransitionOutcome.UNCHANGED)


class StatusStateMachine:
    """Holds the canonical status of one emergency.

    A status confirmed by a local write-response is authoritative at its
    rank: an equal-rank candidate from push or poll does not replace it.
    """

    def __init__(self, initial: EmergencyStatus = EmergencyStatus.PENDING):
        self._status = initial
        self._confirmed: Optional[EmergencyStatus] = None

    @property
    def status(self) -> EmergencyStatus:
        return self._status

    @property
    def confirmed_status(self) -> Optional[EmergencyStatus]:
        """Status last set by a confirmed local action, if still current."""
        if self._confirmed is not None and self._confirmed is self._status:
            return self._confirmed
        return None

    @property
    def is_terminal(self) -> bool:
        return self._status.is_terminal

    def is_confirmed_rank(self, rank: int) -> bool:
        confirmed = self.confirmed_status
        return confirmed is not None and confirmed.rank == rank

    def apply_status(
        self,
        candidate: EmergencyStatus,
        source: EventSource,
    ) -> TransitionResult:
        """Apply a candidate status if it does not regress the lifecycle.

        Args:
            candidate: Proposed status
            source: Channel the candidate arrived on

        Returns:
            TransitionResult describing the decision
        """
        previous = self._status

        if previous.is_terminal:
            if candidate is previous:
                return self._result(TransitionOutcome.UNCHANGED, previous, candidate, source)
            logger.info(
                "STATUS_TRANSITION_REJECTED",
                extra={
                    "reason": "terminal",
                    "current": previous.value,
                    "candidate": candidate.value,
                    "source": source.value,
                }
            )
            return self._result(TransitionOutcome.REJECTED_TERMINAL, previous, candidate, source)

        if candidate.rank < previous.rank:
            logger.info(
                "STATUS_TRANSITION_REJECTED",
                extra={
                    "reason": "regression",
                    "current": previous.value,
                    "candidate": candidate.value,
                    "source": source.value,
                }
            )
            return self._result(TransitionOutcome.REJECTED_REGRESSION, previous, candidate, source)

        if candidate is previous:
            if source is EventSource.CONFIRMED:
                self._confirmed = candidate
            return self._result(TransitionOutcome.UNCHANGED, previous, candidate, source)

        if (
            candidate.rank == previous.rank
            and source is not EventSource.CONFIRMED
            and self.is_confirmed_rank(previous.rank)
        ):
            logger.info(
                "STATUS_CONFIRMED_WRITE_KEPT",
                extra={
                    "current": previous.value,
                    "candidate": candidate.value,
                    "source": source.value,
                }
            )
            return self._result(TransitionOutcome.UNCHANGED, previous, candidate, source)

        self._status = candidate
        if source is EventSource.CONFIRMED:
            self._confirmed = candidate

        logger.info(
            "STATUS_TRANSITION_APPLIED",
            extra={
                "previous": previous.value,
                "current": candidate.value,
                "source": source.value,
            }
        )
        return self._result(TransitionOutcome.APPLIED, previous, candidate, source)

    def reset(self, status: EmergencyStatus = EmergencyStatus.PENDING) -> None:
        """Start over for a different emergency."""
        self._status = status
        self._confirmed = None

    def _result(
        self,
        outcome: TransitionOutcome,
        previous: EmergencyStatus,
        candidate: EmergencyStatus,
        source: EventSource,
    ) -> TransitionResult:
        return TransitionResult(
            outcome=outcome,
            previous=previous,
            current=self._status,
            candidate=candidate,
            source=source,
        )
