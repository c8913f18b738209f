"""Tests for StatusStateMachine."""
import random

import pytest

from sagipero.shared.models import EmergencyStatus, EventSource
from sagipero.services.sync_core import StatusStateMachine, TransitionOutcome


@pytest.fixture
def machine():
    return StatusStateMachine()


class TestApplyStatus:
    """Tests for rank-monotonic transitions."""

    def test_forward_transition_applied(self, machine):
        result = machine.apply_status(EmergencyStatus.ACCEPTED, EventSource.PUSH)
        assert result.outcome is TransitionOutcome.APPLIED
        assert result.previous is EmergencyStatus.PENDING
        assert machine.status is EmergencyStatus.ACCEPTED

    def test_skipping_stages_allowed(self, machine):
        machine.apply_status(EmergencyStatus.ARRIVED, EventSource.POLL)
        assert machine.status is EmergencyStatus.ARRIVED

    def test_regression_rejected(self, machine):
        machine.apply_status(EmergencyStatus.ACCEPTED, EventSource.PUSH)
        result = machine.apply_status(EmergencyStatus.PENDING, EventSource.POLL)
        assert result.outcome is TransitionOutcome.REJECTED_REGRESSION
        assert not result.accepted
        assert machine.status is EmergencyStatus.ACCEPTED

    def test_same_status_is_idempotent(self, machine):
        machine.apply_status(EmergencyStatus.ACCEPTED, EventSource.PUSH)
        result = machine.apply_status(EmergencyStatus.ACCEPTED, EventSource.POLL)
        assert result.outcome is TransitionOutcome.UNCHANGED
        assert result.accepted
        assert not result.changed

    def test_equal_rank_sibling_applied(self, machine):
        """ASSIGNED and IN_PROGRESS share a rank."""
        machine.apply_status(EmergencyStatus.ASSIGNED, EventSource.PUSH)
        result = machine.apply_status(EmergencyStatus.IN_PROGRESS, EventSource.POLL)
        assert result.outcome is TransitionOutcome.APPLIED
        assert machine.status is EmergencyStatus.IN_PROGRESS

    def test_confirmed_write_keeps_equal_rank(self, machine):
        machine.apply_status(EmergencyStatus.ASSIGNED, EventSource.CONFIRMED)
        result = machine.apply_status(EmergencyStatus.IN_PROGRESS, EventSource.POLL)
        assert result.outcome is TransitionOutcome.UNCHANGED
        assert machine.status is EmergencyStatus.ASSIGNED
        assert machine.confirmed_status is EmergencyStatus.ASSIGNED

    def test_confirmation_lapses_after_progress(self, machine):
        machine.apply_status(EmergencyStatus.ACCEPTED, EventSource.CONFIRMED)
        machine.apply_status(EmergencyStatus.ARRIVED, EventSource.PUSH)
        assert machine.confirmed_status is None


class TestTerminalStates:
    """RESOLVED and FRAUD_FLAGGED block everything but themselves."""

    @pytest.mark.parametrize("terminal", [
        EmergencyStatus.RESOLVED, EmergencyStatus.FRAUD_FLAGGED,
    ])
    def test_terminal_blocks_other_statuses(self, machine, terminal):
        machine.apply_status(terminal, EventSource.POLL)
        for candidate in EmergencyStatus:
            if candidate is terminal:
                continue
            result = machine.apply_status(candidate, EventSource.CONFIRMED)
            assert result.outcome is TransitionOutcome.REJECTED_TERMINAL
        assert machine.status is terminal
        assert machine.is_terminal

    def test_fraud_blocks_later_resolved(self, machine):
        machine.apply_status(EmergencyStatus.FRAUD_FLAGGED, EventSource.PUSH)
        machine.apply_status(EmergencyStatus.RESOLVED, EventSource.POLL)
        assert machine.status is EmergencyStatus.FRAUD_FLAGGED

    def test_terminal_reapplied_is_unchanged(self, machine):
        machine.apply_status(EmergencyStatus.RESOLVED, EventSource.PUSH)
        result = machine.apply_status(EmergencyStatus.RESOLVED, EventSource.POLL)
        assert result.outcome is TransitionOutcome.UNCHANGED

    def test_reset(self, machine):
        machine.apply_status(EmergencyStatus.RESOLVED, EventSource.PUSH)
        machine.reset()
        assert machine.status is EmergencyStatus.PENDING
        assert not machine.is_terminal


def test_rank_never_decreases_under_random_input():
    """Monotonicity over arbitrary interleavings of sources."""
    rng = random.Random(1234)
    statuses = list(EmergencyStatus)
    sources = list(EventSource)
    for _ in range(50):
        machine = StatusStateMachine()
        last_rank = machine.status.rank
        for _ in range(30):
            machine.apply_status(rng.choice(statuses), rng.choice(sources))
            assert machine.status.rank >= last_rank
            last_rank = machine.status.rank
