"""Tests for the emergency domain models."""
import pytest
from datetime import datetime, timezone

from sagipero.shared.models import (
    EmergencySnapshot,
    EmergencyStatus,
    EventSource,
    EventType,
    LocalAction,
    NormalizedEvent,
    TimelineEntry,
)


class TestEmergencyStatus:
    """Tests for status parsing and ranking."""

    @pytest.mark.parametrize("raw,expected", [
        ("accepted", EmergencyStatus.ACCEPTED),
        (" In Progress ", EmergencyStatus.IN_PROGRESS),
        ("in-progress", EmergencyStatus.IN_PROGRESS),
        ("FRAUD", EmergencyStatus.FRAUD_FLAGGED),
        ("fraud_flagged", EmergencyStatus.FRAUD_FLAGGED),
    ])
    def test_parse_variants(self, raw, expected):
        assert EmergencyStatus.parse(raw) is expected

    @pytest.mark.parametrize("raw", [None, "", "CLOSED", 3])
    def test_parse_unknown(self, raw):
        assert EmergencyStatus.parse(raw) is None

    def test_rank_order(self):
        order = [
            EmergencyStatus.PENDING,
            EmergencyStatus.ASSIGNED,
            EmergencyStatus.ACCEPTED,
            EmergencyStatus.ARRIVED,
            EmergencyStatus.RESOLVED,
        ]
        assert [s.rank for s in order] == sorted(s.rank for s in order)
        assert EmergencyStatus.IN_PROGRESS.rank == EmergencyStatus.ASSIGNED.rank
        assert EmergencyStatus.FRAUD_FLAGGED.rank == EmergencyStatus.RESOLVED.rank

    def test_terminal(self):
        terminal = {s for s in EmergencyStatus if s.is_terminal}
        assert terminal == {EmergencyStatus.RESOLVED, EmergencyStatus.FRAUD_FLAGGED}


class TestLocalAction:
    """Tests for LocalAction mappings."""

    def test_targets(self):
        assert LocalAction.ACCEPT.target_status is EmergencyStatus.ACCEPTED
        assert LocalAction.MARK_FRAUD.target_status is EmergencyStatus.FRAUD_FLAGGED
        assert LocalAction.ARRIVE.event_type is EventType.ARRIVED

    def test_lookup_by_route_name(self):
        assert LocalAction("mark-fraud") is LocalAction.MARK_FRAUD


class TestNormalizedEvent:
    """Tests for derived event properties."""

    def test_payload_not_part_of_equality(self):
        first = NormalizedEvent(EventSource.PUSH, EventType.ARRIVED, payload={"a": 1})
        second = NormalizedEvent(EventSource.PUSH, EventType.ARRIVED, payload={"b": 2})
        assert first == second

    def test_no_candidate_for_location_event(self):
        event = NormalizedEvent(EventSource.PUSH, EventType.RESPONDER_LOCATION)
        assert event.candidate_status is None

    def test_owner_user_id_none_without_claims(self):
        assert NormalizedEvent(EventSource.POLL, EventType.UPDATE).owner_user_id is None


def test_snapshot_to_dict():
    at = datetime(2026, 1, 1, tzinfo=timezone.utc)
    snapshot = EmergencySnapshot(
        emergency_id="em_1",
        status=EmergencyStatus.PENDING,
        responder_location=None,
        last_responder_location_at=None,
        timeline=(TimelineEntry(EventType.CREATED, {}, at, EventSource.HISTORY, at),),
    )
    data = snapshot.to_dict()
    assert data["status"] == "PENDING"
    assert data["responder_location"] is None
    assert data["timeline"] == [{
        "event_type": "CREATED",
        "payload": {},
        "occurred_at": "2026-01-01T00:00:00+00:00",
        "source": "history",
    }]
    assert not snapshot.is_terminal
