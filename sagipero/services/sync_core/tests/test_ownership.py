"""Tests for OwnershipResolver."""
import pytest

from sagipero.shared.models import EventSource, EventType, NormalizedEvent, Role
from sagipero.services.sync_core import Ownership, OwnershipResolver


def make_event(**kwargs):
    kwargs.setdefault("source", EventSource.PUSH)
    kwargs.setdefault("kind", EventType.UPDATE)
    return NormalizedEvent(**kwargs)


@pytest.fixture
def resident():
    return OwnershipResolver(user_id="u1", role=Role.RESIDENT)


@pytest.fixture
def responder():
    return OwnershipResolver(user_id="r1", role=Role.RESPONDER)


class TestResidentOwnership:
    """Resident sessions own what they reported."""

    @pytest.mark.parametrize("field_name", [
        "user_id", "resident_id", "created_by", "nested_user_id", "resolved_for",
    ])
    def test_any_owner_field_match_is_mine(self, resident, field_name):
        event = make_event(emergency_id="em_1", **{field_name: "u1"})
        assert resident.resolve(event) is Ownership.MINE

    def test_match_later_in_chain_wins_over_earlier_mismatch(self, resident):
        event = make_event(emergency_id="em_1", user_id="u9", created_by="u1")
        assert resident.resolve(event) is Ownership.MINE

    def test_all_fields_mismatch_is_not_mine(self, resident):
        event = make_event(emergency_id="em_1", user_id="u2", resident_id="u3")
        assert resident.resolve(event) is Ownership.NOT_MINE

    def test_mismatch_even_when_id_is_tracked(self, resident):
        """Explicit foreign owner beats a matching emergency id."""
        event = make_event(emergency_id="em_1", user_id="u2")
        assert resident.resolve(event, tracked_id="em_1") is Ownership.NOT_MINE

    def test_no_fields_but_tracked_id_is_mine(self, resident):
        event = make_event(emergency_id="em_1")
        assert resident.resolve(event, tracked_id="em_1") is Ownership.MINE

    def test_no_fields_untracked_is_unknown(self, resident):
        event = make_event(emergency_id="em_2")
        assert resident.resolve(event, tracked_id="em_1") is Ownership.UNKNOWN
        assert resident.resolve(event) is Ownership.UNKNOWN

    def test_responder_id_is_not_an_owner_claim(self, resident):
        event = make_event(emergency_id="em_2", responder_id="u1")
        assert resident.resolve(event) is Ownership.UNKNOWN


class TestResponderOwnership:
    """Responder sessions own what they are assigned to."""

    def test_responder_id_match(self, responder):
        event = make_event(emergency_id="em_1", responder_id="r1", user_id="u5")
        assert responder.resolve(event) is Ownership.MINE

    def test_other_responder(self, responder):
        event = make_event(emergency_id="em_1", responder_id="r2")
        assert responder.resolve(event, tracked_id="em_1") is Ownership.NOT_MINE

    def test_resident_fields_ignored(self, responder):
        event = make_event(emergency_id="em_1", user_id="u5")
        assert responder.resolve(event, tracked_id="em_1") is Ownership.MINE


class TestResolveRecord:
    """Authoritative confirmation never returns UNKNOWN."""

    def test_owner_match(self, resident):
        record = make_event(source=EventSource.POLL, emergency_id="em_1", user_id="u1")
        assert resident.resolve_record(record) is Ownership.MINE

    def test_no_owner_is_not_mine(self, resident):
        record = make_event(source=EventSource.POLL, emergency_id="em_1")
        assert resident.resolve_record(record) is Ownership.NOT_MINE


def test_empty_user_id_rejected():
    with pytest.raises(ValueError):
        OwnershipResolver(user_id="")
