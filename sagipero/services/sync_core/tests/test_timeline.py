"""Tests for TimelineMerger."""
import pytest
from datetime import datetime, timedelta, timezone

from sagipero.shared.models import EventSource, EventType, Location, NormalizedEvent
from sagipero.services.sync_core import SyncConfig, TimelineMerger

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


def push(kind, at=None, **payload):
    return NormalizedEvent(
        source=EventSource.PUSH,
        kind=kind,
        emergency_id="em_1",
        occurred_at=at,
        payload=payload,
    )


def history(kind, at, **payload):
    return NormalizedEvent(
        source=EventSource.HISTORY,
        kind=kind,
        emergency_id="em_1",
        occurred_at=at,
        payload=payload,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def merger(clock):
    return TimelineMerger(SyncConfig(), clock=clock)


def kinds(merger):
    return [entry.event_type for entry in merger.entries]


class TestLiveEvents:
    """Tests for add_live."""

    def test_singleton_not_duplicated(self, merger):
        assert merger.add_live(push(EventType.ARRIVED, T0))
        assert not merger.add_live(push(EventType.ARRIVED, T0))
        assert kinds(merger) == [EventType.ARRIVED]

    def test_singleton_refined_in_place(self, merger):
        merger.add_live(push(EventType.CREATED))
        merger.add_live(push(EventType.ACCEPTED, T0, responderId="r1"))
        changed = merger.add_live(push(EventType.CREATED, T0 - timedelta(minutes=1), note="x"))

        assert changed
        assert kinds(merger) == [EventType.CREATED, EventType.ACCEPTED]
        created = merger.entries[0]
        assert created.occurred_at == T0 - timedelta(minutes=1)
        assert created.payload == {"note": "x"}

    def test_unknown_never_enters(self, merger):
        assert not merger.add_live(push(EventType.UNKNOWN, T0))
        assert merger.entries == ()

    def test_update_events_dedup_by_bucket_and_payload(self, merger):
        assert merger.add_live(push(EventType.UPDATE, T0, note="a"))
        assert not merger.add_live(push(EventType.UPDATE, T0 + timedelta(milliseconds=300), note="a"))
        assert merger.add_live(push(EventType.UPDATE, T0, note="b"))
        assert merger.add_live(push(EventType.UPDATE, T0 + timedelta(seconds=5), note="a"))
        assert len(merger.entries) == 3

    def test_live_locations_capped(self, merger):
        for i in range(5):
            merger.add_live(push(EventType.RESPONDER_LOCATION, T0 + timedelta(seconds=i), lat=i))
        locations = [e for e in merger.entries if e.event_type is EventType.RESPONDER_LOCATION]
        assert len(locations) == 1
        assert locations[0].payload == {"lat": 4}

    def test_location_cap_configurable(self, clock):
        merger = TimelineMerger(SyncConfig(live_location_cap=3), clock=clock)
        for i in range(5):
            merger.add_live(push(EventType.RESPONDER_LOCATION, T0, lat=i))
        assert [e.payload["lat"] for e in merger.entries] == [2, 3, 4]

    def test_redelivered_location_ignored(self, merger):
        assert merger.add_live(push(EventType.RESPONDER_LOCATION, T0, lat=1))
        assert not merger.add_live(push(EventType.RESPONDER_LOCATION, T0, lat=1))


class TestHistoryReplacement:
    """Tests for replace_with_history."""

    def test_history_replaces_live_entries(self, merger, clock):
        merger.add_live(push(EventType.UPDATE, T0, note="live"))
        changed = merger.replace_with_history(
            [history(EventType.CREATED, T0), history(EventType.ACCEPTED, T0)],
            fetched_at=clock(),
        )
        assert changed
        assert kinds(merger) == [EventType.CREATED, EventType.ACCEPTED]
        assert all(e.source is EventSource.HISTORY for e in merger.entries)

    def test_identical_history_is_no_change(self, merger, clock):
        entries = [history(EventType.CREATED, T0)]
        merger.replace_with_history(entries, clock())
        clock.advance(3)
        assert not merger.replace_with_history(entries, clock())

    def test_duplicate_singletons_in_history_collapsed(self, merger, clock):
        merger.replace_with_history(
            [history(EventType.ARRIVED, T0), history(EventType.ARRIVED, T0 + timedelta(seconds=2))],
            clock(),
        )
        assert kinds(merger) == [EventType.ARRIVED]

    def test_singleton_in_history_and_push_yields_one_entry(self, merger, clock):
        merger.replace_with_history([history(EventType.ARRIVED, T0)], clock())
        merger.add_live(push(EventType.ARRIVED, T0 + timedelta(seconds=1)))
        assert kinds(merger) == [EventType.ARRIVED]

    def test_local_confirmation_survives_stale_history(self, merger, clock):
        """A confirmed ACCEPTED is kept while history has not caught up."""
        merger.replace_with_history([history(EventType.CREATED, T0 - timedelta(minutes=2))], clock())
        merger.add_confirmed(EventType.ACCEPTED, {"action": "accept"})
        clock.advance(1)

        merger.replace_with_history(
            [history(EventType.CREATED, T0 - timedelta(minutes=2))], clock(),
        )
        assert kinds(merger) == [EventType.CREATED, EventType.ACCEPTED]

    def test_confirmation_preserved_when_fetch_predates_it(self, merger, clock):
        fetched_at = clock() - timedelta(minutes=5)
        merger.add_confirmed(EventType.ARRIVED, {"action": "arrive"})
        merger.replace_with_history([], fetched_at)
        assert kinds(merger) == [EventType.ARRIVED]

    def test_confirmation_dropped_once_history_has_it(self, merger, clock):
        merger.add_confirmed(EventType.ACCEPTED, {"action": "accept"})
        clock.advance(1)
        merger.replace_with_history([history(EventType.ACCEPTED, T0)], clock())
        assert kinds(merger) == [EventType.ACCEPTED]
        assert merger.entries[0].source is EventSource.HISTORY

        clock.advance(1)
        merger.replace_with_history([], clock())
        assert merger.entries == ()

    def test_confirmation_expires_after_grace(self, merger, clock):
        merger.add_confirmed(EventType.ACCEPTED, {"action": "accept"})
        clock.advance(31)
        merger.replace_with_history([], clock())
        assert merger.entries == ()

    def test_preserved_entry_inserted_in_time_order(self, merger, clock):
        merger.add_confirmed(EventType.ACCEPTED, {"action": "accept"}, occurred_at=T0)
        clock.advance(1)
        merger.replace_with_history(
            [
                history(EventType.CREATED, T0 - timedelta(minutes=1)),
                history(EventType.UPDATE, T0 + timedelta(seconds=30)),
            ],
            clock(),
        )
        assert kinds(merger) == [EventType.CREATED, EventType.ACCEPTED, EventType.UPDATE]

    def test_reset(self, merger):
        merger.add_confirmed(EventType.ACCEPTED, {})
        merger.reset()
        assert merger.entries == ()
