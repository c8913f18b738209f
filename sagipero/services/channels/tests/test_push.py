"""Tests for PushSubscription and the in-memory transport."""
import pytest
from unittest.mock import MagicMock

from sagipero.shared.models import EventSource, EventType
from sagipero.services.channels import InMemoryTransport, PushSubscription
from sagipero.services.sync_core import (
    OwnershipResolver,
    PUSH_EVENT_KINDS,
    ReconciliationEngine,
)


@pytest.fixture
def transport():
    return InMemoryTransport()


class TestPushSubscription:
    """Tests for install/uninstall and routing."""

    def test_install_binds_every_event(self, transport):
        subscription = PushSubscription(transport, MagicMock())
        subscription.install()

        assert subscription.installed
        for event_name in PUSH_EVENT_KINDS:
            assert transport.handler_count(event_name) == 1

    def test_payload_normalized_into_sink(self, transport):
        sink = MagicMock()
        PushSubscription(transport, sink).install()

        transport.deliver("emergency:arrived", {"emergencyId": "em_1"})

        event = sink.call_args[0][0]
        assert event.source is EventSource.PUSH
        assert event.kind is EventType.ARRIVED
        assert event.emergency_id == "em_1"

    def test_reinstall_does_not_duplicate_handlers(self, transport):
        sink = MagicMock()
        subscription = PushSubscription(transport, sink)
        subscription.install()
        subscription.install()

        delivered = transport.deliver("emergency:accepted", {"emergencyId": "em_1"})

        assert delivered == 1
        assert sink.call_count == 1

    def test_uninstall_is_idempotent(self, transport):
        sink = MagicMock()
        subscription = PushSubscription(transport, sink)
        subscription.install()
        subscription.uninstall()
        subscription.uninstall()

        transport.deliver("emergency:accepted", {"emergencyId": "em_1"})

        assert not subscription.installed
        sink.assert_not_called()

    def test_none_payload_ignored(self, transport):
        sink = MagicMock()
        PushSubscription(transport, sink).install()
        transport.deliver("emergency:updated", None)
        sink.assert_not_called()

    def test_sink_failure_is_contained(self, transport):
        sink = MagicMock(side_effect=RuntimeError("boom"))
        PushSubscription(transport, sink).install()
        # Must not propagate into the transport's dispatch loop
        transport.deliver("emergency:accepted", {"emergencyId": "em_1"})
        sink.assert_called_once()

    def test_duplicate_delivery_absorbed_by_engine(self, transport):
        """Two subscriptions on one engine still produce one timeline entry."""
        engine = ReconciliationEngine(OwnershipResolver("u1"), emergency_id="em_1")
        PushSubscription(transport, engine.ingest).install()
        PushSubscription(transport, engine.ingest).install()

        transport.deliver("emergency:accepted", {"emergencyId": "em_1"})

        kinds = [entry.event_type for entry in engine.snapshot().timeline]
        assert kinds == [EventType.ACCEPTED]


class TestInMemoryTransport:
    """Tests for the loopback transport."""

    def test_emit_recorded(self, transport):
        transport.emit("responder:location", {"emergencyId": "em_1"})
        assert transport.emitted == [("responder:location", {"emergencyId": "em_1"})]

    def test_emit_disconnected_raises(self):
        transport = InMemoryTransport(connected=False)
        with pytest.raises(ConnectionError):
            transport.emit("responder:location", {})

    def test_delivery_dropped_while_disconnected(self, transport):
        sink = MagicMock()
        PushSubscription(transport, sink).install()
        transport.set_connected(False)
        assert transport.deliver("emergency:accepted", {"emergencyId": "em_1"}) == 0
        sink.assert_not_called()
