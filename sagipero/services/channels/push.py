"""Push subscription adapter.

Binds the fixed set of lifecycle event names on the realtime transport and
routes every payload through the normalizer into a sink (the session
controller, which forwards to the reconciliation engine).

Delivery is at-least-once and unordered. Re-installing is safe: handlers
are unbound before being bound again, and duplicate deliveries are absorbed
by the engine's idempotence, not here.
"""
import logging
from typing import Any, Callable, Dict, Optional

from sagipero.shared.models import NormalizedEvent
from sagipero.services.sync_core import EventNormalizer, PUSH_EVENT_KINDS
from .transport import EventHandler, RealtimeTransport

logger = logging.getLogger(__name__)

EventSink = Callable[[NormalizedEvent], None]


class PushSubscription:
    """Routes realtime lifecycle events into an event sink."""

    def __init__(
        self,
        transport: RealtimeTransport,
        sink: EventSink,
        normalizer: Optional[EventNormalizer] = None,
    ):
        self.transport = transport
        self.sink = sink
        self.normalizer = normalizer or EventNormalizer()
        self._handlers: Dict[str, EventHandler] = {}

    @property
    def installed(self) -> bool:
        return bool(self._handlers)

    @property
    def event_names(self):
        return tuple(PUSH_EVENT_KINDS.keys())

    def install(self) -> None:
        """Bind handlers for every lifecycle event name."""
        if self._handlers:
            self.uninstall()
        for event_name in self.event_names:
            handler = self._make_handler(event_name)
            self.transport.on(event_name, handler)
            self._handlers[event_name] = handler
        logger.info(
            "PUSH_SUBSCRIPTION_INSTALLED",
            extra={"event_count": len(self._handlers)}
        )

    def uninstall(self) -> None:
        """Unbind all handlers; safe to call repeatedly."""
        if not self._handlers:
            return
        for event_name, handler in self._handlers.items():
            try:
                self.transport.off(event_name, handler)
            except Exception as e:
                logger.warning(
                    "PUSH_UNSUBSCRIBE_FAILED",
                    extra={"event_name": event_name, "error": str(e)}
                )
        self._handlers = {}
        logger.info("PUSH_SUBSCRIPTION_REMOVED")

    def _make_handler(self, event_name: str) -> EventHandler:
        def _handle(payload: Any) -> None:
            if payload is None:
                return
            try:
                event = self.normalizer.normalize_push(event_name, payload)
                self.sink(event)
            except Exception as e:
                logger.error(
                    "PUSH_EVENT_HANDLER_FAILED",
                    extra={
                        "event_name": event_name,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                )
        return _handle
