"""Realtime transport interface.

The socket connection itself (connect, auth, reconnect) belongs to the
session layer's collaborator. Adapters only need to bind handlers to named
events and emit events, so they depend on this interface rather than on a
concrete socket client.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]


class RealtimeTransport(ABC):
    """Named-event stream with at-least-once, unordered delivery."""

    @abstractmethod
    def on(self, event_name: str, handler: EventHandler) -> None:
        """Bind a handler to an event name."""
        pass

    @abstractmethod
    def off(self, event_name: str, handler: EventHandler) -> None:
        """Unbind a previously bound handler; unknown handlers are ignored."""
        pass

    @abstractmethod
    def emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        """Send an event to the server.

        Raises:
            ConnectionError: If the transport is not connected
        """
        pass

    @property
    @abstractmethod
    def connected(self) -> bool:
        pass


class InMemoryTransport(RealtimeTransport):
    """Loopback transport for local development and tests.

    deliver() plays the role of the server pushing an event; emitted
    events are recorded in `emitted`.
    """

    def __init__(self, connected: bool = True):
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._connected = connected
        self.emitted: List[tuple] = []

    @property
    def connected(self) -> bool:
        return self._connected

    def set_connected(self, connected: bool) -> None:
        self._connected = connected

    def on(self, event_name: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_name, []).append(handler)

    def off(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        if not self._connected:
            raise ConnectionError(f"transport not connected, cannot emit {event_name}")
        self.emitted.append((event_name, payload))

    def handler_count(self, event_name: str) -> int:
        return len(self._handlers.get(event_name, []))

    def deliver(self, event_name: str, payload: Any) -> int:
        """Dispatch a server event to bound handlers; returns handler count."""
        if not self._connected:
            logger.info("TRANSPORT_DELIVERY_DROPPED", extra={"event_name": event_name})
            return 0
        handlers = list(self._handlers.get(event_name, []))
        for handler in handlers:
            handler(payload)
        return len(handlers)
