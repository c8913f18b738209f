"""Channel adapters around the synchronization core.

Components:
- api_client.py: EmergencyApiClient, aiohttp REST client with retry
- push.py: PushSubscription, realtime events into the engine
- poller.py: PollingLoop, authoritative fetch on an interval
- location.py: LocationPublisher, responder position while en route
- transport.py: RealtimeTransport interface and an in-memory loopback
"""

from .config import ChannelConfig, normalize_api_base
from .errors import ActionFailedError, NotFoundError, SyncError, TransportError
from .transport import InMemoryTransport, RealtimeTransport
from .api_client import ConnectionStatus, EmergencyApiClient
from .push import PushSubscription
from .poller import PollingLoop
from .location import (
    LOCATION_EVENT_NAME,
    LocationProvider,
    LocationPublisher,
    StaticLocationProvider,
)

__all__ = [
    "ChannelConfig",
    "normalize_api_base",
    "SyncError",
    "TransportError",
    "NotFoundError",
    "ActionFailedError",
    "RealtimeTransport",
    "InMemoryTransport",
    "ConnectionStatus",
    "EmergencyApiClient",
    "PushSubscription",
    "PollingLoop",
    "LOCATION_EVENT_NAME",
    "LocationProvider",
    "LocationPublisher",
    "StaticLocationProvider",
]
