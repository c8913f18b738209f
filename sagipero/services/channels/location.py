"""Responder location publisher.

While a responder is en route (ACCEPTED, before ARRIVED), samples the
device position on a fixed interval and sends each sample two ways: a
realtime event and a REST write. Both sends are best-effort and
independent; a failure of one never affects the other or the next sample.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from sagipero.shared.models import EmergencyStatus, Location
from sagipero.services.sync_core import ReconciliationEngine
from .api_client import EmergencyApiClient
from .config import ChannelConfig
from .errors import TransportError
from .transport import RealtimeTransport

logger = logging.getLogger(__name__)

LOCATION_EVENT_NAME = "responder:location"


class LocationProvider(ABC):
    """Source of the device's current position."""

    @abstractmethod
    async def get_position(self) -> Optional[Location]:
        """Return the current position, or None if unavailable."""
        pass


class StaticLocationProvider(LocationProvider):
    """Replays a fixed list of positions; the last one repeats."""

    def __init__(self, positions: List[Location]):
        if not positions:
            raise ValueError("positions must not be empty")
        self._positions = list(positions)
        self._index = 0

    async def get_position(self) -> Optional[Location]:
        position = self._positions[min(self._index, len(self._positions) - 1)]
        self._index += 1
        return position


class LocationPublisher:
    """Periodic position sampler for the responder role."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        api: EmergencyApiClient,
        transport: RealtimeTransport,
        provider: LocationProvider,
        config: Optional[ChannelConfig] = None,
    ):
        self.engine = engine
        self.api = api
        self.transport = transport
        self.provider = provider
        self.config = config or api.config
        self.emergency_id: Optional[str] = engine.emergency_id
        self._stopped = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.samples_sent = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def start(self) -> None:
        """Send one sample immediately, then one per interval."""
        if self.running or self._stopped.is_set():
            return
        if self.emergency_id is None:
            raise ValueError("cannot publish location without a tracked emergency")
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(
            "LOCATION_PUBLISHER_STARTED",
            extra={
                "emergency_id": self.emergency_id,
                "interval_seconds": self.config.location_interval_seconds,
            }
        )

    def stop(self) -> None:
        """Stop sampling; safe to call repeatedly."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        logger.info(
            "LOCATION_PUBLISHER_STOPPED",
            extra={"emergency_id": self.emergency_id, "samples_sent": self.samples_sent}
        )

    async def aclose(self) -> None:
        self.stop()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def should_continue(self) -> bool:
        if self._stopped.is_set():
            return False
        if self.engine.emergency_id != self.emergency_id:
            return False
        status = self.engine.status
        return not status.is_terminal and status.rank < EmergencyStatus.ARRIVED.rank

    async def publish_once(self) -> bool:
        """Sample and send one position.

        Returns:
            True if at least one of the two sends succeeded
        """
        try:
            position = await self.provider.get_position()
        except Exception as e:
            logger.warning(
                "LOCATION_SAMPLE_FAILED",
                extra={"emergency_id": self.emergency_id, "error": str(e)}
            )
            return False
        if position is None:
            return False

        emitted = self._emit(position)
        posted = await self._post(position)
        if emitted or posted:
            self.samples_sent += 1
        return emitted or posted

    async def _run(self) -> None:
        try:
            while self.should_continue():
                await self.publish_once()
                try:
                    await asyncio.wait_for(
                        self._stopped.wait(), timeout=self.config.location_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            if not self._stopped.is_set():
                self.stop()

    def _emit(self, position: Location) -> bool:
        try:
            self.transport.emit(
                LOCATION_EVENT_NAME,
                {"emergencyId": self.emergency_id, "location": position.to_dict()},
            )
            return True
        except Exception as e:
            logger.warning(
                "LOCATION_EMIT_FAILED",
                extra={"emergency_id": self.emergency_id, "error": str(e)}
            )
            return False

    async def _post(self, position: Location) -> bool:
        try:
            await self.api.post_responder_location(self.emergency_id, position)
            return True
        except TransportError as e:
            logger.warning(
                "LOCATION_POST_FAILED",
                extra={
                    "emergency_id": self.emergency_id,
                    "status": e.status,
                    "error": str(e),
                }
            )
            return False
