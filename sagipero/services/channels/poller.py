"""Polling loop adapter - the liveness backstop.

While a record is tracked, periodically fetches the authoritative record
and its history and feeds both into the reconciliation engine. Push can
be lost (app backgrounded, socket down); polling still converges.

When the tracked id returns 404 the user's latest record is fetched
instead; if that is a different emergency it is handed to on_fallback (or
adopted directly) rather than ingested against the vanished id.

Stops on its own once the record is terminal or the engine starts
tracking a different id. A fetch already in flight when stop() is called
is still ingested on completion; state-machine monotonicity suppresses
it if stale.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional, Tuple

from sagipero.shared.models import NormalizedEvent
from sagipero.shared.utils import utcnow
from sagipero.services.sync_core import EventNormalizer, Ownership, ReconciliationEngine
from .api_client import EmergencyApiClient
from .config import ChannelConfig
from .errors import NotFoundError, TransportError

logger = logging.getLogger(__name__)

EventSink = Callable[[NormalizedEvent], Any]
# Returns True when the fallback record was taken over and this loop should stop
FallbackHandler = Callable[[NormalizedEvent], bool]


class PollingLoop:
    """Fixed-interval authoritative poll for one tracked record."""

    def __init__(
        self,
        api: EmergencyApiClient,
        engine: ReconciliationEngine,
        config: Optional[ChannelConfig] = None,
        event_sink: Optional[EventSink] = None,
        normalizer: Optional[EventNormalizer] = None,
        clock: Callable[[], datetime] = utcnow,
        on_fallback: Optional[FallbackHandler] = None,
    ):
        """Initialize loop.

        Args:
            api: REST client
            engine: Engine that owns the tracked record
            config: Interval settings
            event_sink: Where record events go; defaults to engine.ingest
            normalizer: Normalizer for poll responses
            clock: Time source for history fetch timestamps
            on_fallback: Receives a "latest" record for a different id after
                the tracked id returned 404. When omitted the loop re-points
                the engine itself if the record is owned.
        """
        self.api = api
        self.engine = engine
        self.config = config or api.config
        self.event_sink = event_sink or engine.ingest
        self.on_fallback = on_fallback
        self.normalizer = normalizer or EventNormalizer()
        self._clock = clock
        self.emergency_id: Optional[str] = engine.emergency_id
        self._stopped = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.tick_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def start(self) -> None:
        """Start polling on the running event loop; no-op if already running."""
        if self.running or self._stopped.is_set():
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(
            "POLLING_STARTED",
            extra={
                "emergency_id": self.emergency_id,
                "interval_seconds": self.config.poll_interval_seconds,
            }
        )

    def stop(self) -> None:
        """Stop polling; safe to call repeatedly."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        logger.info(
            "POLLING_STOPPED",
            extra={"emergency_id": self.emergency_id, "ticks": self.tick_count}
        )

    async def aclose(self) -> None:
        """Stop and wait for the loop task to finish."""
        self.stop()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def should_continue(self) -> bool:
        if self._stopped.is_set() or self.engine.is_terminal:
            return False
        current = self.engine.emergency_id
        if self.emergency_id is None:
            self.emergency_id = current
            return True
        return current == self.emergency_id

    async def tick(self) -> bool:
        """Run one poll iteration.

        Returns:
            True if polling should continue
        """
        if not self.should_continue():
            return False
        self.tick_count += 1

        record, fell_back = await self._fetch_record()
        if record:
            event = self.normalizer.normalize_poll(record)
            if fell_back and event.emergency_id not in (None, self.emergency_id):
                if not self._hand_off(event):
                    return False
            else:
                self.event_sink(event)

        # Adopt an id learned from the first "latest" response
        if self.emergency_id is None:
            self.emergency_id = self.engine.emergency_id

        emergency_id = self.engine.emergency_id
        if emergency_id is not None and emergency_id == self.emergency_id:
            await self._fetch_history(emergency_id)

        return self.should_continue()

    async def _run(self) -> None:
        try:
            while await self.tick():
                try:
                    await asyncio.wait_for(
                        self._stopped.wait(), timeout=self.config.poll_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "POLLING_LOOP_CRASHED",
                extra={
                    "emergency_id": self.emergency_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
        finally:
            if not self._stopped.is_set():
                self.stop()

    def _hand_off(self, event: NormalizedEvent) -> bool:
        """Move to the user's latest record after the tracked one vanished.

        Returns:
            True if this loop keeps polling
        """
        logger.info(
            "POLL_FALLBACK_RECORD_FOUND",
            extra={"emergency_id": self.emergency_id, "fallback_id": event.emergency_id}
        )
        if self.on_fallback is not None:
            if self.on_fallback(event):
                self.stop()
                return False
            return True

        if self.engine.resolver.resolve_record(event) is not Ownership.MINE:
            return True
        # Re-point before track() so observers see a poller already on the new id
        self.emergency_id = event.emergency_id
        self.engine.track(event.emergency_id)
        self.event_sink(event)
        return True

    async def _fetch_record(self) -> Tuple[Optional[dict], bool]:
        """Fetch the tracked record, or the latest one.

        Returns:
            (record, fell_back) where fell_back means the tracked id returned 404
        """
        try:
            if self.emergency_id is None:
                return await self.api.get_latest(), False
            try:
                return await self.api.get_emergency(self.emergency_id), False
            except NotFoundError:
                logger.info(
                    "POLL_RECORD_NOT_FOUND_FALLBACK_LATEST",
                    extra={"emergency_id": self.emergency_id}
                )
                return await self.api.get_latest(), True
        except TransportError as e:
            logger.warning(
                "POLL_TICK_FAILED",
                extra={
                    "emergency_id": self.emergency_id,
                    "stage": "record",
                    "status": e.status,
                    "error": str(e),
                }
            )
            return None, False

    async def _fetch_history(self, emergency_id: str) -> None:
        fetched_at = self._clock()
        try:
            entries = await self.api.get_history(emergency_id)
        except TransportError as e:
            logger.warning(
                "POLL_TICK_FAILED",
                extra={
                    "emergency_id": emergency_id,
                    "stage": "history",
                    "status": e.status,
                    "error": str(e),
                }
            )
            return
        self.engine.merge_history(entries, fetched_at)
