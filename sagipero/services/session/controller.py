"""Session/Lifecycle Controller.

Owns the one active session (user, token, role) and the single set of
channel adapters keyed to the tracked emergency. Adapters are started and
stopped here, never by individual views:

- login creates the engine and installs the push subscription
- the polling loop runs while a non-terminal record is tracked
- the location publisher runs while a responder is en route
- a terminal status, a change of tracked id, closing the view or logout
  stops them (all idempotent)

Local actions go straight to the backend; the engine changes only after
the backend confirms them.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Set

from sagipero.shared.models import (
    EmergencySnapshot,
    EmergencyStatus,
    EventType,
    LocalAction,
    NormalizedEvent,
    Role,
)
from sagipero.shared.utils import redact_id
from sagipero.services.sync_core import (
    EventNormalizer,
    IngestDecision,
    IngestResult,
    Ownership,
    OwnershipResolver,
    ReconciliationEngine,
    SyncConfig,
    TransitionOutcome,
)
from sagipero.services.channels import (
    ActionFailedError,
    ChannelConfig,
    EmergencyApiClient,
    LocationProvider,
    LocationPublisher,
    PollingLoop,
    PushSubscription,
    RealtimeTransport,
    TransportError,
)

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """Process-wide state for the logged-in user."""
    user_id: str
    token: str
    role: Role
    engine: ReconciliationEngine


@dataclass(frozen=True)
class ActionResult:
    """Outcome of a local action, as seen by the user-facing caller.

    success reports the backend write. outcome reports what the confirmed
    write did locally; a rejected outcome means the record was already past
    the action's status and nothing changed.
    """
    success: bool
    snapshot: Optional[EmergencySnapshot] = None
    error: Optional[str] = None
    outcome: Optional[TransitionOutcome] = None

    @property
    def applied_locally(self) -> bool:
        return self.outcome in (TransitionOutcome.APPLIED, TransitionOutcome.UNCHANGED)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
            "error": self.error,
            "outcome": self.outcome.value if self.outcome else None,
        }


class SessionController:
    """Starts and stops channel adapters for the tracked emergency."""

    def __init__(
        self,
        transport: RealtimeTransport,
        api: Optional[EmergencyApiClient] = None,
        location_provider: Optional[LocationProvider] = None,
        channel_config: Optional[ChannelConfig] = None,
        sync_config: Optional[SyncConfig] = None,
    ):
        """Initialize controller.

        Args:
            transport: Realtime event stream (connection owned elsewhere)
            api: REST client; built from channel_config when omitted
            location_provider: Device position source, responder role only
            channel_config: Backend and interval settings
            sync_config: Engine tuning
        """
        self.channel_config = channel_config or ChannelConfig()
        self.sync_config = sync_config or SyncConfig()
        self.transport = transport
        self.api = api or EmergencyApiClient(
            self.channel_config, token_provider=self.current_token,
        )
        self.location_provider = location_provider
        self.normalizer = EventNormalizer()

        self.session: Optional[Session] = None
        self.view_open = False
        self.push: Optional[PushSubscription] = None
        self.poller: Optional[PollingLoop] = None
        self.location: Optional[LocationPublisher] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._tasks: Set[asyncio.Task] = set()

    # Session lifecycle

    def current_token(self) -> Optional[str]:
        return self.session.token if self.session else None

    @property
    def engine(self) -> Optional[ReconciliationEngine]:
        return self.session.engine if self.session else None

    def snapshot(self) -> Optional[EmergencySnapshot]:
        return self.session.engine.snapshot() if self.session else None

    async def login(
        self,
        user_id: str,
        token: str,
        role: Role = Role.RESIDENT,
        emergency_id: Optional[str] = None,
    ) -> Session:
        """Start a session and begin tracking.

        Args:
            user_id: Authenticated user id
            token: Bearer token for the backend
            role: Resident or responder
            emergency_id: Record to track; polling finds the latest if None

        Returns:
            The new session
        """
        if self.session is not None:
            await self.logout()

        self._loop = asyncio.get_running_loop()
        resolver = OwnershipResolver(user_id=user_id, role=role)
        engine = ReconciliationEngine(
            resolver,
            config=self.sync_config,
            normalizer=self.normalizer,
            emergency_id=emergency_id,
        )
        self.session = Session(user_id=user_id, token=token, role=role, engine=engine)
        self._unsubscribe = engine.subscribe(self._on_snapshot)

        self.push = PushSubscription(self.transport, self.submit, self.normalizer)
        self.push.install()
        self.view_open = True
        self._sync_adapters()

        logger.info(
            "SESSION_STARTED",
            extra={
                "user": redact_id(user_id),
                "role": role.value,
                "emergency_id": emergency_id,
            }
        )
        return self.session

    async def logout(self) -> None:
        """Tear down every adapter and clear the session; safe to repeat."""
        if self.session is None:
            return
        user_id = self.session.user_id
        self.view_open = False
        await self._stop_adapters()
        if self.push is not None:
            self.push.uninstall()
            self.push = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self.session = None
        logger.info("SESSION_ENDED", extra={"user": redact_id(user_id)})

    async def track(self, emergency_id: Optional[str]) -> bool:
        """Switch the tracked emergency and restart adapters for it."""
        if self.session is None:
            raise RuntimeError("no active session")
        engine = self.session.engine
        if emergency_id == engine.emergency_id:
            return False
        await self._stop_adapters()
        changed = engine.track(emergency_id)
        self._sync_adapters()
        return changed

    async def close_view(self) -> None:
        """The consuming view was torn down: stop background work."""
        self.view_open = False
        await self._stop_adapters()
        if self.push is not None:
            self.push.uninstall()

    def open_view(self) -> None:
        """The consuming view is back: resume push and polling."""
        if self.session is None:
            return
        self.view_open = True
        if self.push is not None and not self.push.installed:
            self.push.install()
        self._sync_adapters()

    async def aclose(self) -> None:
        await self.logout()
        await self.api.close()

    # Event intake

    def submit(self, event: NormalizedEvent) -> None:
        """Event sink for push callbacks; safe to call from any thread."""
        if self._loop is None or self._on_loop_thread():
            self.ingest(event)
        else:
            self._loop.call_soon_threadsafe(self.ingest, event)

    def ingest(self, event: NormalizedEvent) -> Optional[IngestResult]:
        if self.session is None:
            return None
        result = self.session.engine.ingest(event)
        self._handle_result(result)
        return result

    def _handle_result(self, result: IngestResult) -> None:
        if result.decision is IngestDecision.PENDING_OWNERSHIP and result.fetch_required:
            self._spawn(self._confirm_ownership(result.event.emergency_id))
        elif result.decision is IngestDecision.OTHER_RECORD:
            self._maybe_switch(result.event)

    async def _confirm_ownership(self, emergency_id: str) -> None:
        """One authoritative fetch to decide ownership of parked events."""
        engine = self.engine
        if engine is None:
            return
        try:
            record = await asyncio.wait_for(
                self.api.get_emergency(emergency_id),
                timeout=self.channel_config.request_timeout_seconds,
            )
        except (TransportError, asyncio.TimeoutError) as e:
            logger.warning(
                "OWNERSHIP_FETCH_FAILED",
                extra={"emergency_id": emergency_id, "error": str(e)}
            )
            record = None
        if engine is not self.engine:
            return
        for result in engine.resolve_pending(emergency_id, record):
            self._handle_result(result)

    def _maybe_switch(self, event: NormalizedEvent) -> None:
        engine = self.engine
        if event.kind is not EventType.CREATED or event.emergency_id is None:
            return
        if engine.emergency_id is not None and not engine.is_terminal:
            return
        self._switch_to(event, reason="created")

    def _on_poll_fallback(self, event: NormalizedEvent) -> bool:
        """The tracked id is gone; follow the user's latest record if it is theirs."""
        engine = self.engine
        if engine is None:
            return False
        if engine.resolver.resolve_record(event) is not Ownership.MINE:
            logger.info(
                "POLL_FALLBACK_RECORD_IGNORED",
                extra={"emergency_id": engine.emergency_id, "fallback_id": event.emergency_id}
            )
            return False
        self._switch_to(event, reason="not_found")
        return True

    def _switch_to(self, event: NormalizedEvent, reason: str) -> None:
        logger.info(
            "SESSION_SWITCHING_EMERGENCY",
            extra={
                "previous_id": self.engine.emergency_id,
                "emergency_id": event.emergency_id,
                "reason": reason,
            }
        )

        async def _switch() -> None:
            if await self.track(event.emergency_id):
                self.ingest(event)

        self._spawn(_switch())

    # Local actions

    async def perform(self, action: LocalAction) -> ActionResult:
        """Run a local action; the engine changes only on success."""
        if self.session is None:
            return ActionResult(False, None, "no active session")
        engine = self.session.engine
        emergency_id = engine.emergency_id
        if emergency_id is None:
            return ActionResult(False, engine.snapshot(), "no tracked emergency")

        try:
            response = await self.api.perform(action, emergency_id)
        except TransportError as e:
            error = ActionFailedError(action.value, str(e), e.status)
            logger.warning(
                "LOCAL_ACTION_FAILED",
                extra={
                    "emergency_id": emergency_id,
                    "action": action.value,
                    "status": e.status,
                }
            )
            return ActionResult(False, engine.snapshot(), str(error))

        transition = engine.confirm_local_action(action, response)
        if not transition.accepted:
            logger.warning(
                "LOCAL_ACTION_CONFIRMATION_REJECTED",
                extra={
                    "emergency_id": emergency_id,
                    "action": action.value,
                    "outcome": transition.outcome.value,
                    "status": transition.current.value,
                }
            )
        return ActionResult(True, engine.snapshot(), outcome=transition.outcome)

    async def accept(self) -> ActionResult:
        return await self.perform(LocalAction.ACCEPT)

    async def arrive(self) -> ActionResult:
        return await self.perform(LocalAction.ARRIVE)

    async def resolve(self) -> ActionResult:
        return await self.perform(LocalAction.RESOLVE)

    async def mark_fraud(self) -> ActionResult:
        return await self.perform(LocalAction.MARK_FRAUD)

    def run_action_threadsafe(self, action: LocalAction, timeout: Optional[float] = None) -> ActionResult:
        """Run a local action from a thread other than the event loop's."""
        if self._loop is None:
            return ActionResult(False, None, "no active session")
        future = asyncio.run_coroutine_threadsafe(self.perform(action), self._loop)
        return future.result(timeout)

    # Adapter management

    def _on_snapshot(self, snapshot: EmergencySnapshot) -> None:
        if self._loop is None or self._on_loop_thread():
            self._sync_adapters()
        else:
            self._loop.call_soon_threadsafe(self._sync_adapters)

    def _sync_adapters(self) -> None:
        """Bring running adapters in line with the engine's current state."""
        if self.session is None:
            return
        engine = self.session.engine

        if not self.view_open or engine.is_terminal:
            self._stop_nowait()
            return

        if (
            self.poller is None
            or self.poller.stopped
            or self.poller.emergency_id not in (None, engine.emergency_id)
        ):
            if self.poller is not None:
                self.poller.stop()
            self.poller = PollingLoop(
                self.api,
                engine,
                self.channel_config,
                event_sink=self.ingest,
                normalizer=self.normalizer,
                on_fallback=self._on_poll_fallback,
            )
            self.poller.start()

        en_route = (
            self.session.role is Role.RESPONDER
            and engine.emergency_id is not None
            and EmergencyStatus.ACCEPTED.rank <= engine.status.rank < EmergencyStatus.ARRIVED.rank
        )
        if not en_route or self.location_provider is None:
            if self.location is not None:
                self.location.stop()
                self.location = None
            return
        if (
            self.location is None
            or self.location.stopped
            or self.location.emergency_id != engine.emergency_id
        ):
            if self.location is not None:
                self.location.stop()
            self.location = LocationPublisher(
                engine,
                self.api,
                self.transport,
                self.location_provider,
                self.channel_config,
            )
            self.location.start()

    def _stop_nowait(self) -> None:
        for adapter in (self.poller, self.location):
            if adapter is not None:
                adapter.stop()

    async def _stop_adapters(self) -> None:
        adapters: List[Any] = [a for a in (self.poller, self.location) if a is not None]
        self.poller = None
        self.location = None
        for adapter in adapters:
            await adapter.aclose()

    def _spawn(self, coro) -> None:
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False
