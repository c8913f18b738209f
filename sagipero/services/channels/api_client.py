"""REST client for the emergency backend.

Thin aiohttp wrapper over the endpoints the synchronization core consumes:
authoritative record by id and latest-for-user, history, the local
lifecycle actions, and the responder location write.

Failure Handling:
    - Network errors, timeouts, 5xx and 429 are retried with exponential
      backoff and jitter, up to max_retries
    - Other 4xx responses fail immediately
    - Everything surfaces as TransportError/NotFoundError; callers decide
      whether a failure is transient
"""
import asyncio
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

import aiohttp

from sagipero.shared.models import LocalAction, Location
from sagipero.shared.utils import utcnow
from .config import ChannelConfig, normalize_api_base
from .errors import NotFoundError, TransportError

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]


@dataclass(frozen=True)
class ConnectionStatus:
    """Result of a backend health check."""
    is_connected: bool
    backend_url: str
    last_checked: datetime
    response_time_ms: Optional[float] = None
    error: Optional[str] = None


def api_path(path: str) -> str:
    """Ensure a relative endpoint path lives under /api."""
    if path.startswith("http://") or path.startswith("https://"):
        return path
    if not path.startswith("/"):
        path = "/" + path
    if path == "/api" or path.startswith("/api/"):
        return path
    return "/api" + path


class EmergencyApiClient:
    """Async client for the emergency REST endpoints."""

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        token_provider: Optional[TokenProvider] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize client.

        Args:
            config: Channel configuration (base URL, timeouts, retries)
            token_provider: Returns the current bearer token, or None
            session: Pre-built aiohttp session; created lazily otherwise
        """
        self.config = config or ChannelConfig()
        self.api_base = self.config.api_base
        self._token_provider = token_provider or (lambda: None)
        self._session = session
        self._owns_session = session is None

        logger.info(
            "API_CLIENT_INITIALIZED",
            extra={
                "api_base": self.api_base,
                "timeout_seconds": self.config.request_timeout_seconds,
                "max_retries": self.config.max_retries,
            }
        )

    @property
    def session(self) -> aiohttp.ClientSession:
        """Lazy initialization of the HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Content-Type": "application/json"}
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    def set_api_base(self, base: str) -> None:
        self.api_base = normalize_api_base(base)
        logger.info("API_BASE_UPDATED", extra={"api_base": self.api_base})

    # Authoritative reads

    async def get_emergency(self, emergency_id: str, retries: int = 0) -> Dict[str, Any]:
        return await self._request("GET", f"/emergencies/{emergency_id}", retries=retries)

    async def get_latest(self, retries: int = 0) -> Optional[Dict[str, Any]]:
        """Latest emergency for the session user; None when there is none."""
        try:
            data = await self._request("GET", "/emergencies/latest", retries=retries)
        except NotFoundError:
            return None
        return data or None

    async def get_history(self, emergency_id: str, retries: int = 0) -> List[Dict[str, Any]]:
        data = await self._request("GET", f"/emergencies/{emergency_id}/history", retries=retries)
        return data if isinstance(data, list) else []

    # Local actions

    async def perform(self, action: LocalAction, emergency_id: str) -> Dict[str, Any]:
        """Run a lifecycle action and return the updated record."""
        if action is LocalAction.MARK_FRAUD:
            data = await self._request(
                "PUT", f"/emergencies/{emergency_id}/mark-fraud", json={},
            )
        else:
            data = await self._request(
                "POST", f"/emergencies/{action.value}", json={"emergencyId": emergency_id},
            )
        return data if isinstance(data, dict) else {}

    async def accept(self, emergency_id: str) -> Dict[str, Any]:
        return await self.perform(LocalAction.ACCEPT, emergency_id)

    async def arrive(self, emergency_id: str) -> Dict[str, Any]:
        return await self.perform(LocalAction.ARRIVE, emergency_id)

    async def resolve(self, emergency_id: str) -> Dict[str, Any]:
        return await self.perform(LocalAction.RESOLVE, emergency_id)

    async def mark_fraud(self, emergency_id: str) -> Dict[str, Any]:
        return await self.perform(LocalAction.MARK_FRAUD, emergency_id)

    async def post_responder_location(self, emergency_id: str, location: Location) -> None:
        """Fire-and-forget location write; no retries."""
        await self._request(
            "POST",
            "/emergencies/responder/location",
            json={"emergencyId": emergency_id, "location": location.to_dict()},
            retries=0,
        )

    # Connectivity

    async def check_health(self) -> ConnectionStatus:
        """Probe GET /api/health; never raises."""
        start = time.monotonic()
        try:
            await self._request(
                "GET", "/health", retries=0, timeout=self.config.health_timeout_seconds,
            )
            elapsed = (time.monotonic() - start) * 1000
            logger.info(
                "BACKEND_CONNECTION_OK",
                extra={"api_base": self.api_base, "response_time_ms": elapsed}
            )
            return ConnectionStatus(True, self.api_base, utcnow(), elapsed)
        except TransportError as e:
            elapsed = (time.monotonic() - start) * 1000
            logger.warning(
                "BACKEND_CONNECTION_FAILED",
                extra={"api_base": self.api_base, "status": e.status, "error": str(e)}
            )
            return ConnectionStatus(False, self.api_base, utcnow(), elapsed, str(e))

    async def discover_backend(self, candidates: Iterable[str] = ()) -> Optional[Dict[str, Any]]:
        """Try GET /api/config on each candidate host; adopt the first apiBase found.

        Returns:
            {"apiBase": ..., "socketBase": ...} or None if no candidate answered
        """
        hosts: List[str] = []
        for host in [self.api_base, *candidates]:
            normalized = normalize_api_base(host)
            if normalized not in hosts:
                hosts.append(normalized)

        for host in hosts:
            try:
                data = await self._request(
                    "GET",
                    f"{host}/api/config",
                    retries=0,
                    timeout=self.config.discovery_timeout_seconds,
                )
            except TransportError as e:
                logger.info("BACKEND_DISCOVERY_MISS", extra={"host": host, "error": str(e)})
                continue
            if isinstance(data, dict) and data.get("apiBase"):
                self.set_api_base(data["apiBase"])
                return {"apiBase": data["apiBase"], "socketBase": data.get("socketBase")}
        return None

    # Transport

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        retries: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        path = api_path(path)
        url = path if path.startswith("http") else f"{self.api_base}{path}"
        retries = self.config.max_retries if retries is None else retries
        client_timeout = aiohttp.ClientTimeout(
            total=timeout or self.config.request_timeout_seconds
        )

        headers = {}
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        last_error: Optional[TransportError] = None
        for attempt in range(retries + 1):
            try:
                async with self.session.request(
                    method, url, json=json, headers=headers, timeout=client_timeout,
                ) as response:
                    if response.status == 404:
                        raise NotFoundError(f"{method} {path} returned 404")
                    if response.status >= 400:
                        body = await response.text()
                        retryable = response.status >= 500 or response.status == 429
                        last_error = TransportError(
                            f"{method} {path} returned {response.status}: {body[:200]}",
                            status=response.status,
                            retryable=retryable,
                        )
                        if not retryable:
                            raise last_error
                    else:
                        return await self._read_body(response)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = TransportError(
                    f"{method} {path} failed: {type(e).__name__}: {e}",
                    status=None,
                    retryable=True,
                )

            if attempt < retries:
                delay = (
                    self.config.retry_delay_base_seconds * (2 ** attempt)
                    + random.uniform(0, self.config.retry_jitter_seconds)
                )
                logger.warning(
                    "API_REQUEST_RETRY",
                    extra={
                        "method": method,
                        "path": path,
                        "attempt": attempt + 1,
                        "max_retries": retries,
                        "delay_seconds": round(delay, 3),
                        "error": str(last_error),
                    }
                )
                await asyncio.sleep(delay)

        logger.warning(
            "API_REQUEST_FAILED",
            extra={
                "method": method,
                "path": path,
                "status": last_error.status if last_error else None,
                "attempts": retries + 1,
            }
        )
        raise last_error

    @staticmethod
    async def _read_body(response) -> Any:
        if response.status == 204:
            return None
        try:
            return await response.json(content_type=None)
        except ValueError:
            text = await response.text()
            if text:
                logger.warning("API_RESPONSE_NOT_JSON", extra={"length": len(text)})
            return None
