"""Channel adapter configuration.

Backend location, request timeouts and the intervals of the polling
loop and the responder location publisher.
"""
import os
import re
from dataclasses import dataclass

DEFAULT_API_BASE = "http://localhost:8080"


def normalize_api_base(raw: str) -> str:
    """Strip trailing slashes and a trailing /api; endpoint paths add /api."""
    base = (raw or DEFAULT_API_BASE).strip().rstrip("/")
    return re.sub(r"/api$", "", base)


@dataclass(frozen=True)
class ChannelConfig:
    """Transport settings for the REST client and background adapters."""

    api_base: str = DEFAULT_API_BASE

    # Bounded per-request timeout; a timeout is a transient failure
    request_timeout_seconds: float = 15.0
    health_timeout_seconds: float = 10.0
    discovery_timeout_seconds: float = 3.0

    # Retry with exponential backoff for network errors, 5xx and 429
    max_retries: int = 3
    retry_delay_base_seconds: float = 1.0
    retry_jitter_seconds: float = 1.0

    # Background adapter intervals
    poll_interval_seconds: float = 3.0
    location_interval_seconds: float = 10.0

    def __post_init__(self):
        object.__setattr__(self, "api_base", normalize_api_base(self.api_base))
        for name in (
            "request_timeout_seconds",
            "health_timeout_seconds",
            "discovery_timeout_seconds",
            "poll_interval_seconds",
            "location_interval_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.retry_delay_base_seconds < 0 or self.retry_jitter_seconds < 0:
            raise ValueError("retry delays must be >= 0")

    @classmethod
    def from_env(cls) -> "ChannelConfig":
        """Create config from environment variables.

        Environment variables:
            API_BASE: Backend host (default http://localhost:8080)
            API_TIMEOUT_SECONDS: Per-request timeout (default 15)
            API_MAX_RETRIES: Retries for transient failures (default 3)
            POLL_INTERVAL_SECONDS: Polling interval (default 3)
            LOCATION_INTERVAL_SECONDS: Location sampling interval (default 10)
        """
        return cls(
            api_base=os.getenv("API_BASE", DEFAULT_API_BASE),
            request_timeout_seconds=float(os.getenv("API_TIMEOUT_SECONDS", "15")),
            max_retries=int(os.getenv("API_MAX_RETRIES", "3")),
            poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "3")),
            location_interval_seconds=float(os.getenv("LOCATION_INTERVAL_SECONDS", "10")),
        )
