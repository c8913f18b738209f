"""Synchronization core configuration.

Location policy and timeline limits. The defaults reproduce the observed
behaviour of the mobile client: last processed location wins and only the
newest live location entry is kept between authoritative refreshes.
"""
import os
from dataclasses import dataclass
from typing import FrozenSet

LOCATION_POLICY_LAST_WRITE = "last_write"
LOCATION_POLICY_MAX_TIMESTAMP = "max_timestamp"

LOCATION_POLICIES: FrozenSet[str] = frozenset({
    LOCATION_POLICY_LAST_WRITE,
    LOCATION_POLICY_MAX_TIMESTAMP,
})


@dataclass(frozen=True)
class SyncConfig:
    """Tuning for the reconciliation engine and timeline merger."""

    # How out-of-order responder locations are resolved
    location_policy: str = LOCATION_POLICY_LAST_WRITE

    # Live RESPONDER_LOCATION entries kept between history refreshes
    live_location_cap: int = 1

    # Width of the occurred_at bucket used in dedup keys
    dedup_bucket_seconds: float = 1.0

    # How long a locally confirmed entry survives a history refresh that
    # does not contain it yet
    confirmation_grace_seconds: float = 30.0

    def __post_init__(self):
        if self.location_policy not in LOCATION_POLICIES:
            raise ValueError(
                f"location_policy must be one of {sorted(LOCATION_POLICIES)}, "
                f"got {self.location_policy!r}"
            )
        if self.live_location_cap < 0:
            raise ValueError(f"live_location_cap must be >= 0, got {self.live_location_cap}")
        if self.dedup_bucket_seconds < 0:
            raise ValueError(
                f"dedup_bucket_seconds must be >= 0, got {self.dedup_bucket_seconds}"
            )
        if self.confirmation_grace_seconds < 0:
            raise ValueError(
                "confirmation_grace_seconds must be >= 0, "
                f"got {self.confirmation_grace_seconds}"
            )

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Create config from environment variables.

        Environment variables:
            SYNC_LOCATION_POLICY: last_write (default) or max_timestamp
            SYNC_LIVE_LOCATION_CAP: Live location entries kept (default 1)
            SYNC_DEDUP_BUCKET_SECONDS: Dedup bucket width (default 1)
            SYNC_CONFIRMATION_GRACE_SECONDS: Local confirmation grace (default 30)
        """
        return cls(
            location_policy=os.getenv("SYNC_LOCATION_POLICY", LOCATION_POLICY_LAST_WRITE),
            live_location_cap=int(os.getenv("SYNC_LIVE_LOCATION_CAP", "1")),
            dedup_bucket_seconds=float(os.getenv("SYNC_DEDUP_BUCKET_SECONDS", "1")),
            confirmation_grace_seconds=float(
                os.getenv("SYNC_CONFIRMATION_GRACE_SECONDS", "30")
            ),
        )
