"""Per-profile execution context passed into every core operation.

Holds the Redis connection, the profile namespace and the clock, so the
engine never reaches for module-level state and tests can freeze time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Optional

import redis

from mct_engine.config.settings import KEY_PREFIX, PROFILE_ID, REDIS_URL


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


@dataclass
class TrackerContext:
    r: redis.Redis
    profile_id: str = PROFILE_ID
    clock: Optional[Callable[[], datetime]] = field(default=None, repr=False)

    def key(self, *parts) -> str:
        """Namespaced Redis key, e.g. ``mct:default:streak:att``."""
        return ":".join([KEY_PREFIX, self.profile_id, *(str(p) for p in parts)])

    def now(self) -> datetime:
        # Calendar days follow local wall-clock time, like the user sees them
        return self.clock() if self.clock else datetime.now()

    def today(self) -> date:
        return self.now().date()

    def days_ago(self, n: int) -> date:
        return self.today() - timedelta(days=n)


def get_context(profile_id: str | None = None, r: redis.Redis | None = None) -> TrackerContext:
    """Build a context from configuration (the production default)."""
    return TrackerContext(r=r or _get_redis(), profile_id=profile_id or PROFILE_ID)
