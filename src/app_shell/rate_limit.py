import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from threading import Lock
from typing import Protocol

from src.rules.models import RateLimitWindow


class TimePort(Protocol):
    """Protocol for time operations (enables testing with deterministic time)."""

    def now_utc(self) -> datetime:
        """Return current UTC time."""
        ...


class SystemTimeAdapter:
    """Production time adapter using system clock."""

    def now_utc(self) -> datetime:
        return datetime.now(UTC)


class HitStorePort(Protocol):
    """Sliding-window hit log."""

    def hit(
        self,
        key: str,
        window_seconds: int,
        limit: int,
        now_utc: datetime,
    ) -> tuple[bool, datetime | None]:
        """Record a hit if under the limit. Returns (allowed, oldest_hit_in_window)."""
        ...


class InMemoryHitStore:
    """
    Process-local hit log.

    Only correct for a single process; use SQLiteRateLimitStore when
    several instances serve the same endpoints.
    """

    def __init__(self) -> None:
        self._history: dict[str, list[datetime]] = {}
        self._lock = Lock()

    def hit(
        self,
        key: str,
        window_seconds: int,
        limit: int,
        now_utc: datetime,
    ) -> tuple[bool, datetime | None]:
        cutoff = now_utc - timedelta(seconds=window_seconds)
        with self._lock:
            recent = [t for t in self._history.get(key, []) if t > cutoff]
            if len(recent) >= limit:
                self._history[key] = recent
                return False, recent[0] if recent else None

            recent.append(now_utc)
            self._history[key] = recent
            return True, None


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: int = 0


class RateLimiter:
    def __init__(
        self,
        store: HitStorePort | None = None,
        time_port: TimePort | None = None,
    ):
        self._store = store if store is not None else InMemoryHitStore()
        self._time = time_port if time_port is not None else SystemTimeAdapter()

    def check(self, key: str, window: int, limit: int) -> RateLimitDecision:
        """
        Check if request is allowed.
        If allowed, records the attempt.
        If denied, reports how long until the oldest hit leaves the window.
        """
        if limit <= 0:
            return RateLimitDecision(allowed=False, retry_after_seconds=window)

        now = self._time.now_utc()
        allowed, oldest = self._store.hit(key, window, limit, now)
        if allowed:
            return RateLimitDecision(allowed=True)

        retry_after = window
        if oldest is not None:
            remaining = (oldest + timedelta(seconds=window) - now).total_seconds()
            retry_after = max(1, math.ceil(remaining))
        return RateLimitDecision(allowed=False, retry_after_seconds=retry_after)

    def allow_request(self, key: str, window: int, limit: int) -> bool:
        return self.check(key, window, limit).allowed

    def check_manual_trigger(self, client: str, rules: RateLimitWindow) -> RateLimitDecision:
        return self.check(f"manual_publish:{client}", rules.window_seconds, rules.max_requests)
