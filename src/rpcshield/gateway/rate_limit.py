"""Fixed-window rate limiting for the RPC gateway.

Each caller identity gets a window of ``limit`` accepted requests. The first
request opens the window; once ``window`` seconds have passed the next
request opens a fresh one with a count of 1. Rejected requests do not count.

Storage sits behind ``RateLimitStore`` so the in-process table can be swapped
for a shared backend. The in-memory store keeps no background timer: expired
entries are swept on access, at most once per sweep interval, which bounds
memory to the identities seen in roughly the last two windows.

The identity key (address plus the tail of the user agent) is a best-effort
throttle. Both parts are caller-controlled, so this is not a security
boundary.
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

USER_AGENT_SUFFIX_LENGTH = 4


@dataclass
class RateLimitEntry:
    """Request counter for one identity within one window."""
    count: int
    window_reset_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.window_reset_at


@dataclass
class RateLimitDecision:
    """Outcome of a rate limit check."""
    allowed: bool
    identity: str
    count: int
    limit: int
    reset_in: float

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    @property
    def retry_after(self) -> int:
        """Whole seconds a rejected caller should wait (at least 1)."""
        return max(1, math.ceil(self.reset_in))


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    """Propagate rate limiting metadata via standard headers."""
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(math.ceil(decision.reset_in)),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.retry_after)
    return headers


def client_identity(
    forwarded_for: Optional[str],
    peer_host: Optional[str],
    user_agent: Optional[str],
) -> str:
    """Build the rate limit key for a caller.

    Args:
        forwarded_for: X-Forwarded-For header (first entry wins)
        peer_host: Socket peer address
        user_agent: User-Agent header

    Returns:
        Key of the form ``"<ip>-<last 4 chars of user agent>"``
    """
    ip = None
    if forwarded_for:
        ip = forwarded_for.split(",")[0].strip() or None
    if ip is None:
        ip = peer_host

    ua_suffix = (user_agent or "")[-USER_AGENT_SUFFIX_LENGTH:]
    return f"{ip or 'unknown'}-{ua_suffix}"


class RateLimitStore(ABC):
    """Storage backend for rate limit counters."""

    @abstractmethod
    async def get(self, identity: str) -> Optional[RateLimitEntry]:
        """Return the current entry for an identity, if any."""
        pass

    @abstractmethod
    async def increment(
        self, identity: str, limit: int, window: float, now: float
    ) -> RateLimitDecision:
        """Atomically check and count one request for an identity.

        Args:
            identity: Caller identity key
            limit: Maximum accepted requests per window
            window: Window length in seconds
            now: Current time in seconds

        Returns:
            RateLimitDecision; a rejected request is not counted
        """
        pass

    @abstractmethod
    async def evict(self, now: float) -> int:
        """Drop entries whose window has elapsed. Returns the number dropped."""
        pass


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store guarded by a mutex.

    The critical section never awaits, so a plain threading lock makes the
    check-then-increment atomic for coroutines and worker threads alike.
    """

    def __init__(self, sweep_interval: Optional[float] = None):
        """Initialize the store.

        Args:
            sweep_interval: Minimum seconds between passive sweeps
                (defaults to the window length of the first check)
        """
        self.sweep_interval = sweep_interval
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._last_sweep: Optional[float] = None

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, identity: str) -> Optional[RateLimitEntry]:
        with self._lock:
            entry = self._entries.get(identity)
            if entry is None:
                return None
            return RateLimitEntry(entry.count, entry.window_reset_at)

    async def increment(
        self, identity: str, limit: int, window: float, now: float
    ) -> RateLimitDecision:
        with self._lock:
            self._maybe_sweep(now, window)

            entry = self._entries.get(identity)
            if entry is None or entry.is_expired(now):
                entry = RateLimitEntry(count=1, window_reset_at=now + window)
                self._entries[identity] = entry
                allowed = True
            elif entry.count >= limit:
                allowed = False
            else:
                entry.count += 1
                allowed = True

            return RateLimitDecision(
                allowed=allowed,
                identity=identity,
                count=entry.count,
                limit=limit,
                reset_in=max(0.0, entry.window_reset_at - now),
            )

    async def evict(self, now: float) -> int:
        with self._lock:
            return self._evict_locked(now)

    def clear(self) -> None:
        """Drop all entries (useful for testing)."""
        with self._lock:
            self._entries.clear()
            self._last_sweep = None

    def _maybe_sweep(self, now: float, window: float) -> None:
        interval = self.sweep_interval if self.sweep_interval is not None else window
        if self._last_sweep is not None and now - self._last_sweep < interval:
            return
        evicted = self._evict_locked(now)
        if evicted:
            logger.debug(f"Evicted {evicted} expired rate limit entries")

    def _evict_locked(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._last_sweep = now
        return len(expired)


class RateLimiter:
    """Fixed-window limiter: ``limit`` requests per identity per ``window`` seconds."""

    def __init__(
        self,
        limit: int,
        window: float,
        store: Optional[RateLimitStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if limit < 1:
            raise ValueError("Rate limit must allow at least one request")
        if window <= 0:
            raise ValueError("Rate limit window must be positive")

        self.limit = limit
        self.window = window
        self.store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock

    async def check(self, identity: str) -> RateLimitDecision:
        """Count a request for an identity and decide whether it may proceed."""
        decision = await self.store.increment(
            identity, self.limit, self.window, self._clock()
        )
        if not decision.allowed:
            logger.warning(
                f"Rate limit exceeded for {identity} "
                f"({decision.count}/{decision.limit}, resets in {decision.reset_in:.1f}s)"
            )
        return decision

    async def status(self, identity: str) -> Optional[RateLimitEntry]:
        """Get the current counter for an identity without counting a request."""
        entry = await self.store.get(identity)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry
