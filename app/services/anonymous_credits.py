"""
Anonymous Credit Pool - volatile per-client balances for unauthenticated callers.

Balances live in process memory only. Each client key gets the anonymous
allowance on first sight; entries are evicted least-recently-used once the
pool is full, and expire after a period of inactivity. An evicted or expired
key is granted a fresh allowance when it is seen again.
"""

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from structlog import get_logger

from app.exceptions import InsufficientCreditsError
from app.observability.metrics import metrics

logger = get_logger(__name__)


@dataclass
class _Entry:
    remaining: int
    last_seen: float


class AnonymousCreditPool:
    """
    In-memory credit balances keyed by client identifier.

    Check-and-decrement runs under a single lock, so concurrent reservations
    against one key are serialized and can never overdraw it.

    Usage:
        pool = AnonymousCreditPool(allowance=5)
        remaining = pool.reserve("203.0.113.7", cost=1)
    """

    def __init__(
        self,
        allowance: int,
        max_entries: int = 50_000,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if allowance < 0:
            raise ValueError(f"Allowance cannot be negative: {allowance}")
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive: {max_entries}")
        self.allowance = allowance
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def peek(self, key: str) -> int:
        """Current balance for key, granting the allowance on first sight."""
        with self._lock:
            return self._touch(key).remaining

    def reserve(self, key: str, cost: int) -> int:
        """
        Deduct cost from key's balance and return the new balance.

        Raises:
            InsufficientCreditsError: balance below cost (balance unchanged)
        """
        if cost <= 0:
            raise ValueError(f"Reservation cost must be positive: {cost}")

        with self._lock:
            entry = self._touch(key)
            if entry.remaining < cost:
                raise InsufficientCreditsError(balance=entry.remaining, required=cost)
            entry.remaining -= cost
            remaining = entry.remaining

        logger.info(
            "anonymous_credits_reserved",
            client=key,
            cost=cost,
            remaining=remaining,
        )
        return remaining

    def prune_expired(self) -> int:
        """Drop idle entries past their TTL. Returns the number removed."""
        if self.ttl_seconds is None:
            return 0
        with self._lock:
            return self._prune_expired(self._clock())

    # ========================================================================
    # Private Helper Methods (caller holds the lock)
    # ========================================================================

    def _touch(self, key: str) -> _Entry:
        now = self._clock()
        self._prune_expired(now)

        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry(remaining=self.allowance, last_seen=now)
            self._entries[key] = entry
            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                logger.debug("anonymous_pool_evicted", client=evicted_key)
            metrics.anonymous_pool_entries.set(len(self._entries))
        else:
            entry.last_seen = now
            self._entries.move_to_end(key)
        return entry

    def _prune_expired(self, now: float) -> int:
        if self.ttl_seconds is None:
            return 0
        removed = 0
        # Entries are ordered by last access, so expired ones sit at the front
        while self._entries:
            oldest_key, oldest = next(iter(self._entries.items()))
            if now - oldest.last_seen < self.ttl_seconds:
                break
            del self._entries[oldest_key]
            removed += 1
        if removed:
            metrics.anonymous_pool_entries.set(len(self._entries))
        return removed
