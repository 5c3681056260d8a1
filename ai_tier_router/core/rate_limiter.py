"""
Per-user request rate limiting.

Implements a token bucket per (tier, user) fed by the tier catalog.
Unlimited tiers bypass bucket accounting entirely.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from .catalog import TierCatalog

logger = logging.getLogger(__name__)


@dataclass
class TokenBucket:
    """Continuously refilling bucket of request slots."""
    capacity: float
    refill_per_second: float
    tokens: float
    updated_at: float

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.updated_at)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_per_second)
        self.updated_at = now

    def try_consume(self, now: float, amount: float = 1.0) -> bool:
        self.refill(now)
        if self.tokens >= amount:
            self.tokens -= amount
            return True
        return False


class RateLimiter:
    """Enforces requests-per-minute and tokens-per-request ceilings.

    Calls for the same (tier, user) are serialized by a per-key lock;
    different users never contend beyond a short registry lookup.
    Denials return ``False`` so callers can report them as a
    rate-limited outcome rather than an exception.
    """

    def __init__(self, catalog: TierCatalog, clock: Callable[[], float] = time.monotonic):
        self.catalog = catalog
        self._clock = clock
        self._buckets: Dict[Tuple[str, str], TokenBucket] = {}
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: Tuple[str, str]) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def check_and_consume(self, tier: str, user_id: str) -> bool:
        """Take one request slot for the user if one is available.

        Args:
            tier: Caller's subscription tier
            user_id: Caller identity

        Returns:
            True if the request may proceed
        """
        limit = self.catalog.rate_limit_for(tier).requests_per_minute
        if limit is None:
            return True

        key = (tier, user_id)
        with self._lock_for(key):
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = TokenBucket(
                    capacity=float(limit),
                    refill_per_second=limit / 60.0,
                    tokens=float(limit),
                    updated_at=now,
                )
            allowed = bucket.try_consume(now)

        if not allowed:
            logger.info("Rate limit reached for user %s on tier %s (%d/min)", user_id, tier, limit)
        return allowed

    def check_token_budget(self, tier: str, requested_tokens: int) -> bool:
        """True if a request of this size fits the tier's per-request budget."""
        budget = self.catalog.rate_limit_for(tier).max_tokens_per_request
        if budget is None:
            return True
        return requested_tokens <= budget

    def remaining(self, tier: str, user_id: str) -> Optional[float]:
        """Slots currently available for a user, ``None`` when unlimited."""
        limit = self.catalog.rate_limit_for(tier).requests_per_minute
        if limit is None:
            return None
        key = (tier, user_id)
        with self._lock_for(key):
            bucket = self._buckets.get(key)
            if bucket is None:
                return float(limit)
            bucket.refill(self._clock())
            return bucket.tokens
