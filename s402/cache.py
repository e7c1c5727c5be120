"""
Server-side credit cache.

Maps (payment_type, client) to the last credits derived from the ledger so
that not every request needs a ledger round trip. Entries go stale after
cache_timeout seconds no matter how far in the future the credits expire,
which bounds how long a revoked payment (e.g. an unstaked delegation) keeps
granting access.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Any, Callable, Dict, Optional, Tuple

from .models import CachedCredit, ClientCredits, PaymentType

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TIMEOUT = 300  # seconds

CacheKey = Tuple[PaymentType, str]


def cache_key(payment_type: PaymentType, client: str) -> CacheKey:
    """Build the cache key for a client on one payment rail."""
    return (PaymentType(payment_type), client)


class CreditCache:
    """Thread-safe TTL cache of client credits."""

    def __init__(
        self,
        cache_timeout: float = DEFAULT_CACHE_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        if cache_timeout <= 0:
            raise ValueError("cache_timeout must be greater than 0")
        self.cache_timeout = cache_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[CacheKey, CachedCredit] = {}

    def _is_stale(self, entry: CachedCredit, now: float) -> bool:
        return now - entry.last_checked > self.cache_timeout

    def get(self, key: CacheKey) -> Optional[CachedCredit]:
        """
        Get cached credits.

        Returns:
            The cached entry with time_remaining measured from now, or None
            if missing or older than cache_timeout.
        """
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        if self._is_stale(entry, now):
            return None
        return replace(entry, time_remaining=max(0.0, entry.expires_at - now))

    def set(self, key: CacheKey, credits: ClientCredits) -> CachedCredit:
        """Store credits for a key, replacing any previous entry."""
        entry = CachedCredit(
            time_remaining=credits.time_remaining,
            expires_at=credits.expires_at,
            last_transaction=credits.last_transaction,
            last_checked=self._clock(),
        )
        with self._lock:
            self._entries[key] = entry
        return entry

    def invalidate(self, key: CacheKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """
        Remove entries whose credits expired or whose check is stale.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            dead = [
                key
                for key, entry in self._entries.items()
                if entry.expires_at <= now or self._is_stale(entry, now)
            ]
            for key in dead:
                del self._entries[key]
        if dead:
            logger.debug("Credit cache cleanup removed %d entries", len(dead))
        return len(dead)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            keys = list(self._entries.keys())
        return {
            "size": len(keys),
            "entries": [f"{payment_type.value}:{client}" for payment_type, client in keys],
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_default_cache: Optional[CreditCache] = None
_default_cache_lock = threading.Lock()


def get_credit_cache() -> CreditCache:
    """Get the process-wide default cache, creating it on first use."""
    global _default_cache
    with _default_cache_lock:
        if _default_cache is None:
            _default_cache = CreditCache()
        return _default_cache


def reset_credit_cache() -> None:
    """Drop the process-wide default cache (useful for testing)."""
    global _default_cache
    with _default_cache_lock:
        _default_cache = None
