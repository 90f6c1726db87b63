"""
Account state caching for trader backends.

This module provides a read-through TTL cache over the two account queries
every decision cycle repeats:
- Balance snapshot (wallet, available, unrealized profit)
- Open position snapshots

Each entry is guarded by its own reader/writer lock so a slow positions
refresh never blocks balance readers. Entries are not invalidated when the
trader itself opens or closes a position: a snapshot may lag local writes
by up to one TTL. Callers that need fresh state after a write can call
invalidate().
"""

import time
from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, TypeVar
from loguru import logger

from .locks import ReadWriteLock
from .models import BalanceSnapshot, PositionSnapshot

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 15.0


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """
    Cached value with the time it was fetched.

    Attributes:
        value: Cached payload
        fetched_at: Clock reading at fetch time (seconds)
        ttl: Lifetime in seconds

    Examples:
        >>> entry = CacheEntry(value=42, fetched_at=100.0, ttl=15.0)
        >>> entry.is_valid(110.0)
        True
        >>> entry.is_valid(115.0)
        False
    """

    value: T
    fetched_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.fetched_at < self.ttl


class _CachedQuery(Generic[T]):
    """One read-through slot: entry plus its lock."""

    def __init__(self, name: str, ttl: float, clock: Callable[[], float]):
        self.name = name
        self._ttl = ttl
        self._clock = clock
        self._lock = ReadWriteLock()
        self._entry: Optional[CacheEntry[T]] = None

    def peek(self) -> Optional[T]:
        with self._lock.read():
            entry = self._entry
        if entry is not None and entry.is_valid(self._clock()):
            return entry.value
        return None

    def get(self, fetch: Callable[[], T]) -> T:
        cached = self.peek()
        if cached is not None:
            logger.debug(f"Using cached {self.name}")
            return cached

        with self._lock.write():
            # Another thread may have refreshed while we waited for the lock
            entry = self._entry
            if entry is not None and entry.is_valid(self._clock()):
                return entry.value

            logger.debug(f"Cache expired, fetching {self.name} from venue")
            value = fetch()
            self._entry = CacheEntry(value=value, fetched_at=self._clock(), ttl=self._ttl)
            return value

    def clear(self) -> None:
        with self._lock.write():
            self._entry = None


class AccountStateStore:
    """
    TTL read-through cache for balance and position snapshots.

    One instance belongs to one trader; instances share nothing. Failed
    fetches propagate to the caller and leave the previous entry untouched.

    Attributes:
        ttl: Entry lifetime in seconds

    Examples:
        >>> store = AccountStateStore(ttl=15.0)
        >>> balance = store.get_balance(fetch_balance)   # hits the venue
        >>> balance = store.get_balance(fetch_balance)   # served from cache
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize an empty store.

        Args:
            ttl: Entry lifetime in seconds. Defaults to 15.
            clock: Monotonic clock in seconds, injectable for tests.

        Raises:
            ValueError: If ttl is negative.
        """
        if ttl < 0:
            raise ValueError(f"ttl must be non-negative, got {ttl}")

        self.ttl = ttl
        self._balance: _CachedQuery[BalanceSnapshot] = _CachedQuery("balance", ttl, clock)
        self._positions: _CachedQuery[List[PositionSnapshot]] = _CachedQuery(
            "positions", ttl, clock
        )

    def get_balance(self, fetch: Callable[[], BalanceSnapshot]) -> BalanceSnapshot:
        """
        Return the cached balance, calling fetch when the entry is stale.

        Args:
            fetch: Zero-argument callable querying the venue.

        Returns:
            BalanceSnapshot: Cached or freshly fetched balance.
        """
        return self._balance.get(fetch)

    def get_positions(
        self,
        fetch: Callable[[], List[PositionSnapshot]]
    ) -> List[PositionSnapshot]:
        """
        Return cached positions, calling fetch when the entry is stale.

        Args:
            fetch: Zero-argument callable querying the venue.

        Returns:
            List[PositionSnapshot]: Copy of the cached list.
        """
        return list(self._positions.get(fetch))

    def peek_positions(self) -> Optional[List[PositionSnapshot]]:
        """Return cached positions only if still valid, never fetching."""
        cached = self._positions.peek()
        return list(cached) if cached is not None else None

    def invalidate(self) -> None:
        """Drop both entries so the next read goes to the venue."""
        self._balance.clear()
        self._positions.clear()
        logger.debug("Account state cache invalidated")
