"""
Keyed TTL Store - Expiring key/value memo shared by settlement components.

Callers depend on the KeyedStore protocol only, so the in-process store can be
swapped for a shared one (e.g. Redis) when running several workers.
"""

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from structlog import get_logger

logger = get_logger(__name__)


class KeyedStore(Protocol):
    """Expiring string key/value store."""

    def get(self, key: str) -> str | None:
        """Return the value for key, or None if absent or expired."""
        ...

    def set(self, key: str, value: str, ttl_seconds: float) -> None:
        """Store value under key until ttl_seconds from now."""
        ...

    def delete(self, key: str) -> None:
        """Remove key if present."""
        ...

    def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        ...


@dataclass(frozen=True)
class _Entry:
    value: str
    expires_at: float


class InMemoryTTLStore:
    """
    Process-local KeyedStore with explicit expiry.

    Entries are evicted when read after expiry, on purge_expired(), and
    oldest-first once max_entries is reached.
    """

    def __init__(
        self,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive: {max_entries}")
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: str, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive: {ttl_seconds}")
        self._entries.pop(key, None)
        if len(self._entries) >= self.max_entries:
            self.purge_expired()
        while len(self._entries) >= self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("ttl_store_evicted", key=evicted)
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("ttl_store_purged", removed=len(expired))
        return len(expired)
