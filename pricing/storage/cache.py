"""
In-memory price cache.

One isolated store per registered chain, keyed by lowercase token address.
All stores share a single TTL; a TTL of 0 means entries never expire.
Expired entries are dropped lazily on read and by an opportunistic sweep
that runs at most every ``2 * ttl`` seconds.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..chains import DEFAULT_REGISTRY, ChainRegistry
from ..errors import UnsupportedChain
from ..models import Price, normalize_address
from .base import AllPrices, ListedPrices

logger = logging.getLogger(__name__)


def now_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


@dataclass(frozen=True)
class CacheEntry:
    """Price plus its original store time (epoch ms) and absolute expiry."""
    price: Price
    timestamp: int
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    expired: int = 0

    def to_dict(self, keys: int) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "keys": keys,
            "expired": self.expired,
        }


@dataclass
class _ChainStore:
    entries: Dict[str, CacheEntry] = field(default_factory=dict)
    stats: CacheStats = field(default_factory=CacheStats)
    lock: threading.Lock = field(default_factory=threading.Lock)
    last_sweep: float = 0.0


class PriceCache:
    """
    Per-chain TTL cache of the latest price per token.

    Writes are last-write-wins per address. Locks are held only for a single
    key swap or a key-set snapshot, so list_prices() and get_all_prices() are
    per-key consistent but not linearizable across the whole snapshot.
    """

    def __init__(
        self,
        ttl_seconds: int = 60,
        registry: ChainRegistry = DEFAULT_REGISTRY,
        clock: Callable[[], float] = time.time,
    ):
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self._ttl = ttl_seconds
        self._registry = registry
        self._clock = clock
        self._stores: Dict[int, _ChainStore] = {
            chain.id: _ChainStore(last_sweep=clock()) for chain in registry
        }

    @property
    def ttl(self) -> int:
        return self._ttl

    @property
    def check_period(self) -> Optional[float]:
        """Seconds between sweeps, or None when entries never expire."""
        return self._ttl * 2 if self._ttl > 0 else None

    @property
    def chain_ids(self) -> List[int]:
        return list(self._stores.keys())

    def _store(self, chain_id: int) -> _ChainStore:
        store = self._stores.get(chain_id)
        if store is None:
            raise UnsupportedChain(chain_id)
        return store

    def _expiry(self, now: float, ttl_seconds: Optional[float] = None) -> Optional[float]:
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        if self._ttl == 0:
            return None
        return now + ttl

    # =========================================================================
    # Writes
    # =========================================================================

    def store_price(self, chain_id: int, price: Price) -> None:
        self.store_prices(chain_id, [price])

    def store_prices(self, chain_id: int, prices: Iterable[Price]) -> None:
        store = self._store(chain_id)
        now = self._clock()
        stamp = int(now * 1000)
        expires_at = self._expiry(now)

        for price in prices:
            record = price.normalized()
            if record.chain_id != chain_id:
                record = Price(record.address, chain_id, record.price, record.source)
            entry = CacheEntry(price=record, timestamp=stamp, expires_at=expires_at)
            with store.lock:
                store.entries[record.address] = entry

        self._maybe_sweep(chain_id, store, now)

    def insert_entry(
        self,
        chain_id: int,
        price: Price,
        timestamp: int,
        remaining_ttl: Optional[float] = None,
    ) -> None:
        """
        Insert a restored entry keeping its original timestamp.

        ``remaining_ttl`` is the lifetime left in seconds; it is ignored when
        the cache TTL is 0.
        """
        store = self._store(chain_id)
        now = self._clock()
        record = price.normalized()
        entry = CacheEntry(
            price=record,
            timestamp=int(timestamp),
            expires_at=self._expiry(now, remaining_ttl),
        )
        with store.lock:
            store.entries[record.address] = entry

    # =========================================================================
    # Reads
    # =========================================================================

    def get_entry(self, chain_id: int, address: str) -> Optional[CacheEntry]:
        store = self._store(chain_id)
        key = normalize_address(address)
        now = self._clock()

        with store.lock:
            entry = store.entries.get(key)
            if entry is not None and entry.is_expired(now):
                del store.entries[key]
                store.stats.expired += 1
                entry = None
            if entry is None:
                store.stats.misses += 1
            else:
                store.stats.hits += 1
        return entry

    def get_price(self, chain_id: int, address: str) -> Optional[Price]:
        entry = self.get_entry(chain_id, address)
        return entry.price if entry is not None else None

    def remaining_ttl(self, chain_id: int, address: str) -> Optional[float]:
        """Seconds until the entry expires; None if absent or never expiring."""
        store = self._store(chain_id)
        entry = store.entries.get(normalize_address(address))
        if entry is None or entry.expires_at is None:
            return None
        remaining = entry.expires_at - self._clock()
        return remaining if remaining > 0 else None

    def live_entries(self, chain_id: int) -> Dict[str, CacheEntry]:
        """Snapshot of non-expired entries for one chain."""
        store = self._store(chain_id)
        now = self._clock()
        self._maybe_sweep(chain_id, store, now)

        with store.lock:
            keys = list(store.entries.keys())

        live: Dict[str, CacheEntry] = {}
        for key in keys:
            # Entries are immutable and dict.get is atomic, so no torn reads.
            entry = store.entries.get(key)
            if entry is not None and not entry.is_expired(now):
                live[key] = entry
        return live

    def list_prices(self, chain_id: int) -> ListedPrices:
        live = self.live_entries(chain_id)
        as_map = {address: entry.price for address, entry in live.items()}
        return ListedPrices(as_map, list(as_map.values()))

    def get_all_prices(self) -> AllPrices:
        all_prices: AllPrices = {}
        for chain_id in self._stores:
            as_map = self.list_prices(chain_id).as_map
            if as_map:
                all_prices[chain_id] = as_map
        return all_prices

    # =========================================================================
    # Maintenance
    # =========================================================================

    def clear_cache(self, chain_id: Optional[int] = None) -> None:
        targets = [self._store(chain_id)] if chain_id is not None else list(self._stores.values())
        for store in targets:
            with store.lock:
                store.entries.clear()

    def purge_expired(self, chain_id: Optional[int] = None) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        chain_ids = [chain_id] if chain_id is not None else list(self._stores.keys())
        removed = 0
        for cid in chain_ids:
            removed += self._sweep(self._store(cid), now)
        return removed

    def _sweep(self, store: _ChainStore, now: float) -> int:
        with store.lock:
            expired = [key for key, entry in store.entries.items() if entry.is_expired(now)]
            for key in expired:
                del store.entries[key]
            store.stats.expired += len(expired)
            store.last_sweep = now
        return len(expired)

    def _maybe_sweep(self, chain_id: int, store: _ChainStore, now: float) -> None:
        period = self.check_period
        if period is None or now - store.last_sweep < period:
            return
        removed = self._sweep(store, now)
        if removed:
            logger.debug("Swept %d expired prices for chain %d", removed, chain_id)

    def get_stats(self, chain_id: Optional[int] = None) -> Dict[Any, Any]:
        """Hit/miss/key counters; unknown chains report an empty dict."""
        if chain_id is not None:
            store = self._stores.get(chain_id)
            if store is None:
                return {}
            with store.lock:
                return store.stats.to_dict(keys=len(store.entries))

        stats: Dict[Any, Any] = {}
        for cid, store in self._stores.items():
            with store.lock:
                stats[cid] = store.stats.to_dict(keys=len(store.entries))
        return stats


__all__ = ["PriceCache", "CacheEntry", "CacheStats", "now_ms"]
