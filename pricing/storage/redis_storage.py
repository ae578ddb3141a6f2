"""
Redis-backed price storage.

Each price lives under its own key so expiry is handled natively by Redis
(``SET ... PX ttl``). Durability is delegated to the Redis server; there is
no local snapshot.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..chains import DEFAULT_REGISTRY, ChainRegistry
from ..errors import SourceUnavailable, UnsupportedChain
from ..models import Price, normalize_address
from .base import AllPrices, ListedPrices
from .cache import CacheStats
from .file_storage import backup_file_name, read_backup_file

logger = logging.getLogger(__name__)

MGET_CHUNK = 500


def _encode(price: Price, timestamp: int) -> str:
    payload = price.to_dict()
    payload["timestamp"] = timestamp
    return json.dumps(payload)


def _decode(raw: Optional[str], chain_id: int) -> Optional[Price]:
    if not raw:
        return None
    try:
        return Price.from_dict(json.loads(raw), chain_id)
    except (KeyError, TypeError, ValueError):
        logger.warning("Invalid price payload in chain %d: %.100s", chain_id, raw)
        return None


class RedisStorage:
    """Price storage on a Redis server with native per-key TTL."""

    name = "redis"

    def __init__(
        self,
        client: Any,
        ttl_seconds: int = 60,
        key_prefix: str = "prices",
        registry: ChainRegistry = DEFAULT_REGISTRY,
        clock: Callable[[], float] = time.time,
    ):
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self._client = client
        self._ttl = ttl_seconds
        self._key_prefix = key_prefix
        self._registry = registry
        self._clock = clock
        self._stats: Dict[int, CacheStats] = {chain.id: CacheStats() for chain in registry}

    @classmethod
    async def connect(
        cls,
        redis_url: str,
        ttl_seconds: int = 60,
        key_prefix: str = "prices",
        registry: ChainRegistry = DEFAULT_REGISTRY,
        clock: Callable[[], float] = time.time,
        connect_timeout: float = 5.0,
    ) -> "RedisStorage":
        """Create a client and verify connectivity; raises SourceUnavailable."""
        if not redis_url:
            raise SourceUnavailable("redis", "no redis_url configured")

        client = None
        try:
            client = redis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=connect_timeout,
                socket_timeout=connect_timeout,
            )
            await client.ping()
        except (RedisError, OSError, ValueError) as exc:
            if client is not None:
                await client.aclose()
            raise SourceUnavailable("redis", str(exc)) from exc

        logger.info("Redis storage initialized")
        return cls(client, ttl_seconds=ttl_seconds, key_prefix=key_prefix, registry=registry, clock=clock)

    @property
    def ttl(self) -> int:
        return self._ttl

    def _chain_prefix(self, chain_id: int) -> str:
        return f"{self._key_prefix}:chain:{chain_id}:"

    def _price_key(self, chain_id: int, address: str) -> str:
        return f"{self._chain_prefix(chain_id)}{normalize_address(address)}"

    def _require_chain(self, chain_id: int) -> None:
        if chain_id not in self._registry:
            raise UnsupportedChain(chain_id)

    async def _chain_keys(self, chain_id: int) -> List[str]:
        pattern = f"{self._chain_prefix(chain_id)}*"
        return [key async for key in self._client.scan_iter(match=pattern, count=MGET_CHUNK)]

    async def _write(self, chain_id: int, entries: Sequence[tuple[Price, int, Optional[int]]]) -> None:
        """Write (price, timestamp_ms, ttl_ms) triples in one pipeline."""
        if not entries:
            return
        async with self._client.pipeline(transaction=False) as pipe:
            for price, timestamp, ttl_ms in entries:
                key = self._price_key(chain_id, price.address)
                if ttl_ms is None:
                    pipe.set(key, _encode(price, timestamp))
                else:
                    pipe.set(key, _encode(price, timestamp), px=ttl_ms)
            await pipe.execute()

    # =========================================================================
    # StorageBackend contract
    # =========================================================================

    async def store_price(self, chain_id: int, price: Price) -> None:
        await self.store_prices(chain_id, [price])

    async def store_prices(self, chain_id: int, prices: Sequence[Price]) -> None:
        self._require_chain(chain_id)
        timestamp = int(self._clock() * 1000)
        ttl_ms = self._ttl * 1000 if self._ttl > 0 else None
        entries = []
        for price in prices:
            record = price.normalized()
            if record.chain_id != chain_id:
                record = Price(record.address, chain_id, record.price, record.source)
            entries.append((record, timestamp, ttl_ms))
        await self._write(chain_id, entries)
        logger.debug("Stored %d prices for chain %d in Redis", len(entries), chain_id)

    async def get_price(self, chain_id: int, address: str) -> Optional[Price]:
        self._require_chain(chain_id)
        price = _decode(await self._client.get(self._price_key(chain_id, address)), chain_id)
        stats = self._stats[chain_id]
        if price is None:
            stats.misses += 1
        else:
            stats.hits += 1
        return price

    async def list_prices(self, chain_id: int) -> ListedPrices:
        self._require_chain(chain_id)
        keys = await self._chain_keys(chain_id)
        as_map: Dict[str, Price] = {}
        for start in range(0, len(keys), MGET_CHUNK):
            # Keys may expire between SCAN and MGET; those come back as None.
            values = await self._client.mget(keys[start:start + MGET_CHUNK])
            for raw in values:
                price = _decode(raw, chain_id)
                if price is not None:
                    as_map[price.address] = price
        return ListedPrices(as_map, list(as_map.values()))

    async def get_all_prices(self) -> AllPrices:
        all_prices: AllPrices = {}
        for chain in self._registry:
            as_map = (await self.list_prices(chain.id)).as_map
            if as_map:
                all_prices[chain.id] = as_map
        return all_prices

    async def clear_cache(self, chain_id: Optional[int] = None) -> None:
        if chain_id is not None:
            self._require_chain(chain_id)
        chain_ids = [chain_id] if chain_id is not None else [chain.id for chain in self._registry]
        for cid in chain_ids:
            keys = await self._chain_keys(cid)
            for start in range(0, len(keys), MGET_CHUNK):
                await self._client.delete(*keys[start:start + MGET_CHUNK])
        logger.info("Cleared prices for %s", f"chain {chain_id}" if chain_id is not None else "all chains")

    async def get_stats(self, chain_id: Optional[int] = None) -> Dict[Any, Any]:
        if chain_id is not None:
            stats = self._stats.get(chain_id)
            if stats is None:
                return {}
            try:
                keys = len(await self._chain_keys(chain_id))
            except RedisError as exc:
                logger.warning("Could not count Redis keys for chain %d: %s", chain_id, exc)
                keys = -1
            return stats.to_dict(keys=keys)

        return {chain.id: await self.get_stats(chain.id) for chain in self._registry}

    async def close(self) -> None:
        await self._client.aclose()

    # =========================================================================
    # Migration
    # =========================================================================

    async def load_from_file_backup(self, backup_dir: Union[str, Path]) -> int:
        """
        Copy file-backend snapshots into Redis, preserving remaining TTL.

        Returns the number of prices written.
        """
        backup_dir = Path(backup_dir)
        if not backup_dir.exists():
            logger.warning("Backup directory %s does not exist", backup_dir)
            return 0

        now = self._clock()
        total_loaded = 0
        for chain in self._registry:
            path = backup_dir / backup_file_name(chain.id)
            if not path.exists():
                continue

            entries = []
            for price, timestamp in read_backup_file(path, chain.id).values():
                ttl_ms: Optional[int] = None
                if self._ttl > 0:
                    ttl_ms = int((self._ttl - (now - timestamp / 1000)) * 1000)
                    if ttl_ms <= 0:
                        continue
                    ttl_ms = min(ttl_ms, self._ttl * 1000)
                entries.append((price, timestamp, ttl_ms))

            await self._write(chain.id, entries)
            if entries:
                logger.info("Loaded %d prices for chain %d from backup", len(entries), chain.id)
                total_loaded += len(entries)

        return total_loaded


__all__ = ["RedisStorage"]
