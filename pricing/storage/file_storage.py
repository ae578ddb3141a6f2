"""
File-backed price storage.

A PriceCache plus one JSON snapshot per chain. Snapshots are loaded once at
construction and rewritten wholesale after every mutation of that chain.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Union

from ..chains import DEFAULT_REGISTRY, ChainRegistry
from ..errors import PersistenceWriteFailure
from ..models import Price
from .base import AllPrices, ListedPrices
from .cache import CacheEntry, PriceCache

logger = logging.getLogger(__name__)

DEFAULT_BACKUP_DIR = Path("./data/prices")


def backup_file_name(chain_id: int) -> str:
    return f"chain_{chain_id}.json"


def entry_to_backup(entry: CacheEntry) -> Dict[str, Any]:
    payload = entry.price.to_dict()
    payload["timestamp"] = entry.timestamp
    return payload


def read_backup_file(path: Path, chain_id: int) -> Dict[str, tuple[Price, int]]:
    """
    Parse a chain snapshot into ``{address: (price, timestamp_ms)}``.

    Unreadable files yield an empty result; malformed entries are skipped
    individually.
    """
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Failed to read backup %s: %s", path, str(exc)[:100])
        return {}

    if not isinstance(raw, dict):
        logger.warning("Ignoring backup %s: expected a JSON object", path)
        return {}

    parsed: Dict[str, tuple[Price, int]] = {}
    skipped = 0
    for key, item in raw.items():
        try:
            data = dict(item)
            data.setdefault("address", key)
            price = Price.from_dict(data, chain_id)
            timestamp = int(data["timestamp"])
        except (KeyError, TypeError, ValueError):
            skipped += 1
            continue
        parsed[price.address] = (price, timestamp)

    if skipped:
        logger.warning("Skipped %d malformed entries in %s", skipped, path)
    return parsed


class FileStorage:
    """PriceCache with per-chain JSON snapshots for restart durability."""

    name = "file"

    def __init__(
        self,
        ttl_seconds: int = 60,
        backup_dir: Union[str, Path, None] = None,
        registry: ChainRegistry = DEFAULT_REGISTRY,
        clock: Callable[[], float] = time.time,
    ):
        self._backup_dir = Path(backup_dir) if backup_dir is not None else DEFAULT_BACKUP_DIR
        self._clock = clock
        self._cache = PriceCache(ttl_seconds=ttl_seconds, registry=registry, clock=clock)
        # One writer per chain file
        self._file_locks: Dict[int, threading.Lock] = {
            chain_id: threading.Lock() for chain_id in self._cache.chain_ids
        }
        self._load_backup_data()

    @property
    def cache(self) -> PriceCache:
        return self._cache

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    def backup_path(self, chain_id: int) -> Path:
        return self._backup_dir / backup_file_name(chain_id)

    # =========================================================================
    # Snapshot load / persist
    # =========================================================================

    def _load_backup_data(self) -> None:
        if not self._backup_dir.exists():
            try:
                self._backup_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                logger.warning("Could not create backup dir %s: %s", self._backup_dir, exc)
            return

        ttl = self._cache.ttl
        total_loaded = 0
        for chain_id in self._cache.chain_ids:
            path = self.backup_path(chain_id)
            if not path.exists():
                continue

            now = self._clock()
            loaded = discarded = 0
            for price, timestamp in read_backup_file(path, chain_id).values():
                remaining: Optional[float] = None
                if ttl > 0:
                    remaining = ttl - (now - timestamp / 1000)
                    if remaining <= 0:
                        discarded += 1
                        continue
                    # timestamps ahead of the local clock never extend the TTL
                    remaining = min(remaining, ttl)
                self._cache.insert_entry(chain_id, price, timestamp, remaining)
                loaded += 1

            total_loaded += loaded
            if loaded or discarded:
                logger.info(
                    "Chain %d: restored %d prices from backup (%d expired)",
                    chain_id, loaded, discarded,
                )

        if total_loaded:
            logger.info("Restored %d prices from %s", total_loaded, self._backup_dir)

    def write_snapshot(self, chain_id: int) -> None:
        """Rewrite the chain's backup file; raises PersistenceWriteFailure."""
        lock = self._file_locks[chain_id]
        with lock:
            entries = self._cache.live_entries(chain_id)
            payload = {address: entry_to_backup(entry) for address, entry in entries.items()}
            path = self.backup_path(chain_id)
            tmp_name = None
            try:
                self._backup_dir.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{path.name}.", suffix=".tmp", dir=self._backup_dir
                )
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(payload, fh, indent=2)
                os.replace(tmp_name, path)
            except OSError as exc:
                if tmp_name and os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise PersistenceWriteFailure(chain_id, str(exc).split("\n")[0][:100]) from exc

    def _persist(self, chain_id: int) -> None:
        try:
            self.write_snapshot(chain_id)
        except PersistenceWriteFailure as exc:
            logger.warning(str(exc))

    # =========================================================================
    # StorageBackend contract
    # =========================================================================

    async def store_price(self, chain_id: int, price: Price) -> None:
        await self.store_prices(chain_id, [price])

    async def store_prices(self, chain_id: int, prices: Sequence[Price]) -> None:
        self._cache.store_prices(chain_id, prices)
        self._persist(chain_id)

    async def get_price(self, chain_id: int, address: str) -> Optional[Price]:
        return self._cache.get_price(chain_id, address)

    async def list_prices(self, chain_id: int) -> ListedPrices:
        return self._cache.list_prices(chain_id)

    async def get_all_prices(self) -> AllPrices:
        return self._cache.get_all_prices()

    async def clear_cache(self, chain_id: Optional[int] = None) -> None:
        self._cache.clear_cache(chain_id)
        chain_ids = [chain_id] if chain_id is not None else self._cache.chain_ids
        for cid in chain_ids:
            self._persist(cid)

    async def get_stats(self, chain_id: Optional[int] = None) -> Dict[Any, Any]:
        return self._cache.get_stats(chain_id)

    async def close(self) -> None:
        return None


__all__ = ["FileStorage", "read_backup_file", "backup_file_name", "DEFAULT_BACKUP_DIR"]
