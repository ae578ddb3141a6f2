"""
Storage facade.

The one storage object handed to collaborators (HTTP handlers, refresh
jobs, CLI). It owns backend selection and hides whether prices live in
local snapshots or in Redis.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Union

from ..chains import DEFAULT_REGISTRY, ChainRegistry
from ..errors import NotInitialized, SourceUnavailable
from ..models import Price
from .base import AllPrices, ListedPrices, StorageBackend
from .file_storage import FileStorage
from .redis_storage import RedisStorage

logger = logging.getLogger(__name__)


class FacadeState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class StorageType(str, Enum):
    FILE = "file"
    REDIS = "redis"


RedisConnector = Callable[..., Awaitable[RedisStorage]]


class StorageFacade:
    """
    Coordinating handle over the active storage backend.

    Construct once per process and pass it to every consumer. Until
    ``initialize`` succeeds every operation raises NotInitialized.
    """

    def __init__(
        self,
        registry: ChainRegistry = DEFAULT_REGISTRY,
        clock: Callable[[], float] = time.time,
        redis_connect: Optional[RedisConnector] = None,
    ):
        self._registry = registry
        self._clock = clock
        self._redis_connect = redis_connect or RedisStorage.connect
        self._backend: Optional[StorageBackend] = None
        self._backend_type: Optional[StorageType] = None
        self._state = FacadeState.UNINITIALIZED
        self._lock = asyncio.Lock()

    @property
    def state(self) -> FacadeState:
        return self._state

    @property
    def backend_type(self) -> Optional[StorageType]:
        return self._backend_type if self._state == FacadeState.READY else None

    @property
    def registry(self) -> ChainRegistry:
        return self._registry

    @property
    def backend(self) -> StorageBackend:
        """Active backend; raises NotInitialized before initialize()."""
        if self._state != FacadeState.READY or self._backend is None:
            raise NotInitialized()
        return self._backend

    async def initialize(
        self,
        storage_type: Union[StorageType, str] = StorageType.FILE,
        ttl_seconds: int = 60,
        backup_dir: Union[str, Path, None] = None,
        *,
        redis_url: str = "",
        redis_key_prefix: str = "prices",
    ) -> "StorageFacade":
        """
        Select and construct a backend.

        Re-initializing with the type already active is a no-op. A redis
        backend that cannot be reached falls back to file storage.
        """
        requested = StorageType(storage_type)

        async with self._lock:
            if self._state == FacadeState.READY and self._backend_type == requested:
                return self

            previous = self._backend
            self._state = FacadeState.INITIALIZING
            try:
                backend, actual = await self._build_backend(
                    requested, ttl_seconds, backup_dir, redis_url, redis_key_prefix
                )
            except BaseException:
                self._state = FacadeState.READY if previous is not None else FacadeState.UNINITIALIZED
                raise

            self._backend = backend
            self._backend_type = actual
            self._state = FacadeState.READY

        if previous is not None and previous is not backend:
            await previous.close()
        return self

    async def _build_backend(
        self,
        requested: StorageType,
        ttl_seconds: int,
        backup_dir: Union[str, Path, None],
        redis_url: str,
        redis_key_prefix: str,
    ) -> tuple[StorageBackend, StorageType]:
        if requested == StorageType.REDIS:
            try:
                backend = await self._redis_connect(
                    redis_url,
                    ttl_seconds=ttl_seconds,
                    key_prefix=redis_key_prefix,
                    registry=self._registry,
                    clock=self._clock,
                )
                logger.info("Using Redis storage for prices")
                return backend, StorageType.REDIS
            except SourceUnavailable as exc:
                logger.error("Failed to initialize Redis storage: %s", exc)
                logger.warning("Falling back to file storage")

        backend = FileStorage(
            ttl_seconds=ttl_seconds,
            backup_dir=backup_dir,
            registry=self._registry,
            clock=self._clock,
        )
        logger.info("Using file storage for prices")
        return backend, StorageType.FILE

    # =========================================================================
    # Delegated operations
    # =========================================================================

    async def store_price(self, chain_id: int, price: Price) -> None:
        await self.backend.store_price(chain_id, price)

    async def store_prices(self, chain_id: int, prices: Sequence[Price]) -> None:
        await self.backend.store_prices(chain_id, list(prices))

    async def get_price(self, chain_id: int, address: str) -> Optional[Price]:
        return await self.backend.get_price(chain_id, address)

    async def list_prices(self, chain_id: int) -> ListedPrices:
        return await self.backend.list_prices(chain_id)

    async def get_all_prices(self) -> AllPrices:
        return await self.backend.get_all_prices()

    async def clear_cache(self, chain_id: Optional[int] = None) -> None:
        await self.backend.clear_cache(chain_id)

    async def get_stats(self, chain_id: Optional[int] = None) -> Dict[Any, Any]:
        return await self.backend.get_stats(chain_id)

    async def close(self) -> None:
        async with self._lock:
            if self._backend is not None:
                await self._backend.close()
            self._backend = None
            self._backend_type = None
            self._state = FacadeState.UNINITIALIZED


__all__ = ["StorageFacade", "StorageType", "FacadeState"]
