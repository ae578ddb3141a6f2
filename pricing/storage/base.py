"""Contract shared by every price storage backend."""

from __future__ import annotations

from typing import Any, Dict, List, NamedTuple, Optional, Protocol, Sequence, runtime_checkable

from ..models import Price


class ListedPrices(NamedTuple):
    """Live prices of one chain, keyed by lowercase address and as a list."""
    as_map: Dict[str, Price]
    as_list: List[Price]

    @classmethod
    def empty(cls) -> "ListedPrices":
        return cls({}, [])

    @property
    def is_empty(self) -> bool:
        return not self.as_list


AllPrices = Dict[int, Dict[str, Price]]


@runtime_checkable
class StorageBackend(Protocol):
    """Async storage contract implemented by FileStorage and RedisStorage."""

    name: str

    async def store_price(self, chain_id: int, price: Price) -> None: ...

    async def store_prices(self, chain_id: int, prices: Sequence[Price]) -> None: ...

    async def get_price(self, chain_id: int, address: str) -> Optional[Price]: ...

    async def list_prices(self, chain_id: int) -> ListedPrices: ...

    async def get_all_prices(self) -> AllPrices: ...

    async def clear_cache(self, chain_id: Optional[int] = None) -> None: ...

    async def get_stats(self, chain_id: Optional[int] = None) -> Dict[Any, Any]: ...

    async def close(self) -> None: ...


__all__ = ["ListedPrices", "AllPrices", "StorageBackend"]
