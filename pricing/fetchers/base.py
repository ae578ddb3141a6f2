"""Boundary between discovery and storage: turning tokens into prices."""

from __future__ import annotations

from typing import List, Protocol, Sequence, runtime_checkable

from ..models import Price, TokenInfo


@runtime_checkable
class PriceFetcher(Protocol):
    """Prices a set of discovered tokens; tokens it cannot price are omitted."""

    name: str

    async def fetch_prices(self, chain_id: int, tokens: Sequence[TokenInfo]) -> List[Price]: ...
