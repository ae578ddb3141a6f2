"""
Chain registry.

Static table of supported networks. Built once at import time and never
mutated afterwards; every other component asks the registry whether a
chain ID is known.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional

from .errors import UnsupportedChain


@dataclass(frozen=True)
class ChainConfig:
    """Network identifier and its canonical short name."""
    id: int
    name: str


SUPPORTED_CHAINS: tuple[ChainConfig, ...] = (
    ChainConfig(1, "ethereum"),
    ChainConfig(10, "optimism"),
    ChainConfig(56, "bsc"),
    ChainConfig(100, "xdai"),
    ChainConfig(137, "polygon"),
    ChainConfig(146, "sonic"),
    ChainConfig(250, "fantom"),
    ChainConfig(8453, "base"),
    ChainConfig(42161, "arbitrum"),
    ChainConfig(43114, "avalanche"),
    ChainConfig(747474, "katana"),
)

# Alternative names accepted by resolve_alias()
CHAIN_ALIASES: Dict[str, int] = {
    "mainnet": 1,
    "eth": 1,
    "op": 10,
    "bnb": 56,
    "gnosis": 100,
    "matic": 137,
    "ftm": 250,
    "arb": 42161,
    "avax": 43114,
}


class ChainRegistry:
    """Read-only lookup over a fixed set of ChainConfig entries."""

    def __init__(self, chains: Iterable[ChainConfig] = SUPPORTED_CHAINS):
        by_id: Dict[int, ChainConfig] = {}
        for chain in chains:
            if chain.id in by_id:
                raise ValueError(f"Duplicate chain id {chain.id}")
            by_id[chain.id] = chain
        self._by_id: Mapping[int, ChainConfig] = MappingProxyType(by_id)
        self._by_name: Mapping[str, ChainConfig] = MappingProxyType(
            {chain.name.lower(): chain for chain in by_id.values()}
        )

    def __contains__(self, chain_id: object) -> bool:
        return chain_id in self._by_id

    def __iter__(self) -> Iterator[ChainConfig]:
        return iter(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, chain_id: int) -> Optional[ChainConfig]:
        return self._by_id.get(chain_id)

    def require(self, chain_id: int) -> ChainConfig:
        """Return the chain config or raise UnsupportedChain."""
        chain = self._by_id.get(chain_id)
        if chain is None:
            raise UnsupportedChain(chain_id)
        return chain

    def ids(self) -> List[int]:
        return list(self._by_id.keys())

    def resolve_alias(self, alias: str) -> Optional[ChainConfig]:
        """Resolve a chain name, alias or numeric string to its config."""
        key = alias.strip().lower()
        if key.isdigit():
            return self._by_id.get(int(key))
        chain = self._by_name.get(key)
        if chain is not None:
            return chain
        chain_id = CHAIN_ALIASES.get(key)
        return self._by_id.get(chain_id) if chain_id is not None else None


DEFAULT_REGISTRY = ChainRegistry()


__all__ = ["ChainConfig", "ChainRegistry", "SUPPORTED_CHAINS", "DEFAULT_REGISTRY"]
