"""
Token Discovery

Enumerates candidate tokens per chain from independent sources and merges
them into one deduplicated list.
"""

from .aggregator import DiscoveryAggregator, DiscoveryReport, SourceResult
from .base import DiscoverySource, deduplicate_tokens, paginate
from .config import DISCOVERY_CONFIGS, ChainDiscoveryConfig, build_aggregator, build_sources
from .onchain import (
    AaveReservesSource,
    CurveFactoryPoolsSource,
    RegistryEnumerationSource,
    RpcClient,
    UniswapV2PairsSource,
)
from .sources import ConfiguredTokensSource, CurveApiSource, TokenListSource
from .yearn import YearnVaultsSource

__all__ = [
    "DiscoveryAggregator",
    "DiscoveryReport",
    "SourceResult",
    "DiscoverySource",
    "deduplicate_tokens",
    "paginate",
    "DISCOVERY_CONFIGS",
    "ChainDiscoveryConfig",
    "build_aggregator",
    "build_sources",
    "AaveReservesSource",
    "CurveFactoryPoolsSource",
    "RegistryEnumerationSource",
    "RpcClient",
    "UniswapV2PairsSource",
    "ConfiguredTokensSource",
    "CurveApiSource",
    "TokenListSource",
    "YearnVaultsSource",
]
