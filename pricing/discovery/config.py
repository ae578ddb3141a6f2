"""
Per-chain discovery configuration.

Which sources run for a chain, and in what order, is plain data. The order
decides which record survives deduplication: earlier sources win.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

from ..config import Settings
from .aggregator import DiscoveryAggregator
from .base import DiscoverySource
from .onchain import AaveReservesSource, CurveFactoryPoolsSource, RpcClient, UniswapV2PairsSource
from .sources import ConfiguredTokensSource, CurveApiSource, TokenListSource
from .yearn import YearnVaultsSource

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_ORDER: Tuple[str, ...] = (
    "yearn",
    "tokenlist",
    "curve-api",
    "curve-factory",
    "uniswap-v2",
    "aave",
    "configured",
)

ONCHAIN_SOURCES = frozenset({"curve-factory", "uniswap-v2", "aave"})


@dataclass(frozen=True)
class ChainDiscoveryConfig:
    chain_id: int
    sources: Tuple[str, ...] = DEFAULT_SOURCE_ORDER
    token_lists: Tuple[Tuple[str, str], ...] = ()
    curve_api_url: Optional[str] = None
    curve_factory_address: Optional[str] = None
    uniswap_v2_factory: Optional[str] = None
    aave_v3_pool: Optional[str] = None
    # Kong covers chains with Yearn deployments; registries are the on-chain fallback
    yearn_enabled: bool = False
    yearn_registries: Tuple[str, ...] = ()
    extra_tokens: Tuple[str, ...] = field(default_factory=tuple)


DISCOVERY_CONFIGS: Dict[int, ChainDiscoveryConfig] = {
    1: ChainDiscoveryConfig(
        chain_id=1,
        token_lists=(
            ("1inch", "https://tokens.1inch.io/v1.2/1"),
            ("Uniswap", "https://gateway.ipfs.io/ipns/tokens.uniswap.org"),
        ),
        curve_api_url="https://api.curve.finance/api/getPools/all/ethereum",
        curve_factory_address="0xB9fC157394Af804a3578134A6585C0dc9cc990d4",
        uniswap_v2_factory="0x5C69bEe701ef814a2B6a3EDD4B1652CB9cc5aA6f",
        aave_v3_pool="0x87870Bca3F3fD6335C3F4ce8392D69350B4fA4E2",
        yearn_enabled=True,
        yearn_registries=(
            "0x50c1a2eA0a861A967D9d0FFE2AE4012c2E053804",
            "0xd40ecF29e001c76Dcc4cC0D9cd50520CE845B038",
            "0xff31A1B020c868F6eA3f61Eb953344920EeCA3af",
        ),
        extra_tokens=(
            "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",  # WETH
            "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",  # USDC
            "0xdAC17F958D2ee523a2206206994597C13D831ec7",  # USDT
            "0x6B175474E89094C44Da98b954EedeAC495271d0F",  # DAI
            "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599",  # WBTC
            "0x0bc529c00C6401aEF6D220BE8C6Ea1667F6Ad93e",  # YFI
            "0x514910771AF9Ca656af840dff83E8264EcF986CA",  # LINK
            "0x7Fc66500c84A76Ad7e9c93437bFc5Ac33E2DDaE9",  # AAVE
            "0x1f9840a85d5aF5bf1D1762F925BDADdC4201F984",  # UNI
        ),
    ),
    10: ChainDiscoveryConfig(
        chain_id=10,
        token_lists=(
            ("Optimism Official", "https://static.optimism.io/optimism.tokenlist.json"),
            ("1inch", "https://tokens.1inch.io/v1.2/10"),
        ),
        uniswap_v2_factory="0x0c3c1c532F1e39EdF36BE9Fe0bE1410313E074Bf",
        aave_v3_pool="0x794a61358D6845594F94dc1DB02A252b5b4814aD",
        yearn_enabled=True,
        yearn_registries=("0x79286Dd38C9017E5423073bAc11F53357Fc5C128",),
        extra_tokens=(
            "0x4200000000000000000000000000000000000006",  # WETH
            "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85",  # USDC
            "0x94b008aA00579c1307B0EF2c499aD98a8ce58e58",  # USDT
            "0xDA10009cBd5D07dd0CeCc66161FC93D7c9000da1",  # DAI
            "0x4200000000000000000000000000000000000042",  # OP
        ),
    ),
    56: ChainDiscoveryConfig(
        chain_id=56,
        sources=("tokenlist", "configured"),
        token_lists=(("1inch", "https://tokens.1inch.io/v1.2/56"),),
        extra_tokens=(
            "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",  # WBNB
            "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d",  # USDC
            "0x55d398326f99059fF775485246999027B3197955",  # USDT
        ),
    ),
    100: ChainDiscoveryConfig(
        chain_id=100,
        token_lists=(
            ("Honeyswap", "https://tokens.honeyswap.org"),
            ("1inch", "https://tokens.1inch.io/v1.2/100"),
        ),
        aave_v3_pool="0xb50201558B00496A145fE76f7424749556E326D8",
        extra_tokens=(
            "0xe91D153E0b41518A2Ce8Dd3D7944Fa863463a97d",  # WXDAI
            "0x6A023CCd1ff6F2045C3309768eAd9E68F978f6e1",  # WETH
            "0xDDAfbb505ad214D7b80b1f830fcCc89B60fb7A83",  # USDC
        ),
    ),
    137: ChainDiscoveryConfig(
        chain_id=137,
        token_lists=(
            ("Polygon Official", "https://api-polygon-tokens.polygon.technology/tokenlists/default.tokenlist.json"),
            ("1inch", "https://tokens.1inch.io/v1.2/137"),
        ),
        curve_api_url="https://api.curve.finance/api/getPools/all/polygon",
        uniswap_v2_factory="0x9E5A52F57B3038F1B8EeE45Df28e0A7564B8aB05",
        aave_v3_pool="0x794a61358D6845594F94dc1DB02A252b5b4814aD",
        yearn_enabled=True,
        yearn_registries=("0x32bF3dc86E278F17D6449f88A9d30385106319Dc",),
        extra_tokens=(
            "0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270",  # WMATIC
            "0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619",  # WETH
            "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",  # USDC
            "0xc2132D05D31c914a87C6611C10748AEb04B58e8F",  # USDT
        ),
    ),
    250: ChainDiscoveryConfig(
        chain_id=250,
        token_lists=(("1inch", "https://tokens.1inch.io/v1.2/250"),),
        curve_api_url="https://api.curve.finance/api/getPools/all/fantom",
        yearn_enabled=True,
        yearn_registries=("0x727fe1759430df13655ddb0731dE0D0FDE929b04",),
        extra_tokens=(
            "0x21be370D5312f44cB42ce377BC9b8a0cEF1A4C83",  # WFTM
            "0x04068DA6C83AFCFA0e13ba15A6696662335D5B75",  # USDC
        ),
    ),
    8453: ChainDiscoveryConfig(
        chain_id=8453,
        token_lists=(("1inch", "https://tokens.1inch.io/v1.2/8453"),),
        uniswap_v2_factory="0x8909Dc15e40173Ff4699343b6eB8132c65e18eC6",
        aave_v3_pool="0xA238Dd80C259a72e81d7e4664a9801593F98d1c5",
        yearn_enabled=True,
        extra_tokens=(
            "0x4200000000000000000000000000000000000006",  # WETH
            "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",  # USDC
            "0x50c5725949A6F0c72E6C4a641F24049A917DB0Cb",  # DAI
        ),
    ),
    42161: ChainDiscoveryConfig(
        chain_id=42161,
        token_lists=(
            ("Arbitrum Bridge", "https://bridge.arbitrum.io/token-list-42161.json"),
            ("1inch", "https://tokens.1inch.io/v1.2/42161"),
        ),
        curve_api_url="https://api.curve.finance/api/getPools/all/arbitrum",
        curve_factory_address="0x0c0e5f2fF0ff18a3be9b835635039256dC4B4963",
        uniswap_v2_factory="0xf1D7CC64Fb4452F05c498126312eBE29f30Fbcf9",
        aave_v3_pool="0x794a61358D6845594F94dc1DB02A252b5b4814aD",
        yearn_enabled=True,
        yearn_registries=("0x3199437193625DCcD6F9C9e98BDf93582200Eb1f",),
        extra_tokens=(
            "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",  # WETH
            "0xaf88d065e77c8cC2239327C5EDb3A432268e5831",  # USDC
            "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9",  # USDT
            "0x912CE59144191C1204E64559FE8253a0e49E6548",  # ARB
        ),
    ),
    43114: ChainDiscoveryConfig(
        chain_id=43114,
        sources=("configured",),
        extra_tokens=(
            "0xB31f66AA3C1e785363F0875A1B74E27b85FD66c7",  # WAVAX
            "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E",  # USDC
        ),
    ),
}


def _onchain_source(
    name: str,
    config: ChainDiscoveryConfig,
    rpc: RpcClient,
    settings: Settings,
) -> Optional[DiscoverySource]:
    if name == "curve-factory" and config.curve_factory_address:
        return CurveFactoryPoolsSource(
            config.chain_id, rpc, config.curve_factory_address,
            batch_size=settings.discovery_batch_size, max_batches=settings.discovery_max_batches,
        )
    if name == "uniswap-v2" and config.uniswap_v2_factory:
        return UniswapV2PairsSource(
            config.chain_id, rpc, config.uniswap_v2_factory,
            batch_size=settings.discovery_batch_size, max_batches=settings.discovery_max_batches,
        )
    if name == "aave" and config.aave_v3_pool:
        return AaveReservesSource(config.chain_id, rpc, config.aave_v3_pool)
    return None


def build_sources(
    config: ChainDiscoveryConfig,
    client: httpx.AsyncClient,
    settings: Settings,
    rpc_url_for: Optional[Callable[[int], Optional[str]]] = None,
) -> List[DiscoverySource]:
    """Instantiate the ordered sources for one chain."""
    rpc_lookup = rpc_url_for or settings.rpc_url_for
    order: Sequence[str] = settings.discovery_sources.get(config.chain_id) or config.sources
    rpc_url = rpc_lookup(config.chain_id)
    rpc = RpcClient(rpc_url, client, timeout_s=settings.request_timeout_seconds) if rpc_url else None

    sources: List[DiscoverySource] = []
    for name in order:
        if name in ONCHAIN_SOURCES:
            if rpc is None:
                logger.warning(
                    "Chain %d: no RPC URL configured (RPC_URI_FOR_%d), skipping %s",
                    config.chain_id, config.chain_id, name,
                )
                continue
            source = _onchain_source(name, config, rpc, settings)
        elif name == "yearn" and config.yearn_enabled:
            source = YearnVaultsSource(
                config.chain_id, client, rpc=rpc,
                registries=config.yearn_registries if rpc else (),
                request_timeout=settings.request_timeout_seconds,
                batch_size=settings.discovery_batch_size,
            )
        elif name == "tokenlist" and config.token_lists:
            source = TokenListSource({config.chain_id: config.token_lists}, client)
        elif name == "curve-api" and config.curve_api_url:
            source = CurveApiSource({config.chain_id: config.curve_api_url}, client)
        elif name == "configured" and config.extra_tokens:
            source = ConfiguredTokensSource({config.chain_id: config.extra_tokens})
        elif name in DEFAULT_SOURCE_ORDER:
            source = None
        else:
            logger.warning("Chain %d: unknown discovery source %r", config.chain_id, name)
            source = None

        if source is not None:
            sources.append(source)
    return sources


def build_aggregator(
    settings: Settings,
    client: httpx.AsyncClient,
    configs: Mapping[int, ChainDiscoveryConfig] = DISCOVERY_CONFIGS,
    rpc_url_for: Optional[Callable[[int], Optional[str]]] = None,
) -> DiscoveryAggregator:
    sources_by_chain = {
        chain_id: build_sources(config, client, settings, rpc_url_for)
        for chain_id, config in configs.items()
    }
    return DiscoveryAggregator(sources_by_chain, timeout_s=settings.discovery_timeout_seconds)


__all__ = [
    "ChainDiscoveryConfig",
    "DISCOVERY_CONFIGS",
    "DEFAULT_SOURCE_ORDER",
    "build_sources",
    "build_aggregator",
]
