import httpx
import pytest

from pricing.config import Settings
from pricing.discovery import (
    AaveReservesSource,
    ChainDiscoveryConfig,
    ConfiguredTokensSource,
    CurveApiSource,
    CurveFactoryPoolsSource,
    TokenListSource,
    UniswapV2PairsSource,
    YearnVaultsSource,
    build_aggregator,
    build_sources,
)
from pricing.errors import SourceUnavailable

USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
DAI = "0x6B175474E89094C44Da98b954EedeAC495271d0F"
POOL = "0x" + "11" * 20


def mock_client(routes):
    """AsyncClient answering from a {url: response-or-exception} table."""

    def handler(request):
        target = routes.get(str(request.url))
        if target is None:
            return httpx.Response(404)
        if isinstance(target, Exception):
            raise target
        if isinstance(target, httpx.Response):
            return target
        return httpx.Response(200, json=target)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_configured_tokens_are_lowercased():
    source = ConfiguredTokensSource({1: [USDC, DAI]})

    tokens = await source.discover_tokens(1)

    assert [t.address for t in tokens] == [USDC.lower(), DAI.lower()]
    assert all(t.source == "configured" for t in tokens)
    assert await source.discover_tokens(10) == []


class TestTokenListSource:

    @pytest.mark.asyncio
    async def test_parses_standard_list_and_filters_chain(self):
        payload = {"tokens": [
            {"chainId": 1, "address": USDC, "symbol": "USDC", "name": "USD Coin", "decimals": 6},
            {"chainId": 10, "address": DAI, "symbol": "DAI", "decimals": 18},
            {"chainId": 1, "address": "0xnotanaddress", "symbol": "BAD", "decimals": 18},
            {"chainId": 1, "address": DAI, "decimals": 18},
        ]}
        client = mock_client({"https://lists.example/uni": payload})
        source = TokenListSource({1: [("Uniswap", "https://lists.example/uni")]}, client)

        tokens = await source.discover_tokens(1)

        assert len(tokens) == 1
        assert tokens[0].address == USDC.lower()
        assert tokens[0].symbol == "USDC"
        assert tokens[0].decimals == 6

    @pytest.mark.asyncio
    async def test_address_keyed_map(self):
        payload = {USDC: {"address": USDC, "symbol": "USDC", "decimals": "6"}}
        client = mock_client({"https://tokens.example/1": payload})
        source = TokenListSource({1: [("1inch", "https://tokens.example/1")]}, client)

        tokens = await source.discover_tokens(1)

        assert [t.name for t in tokens] == ["USDC"]

    @pytest.mark.asyncio
    async def test_one_failing_list_is_skipped(self):
        client = mock_client({
            "https://lists.example/good": [{"address": DAI, "symbol": "DAI", "decimals": 18}],
            "https://lists.example/bad": httpx.Response(500),
        })
        source = TokenListSource(
            {1: [("bad", "https://lists.example/bad"), ("good", "https://lists.example/good")]}, client
        )

        tokens = await source.discover_tokens(1)

        assert [t.address for t in tokens] == [DAI.lower()]

    @pytest.mark.asyncio
    async def test_all_lists_failing_raises(self):
        client = mock_client({"https://lists.example/down": httpx.ConnectError("refused")})
        source = TokenListSource({1: [("down", "https://lists.example/down")]}, client)

        with pytest.raises(SourceUnavailable):
            await source.discover_tokens(1)


class TestCurveApiSource:

    @pytest.mark.asyncio
    async def test_collects_lp_tokens_and_coins(self):
        payload = {"success": True, "data": {"poolData": [{
            "address": POOL,
            "lpTokenAddress": POOL,
            "symbol": "3Crv",
            "name": "Curve 3pool",
            "coins": [
                {"address": DAI, "symbol": "DAI", "decimals": "18"},
                {"address": USDC, "symbol": "USDC", "decimals": "6"},
            ],
        }]}}
        client = mock_client({"https://curve.example/pools": payload})
        source = CurveApiSource({1: "https://curve.example/pools"}, client)

        tokens = await source.discover_tokens(1)

        assert [t.address for t in tokens] == [POOL, DAI.lower(), USDC.lower()]
        assert tokens[0].symbol == "3Crv"
        assert tokens[2].decimals == 6

    @pytest.mark.asyncio
    async def test_unexpected_shape_raises(self):
        client = mock_client({"https://curve.example/pools": {"data": {}}})
        source = CurveApiSource({1: "https://curve.example/pools"}, client)

        with pytest.raises(SourceUnavailable):
            await source.discover_tokens(1)

    @pytest.mark.asyncio
    async def test_http_error_propagates(self):
        client = mock_client({"https://curve.example/pools": httpx.Response(502)})
        source = CurveApiSource({1: "https://curve.example/pools"}, client)

        with pytest.raises(httpx.HTTPStatusError):
            await source.discover_tokens(1)


class TestBuildSources:

    def test_order_and_rpc_gating(self):
        config = ChainDiscoveryConfig(
            chain_id=1,
            token_lists=(("1inch", "https://tokens.example/1"),),
            curve_api_url="https://curve.example/pools",
            curve_factory_address=POOL,
            uniswap_v2_factory=POOL,
            aave_v3_pool=POOL,
            extra_tokens=(USDC,),
        )
        settings = Settings(_env_file=None)
        client = httpx.AsyncClient()

        without_rpc = build_sources(config, client, settings, rpc_url_for=lambda _: None)
        with_rpc = build_sources(config, client, settings, rpc_url_for=lambda _: "https://rpc.example")

        assert [s.name for s in without_rpc] == ["tokenlist", "curve-api", "configured"]
        assert [s.name for s in with_rpc] == [
            "tokenlist", "curve-api", "curve-factory", "uniswap-v2", "aave", "configured",
        ]
        assert isinstance(with_rpc[2], CurveFactoryPoolsSource)
        assert isinstance(with_rpc[3], UniswapV2PairsSource)
        assert isinstance(with_rpc[4], AaveReservesSource)

    def test_yearn_runs_first_and_needs_no_rpc(self):
        config = ChainDiscoveryConfig(
            chain_id=1,
            token_lists=(("1inch", "https://tokens.example/1"),),
            yearn_enabled=True,
            yearn_registries=(POOL,),
        )
        settings = Settings(_env_file=None)

        sources = build_sources(config, httpx.AsyncClient(), settings, rpc_url_for=lambda _: None)

        assert [s.name for s in sources] == ["yearn", "tokenlist"]
        assert isinstance(sources[0], YearnVaultsSource)

    def test_settings_override_order(self):
        config = ChainDiscoveryConfig(
            chain_id=10,
            token_lists=(("1inch", "https://tokens.example/10"),),
            extra_tokens=(USDC,),
        )
        settings = Settings(_env_file=None, discovery_sources={10: ["configured", "tokenlist", "bogus"]})

        sources = build_sources(config, httpx.AsyncClient(), settings, rpc_url_for=lambda _: None)

        assert [s.name for s in sources] == ["configured", "tokenlist"]

    def test_build_aggregator_uses_timeout(self):
        settings = Settings(_env_file=None, discovery_timeout_seconds=12)
        configs = {43114: ChainDiscoveryConfig(chain_id=43114, sources=("configured",), extra_tokens=(USDC,))}

        aggregator = build_aggregator(settings, httpx.AsyncClient(), configs, rpc_url_for=lambda _: None)

        assert aggregator.chain_ids == [43114]
        assert [s.name for s in aggregator.sources_for(43114)] == ["configured"]
