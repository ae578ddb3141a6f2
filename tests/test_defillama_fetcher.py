from urllib.parse import unquote

import httpx
import pytest

from pricing.fetchers import DefiLlamaFetcher
from pricing.models import TokenInfo

USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
DAI = "0x6B175474E89094C44Da98b954EedeAC495271d0F"
DEAD = "0x000000000000000000000000000000000000dEaD"


def token(address, chain_id=1):
    return TokenInfo(address=address, chain_id=chain_id, source="test")


def llama_client(body_for, requests=None):
    def handler(request):
        coins = unquote(request.url.path).split("/prices/current/", 1)[1].split(",")
        if requests is not None:
            requests.append(coins)
        return body_for(coins)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_prices_are_exact_micro_dollars():
    def body(coins):
        text = (
            '{"coins": {'
            f'"ethereum:{USDC}": {{"price": 0.999912345678, "symbol": "USDC"}},'
            f'"ethereum:{DAI}": {{"price": 1.0000001, "symbol": "DAI"}}'
            '}}'
        )
        return httpx.Response(200, text=text, headers={"content-type": "application/json"})

    fetcher = DefiLlamaFetcher(llama_client(body))

    prices = await fetcher.fetch_prices(1, [token(USDC), token(DAI)])

    by_address = {p.address: p for p in prices}
    assert by_address[USDC.lower()].price == 999_912
    assert by_address[DAI.lower()].price == 1_000_000
    assert all(p.source == "defillama" for p in prices)


@pytest.mark.asyncio
async def test_unpriced_and_dust_tokens_are_dropped():
    def body(coins):
        return httpx.Response(200, json={"coins": {
            f"ethereum:{USDC.lower()}": {"price": 1},
            f"ethereum:{DAI.lower()}": {"price": 0.0000001},
        }})

    fetcher = DefiLlamaFetcher(llama_client(body))

    prices = await fetcher.fetch_prices(1, [token(USDC), token(DAI), token(DEAD)])

    assert [p.address for p in prices] == [USDC.lower()]


@pytest.mark.asyncio
async def test_requests_are_batched():
    requests = []
    fetcher = DefiLlamaFetcher(llama_client(lambda coins: httpx.Response(200, json={"coins": {}}), requests), batch_size=2)
    tokens = [token("0x" + f"{i:040x}") for i in range(5)]

    await fetcher.fetch_prices(1, tokens)

    assert [len(r) for r in requests] == [2, 2, 1]
    assert requests[0][0] == "ethereum:0x" + "0" * 40


@pytest.mark.asyncio
async def test_failed_chunk_is_skipped():
    calls = []

    def body(coins):
        calls.append(coins)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"coins": {f"optimism:{DAI.lower()}": {"price": 2}}})

    fetcher = DefiLlamaFetcher(llama_client(body), batch_size=1)

    prices = await fetcher.fetch_prices(10, [token(USDC, 10), token(DAI, 10)])

    assert [(p.address, p.price, p.chain_id) for p in prices] == [(DAI.lower(), 2_000_000, 10)]


@pytest.mark.asyncio
async def test_unknown_chain_returns_nothing():
    def body(coins):
        raise AssertionError("no request expected")

    fetcher = DefiLlamaFetcher(llama_client(body))

    assert await fetcher.fetch_prices(999, [token(USDC, 999)]) == []
