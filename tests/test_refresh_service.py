import pytest
import pytest_asyncio

from pricing.discovery import DiscoveryAggregator
from pricing.models import MicroUsd, Price, TokenInfo
from pricing.services import PriceRefreshService
from pricing.storage import StorageFacade


class StaticSource:
    name = "static"

    def __init__(self, addresses_by_chain):
        self._addresses = addresses_by_chain

    async def discover_tokens(self, chain_id):
        return [TokenInfo(address=a, chain_id=chain_id, source=self.name) for a in self._addresses.get(chain_id, [])]


class TableFetcher:
    def __init__(self, name, table):
        self.name = name
        self._table = table
        self.seen = []

    async def fetch_prices(self, chain_id, tokens):
        self.seen.append([t.address for t in tokens])
        return [
            Price(address=t.address, chain_id=chain_id, price=MicroUsd(self._table[t.address]), source=self.name)
            for t in tokens
            if t.address in self._table
        ]


class BrokenFetcher:
    name = "broken"

    async def fetch_prices(self, chain_id, tokens):
        raise RuntimeError("upstream down")


@pytest_asyncio.fixture
async def storage(registry, clock, tmp_path):
    facade = StorageFacade(registry=registry, clock=clock)
    await facade.initialize("file", ttl_seconds=0, backup_dir=tmp_path)
    yield facade
    await facade.close()


@pytest.mark.asyncio
async def test_refresh_chain_stores_prices(storage):
    aggregator = DiscoveryAggregator({1: [StaticSource({1: ["0xa", "0xb", "0xc"]})]})
    primary = TableFetcher("primary", {"0xa": 1, "0xb": 2})
    fallback = TableFetcher("fallback", {"0xb": 99, "0xc": 3})
    service = PriceRefreshService(aggregator, [primary, fallback], storage)

    result = await service.refresh_chain(1)

    assert result.discovered == 3
    assert result.stored == 3
    assert result.by_fetcher == {"primary": 2, "fallback": 1}
    # fallback only sees what the primary could not price
    assert fallback.seen == [["0xc"]]
    assert (await storage.get_price(1, "0xb")).price == 2
    assert (await storage.get_price(1, "0xc")).source == "fallback"


@pytest.mark.asyncio
async def test_failing_fetcher_is_skipped(storage):
    aggregator = DiscoveryAggregator({1: [StaticSource({1: ["0xa"]})]})
    service = PriceRefreshService(aggregator, [BrokenFetcher(), TableFetcher("backup", {"0xa": 5})], storage)

    result = await service.refresh_chain(1)

    assert result.failed_fetchers == ["broken"]
    assert result.stored == 1


@pytest.mark.asyncio
async def test_no_tokens_stores_nothing(storage):
    service = PriceRefreshService(DiscoveryAggregator({}), [TableFetcher("t", {})], storage)

    result = await service.refresh_chain(10)

    assert result.discovered == 0
    assert result.stored == 0
    assert await storage.get_all_prices() == {}


@pytest.mark.asyncio
async def test_refresh_all_isolates_chain_failures(storage):
    # chain 56 is not in the test registry, so storing there fails
    aggregator = DiscoveryAggregator({
        1: [StaticSource({1: ["0xa"]})],
        56: [StaticSource({56: ["0xa"]})],
    })
    service = PriceRefreshService(aggregator, [TableFetcher("t", {"0xa": 7})], storage)

    results = await service.refresh_all()

    by_chain = {r.chain_id: r for r in results}
    assert by_chain[1].stored == 1 and by_chain[1].error is None
    assert "56" in by_chain[56].error
    assert by_chain[56].to_dict()["chainId"] == 56
