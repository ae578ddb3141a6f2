import threading

import pytest

from pricing.errors import UnsupportedChain
from pricing.models import MicroUsd, Price
from pricing.storage.base import ListedPrices
from pricing.storage.cache import PriceCache


def make_price(address, price=1_000_000, chain_id=1, source="test"):
    return Price(address=address, chain_id=chain_id, price=MicroUsd(price), source=source)


@pytest.fixture
def cache(registry, clock):
    return PriceCache(ttl_seconds=5, registry=registry, clock=clock)


class TestStoreAndGet:

    def test_lookup_is_case_insensitive(self, cache):
        cache.store_price(1, make_price("0xAAbb"))

        price = cache.get_price(1, "0xaabb")
        assert price is not None
        assert price.address == "0xaabb"
        assert price.price == 1_000_000
        assert cache.get_price(1, "0xAABB") == price
        assert cache.list_prices(1).as_map == {"0xaabb": price}

    def test_last_write_wins(self, cache):
        cache.store_price(1, make_price("0xabc", 1))
        cache.store_price(1, make_price("0xABC", 2, source="other"))

        price = cache.get_price(1, "0xabc")
        assert price.price == 2
        assert price.source == "other"
        assert len(cache.list_prices(1).as_list) == 1

    def test_chains_are_isolated(self, cache):
        cache.store_price(1, make_price("0xabc"))

        assert cache.get_price(10, "0xabc") is None
        assert cache.list_prices(10).is_empty
        assert not cache.list_prices(1).is_empty

    def test_unknown_chain_raises(self, cache):
        with pytest.raises(UnsupportedChain):
            cache.store_price(999, make_price("0xabc", chain_id=999))
        with pytest.raises(UnsupportedChain):
            cache.get_price(999, "0xabc")
        with pytest.raises(UnsupportedChain):
            cache.list_prices(999)

    def test_store_prices_batch(self, cache):
        cache.store_prices(10, [make_price("0x1", chain_id=10), make_price("0x2", chain_id=10)])

        listed = cache.list_prices(10)
        assert set(listed.as_map) == {"0x1", "0x2"}
        assert len(listed.as_list) == 2
        assert not listed.is_empty
        assert ListedPrices.empty().is_empty


class TestExpiry:

    def test_entry_expires_after_ttl(self, cache, clock):
        cache.store_price(1, make_price("0xabc"))

        clock.advance(4)
        assert cache.get_price(1, "0xabc") is not None

        clock.advance(2)
        assert cache.get_price(1, "0xabc") is None
        assert cache.list_prices(1).is_empty

    def test_zero_ttl_never_expires(self, registry, clock):
        cache = PriceCache(ttl_seconds=0, registry=registry, clock=clock)
        cache.store_price(1, make_price("0xabc"))

        clock.advance(10 * 365 * 24 * 3600)
        assert cache.get_price(1, "0xabc") is not None
        assert cache.check_period is None
        assert cache.remaining_ttl(1, "0xabc") is None

    def test_expired_entries_hidden_from_listings(self, cache, clock):
        cache.store_price(1, make_price("0xold"))
        clock.advance(3)
        cache.store_price(1, make_price("0xnew"))
        clock.advance(3)

        assert set(cache.list_prices(1).as_map) == {"0xnew"}

    def test_sweep_runs_after_check_period(self, cache, clock):
        cache.store_price(1, make_price("0xabc"))
        clock.advance(11)

        # Any write past 2 * ttl triggers the sweep for that chain.
        cache.store_price(1, make_price("0xdef"))
        assert cache.get_stats(1)["keys"] == 1
        assert cache.get_stats(1)["expired"] == 1

    def test_purge_expired(self, cache, clock):
        cache.store_prices(1, [make_price("0x1"), make_price("0x2")])
        clock.advance(6)

        assert cache.purge_expired() == 2
        assert cache.get_stats(1)["keys"] == 0

    def test_insert_entry_keeps_timestamp_and_remaining_ttl(self, cache, clock):
        cache.insert_entry(1, make_price("0xABC"), timestamp=123, remaining_ttl=2)

        entry = cache.get_entry(1, "0xabc")
        assert entry.timestamp == 123
        assert cache.remaining_ttl(1, "0xabc") == pytest.approx(2)

        clock.advance(3)
        assert cache.get_price(1, "0xabc") is None


class TestAggregates:

    def test_get_all_prices_omits_empty_chains(self, cache):
        cache.store_price(1, make_price("0xabc"))
        cache.store_price(42161, make_price("0xdef", chain_id=42161))

        all_prices = cache.get_all_prices()
        assert set(all_prices) == {1, 42161}
        assert set(all_prices[1]) == {"0xabc"}

    def test_get_all_prices_empty(self, cache):
        assert cache.get_all_prices() == {}

    def test_clear_single_chain(self, cache):
        cache.store_price(1, make_price("0xabc"))
        cache.store_price(10, make_price("0xabc", chain_id=10))

        cache.clear_cache(1)

        assert cache.get_price(1, "0xabc") is None
        assert cache.get_price(10, "0xabc") is not None

    def test_clear_all(self, cache):
        cache.store_price(1, make_price("0xabc"))
        cache.store_price(10, make_price("0xabc", chain_id=10))

        cache.clear_cache()

        assert cache.get_all_prices() == {}


class TestStats:

    def test_hits_and_misses(self, cache):
        cache.store_price(1, make_price("0xabc"))
        cache.get_price(1, "0xabc")
        cache.get_price(1, "0xabc")
        cache.get_price(1, "0xmissing")

        stats = cache.get_stats(1)
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["keys"] == 1

    def test_unknown_chain_stats_empty(self, cache):
        assert cache.get_stats(999) == {}

    def test_all_stats_keyed_by_chain(self, cache):
        assert set(cache.get_stats()) == {1, 10, 42161}


def test_concurrent_writers_and_readers(registry):
    cache = PriceCache(ttl_seconds=0, registry=registry)
    writers, readers, per_writer = 8, 4, 200
    errors = []

    def write(worker):
        for i in range(per_writer):
            cache.store_price(1, make_price(f"0x{worker:02x}{i:04x}", price=i))

    def read():
        try:
            for _ in range(per_writer):
                listed = cache.list_prices(1)
                assert len(listed.as_map) == len(listed.as_list)
                cache.get_all_prices()
        except Exception as exc:  # pragma: no cover - surfaced by the assert below
            errors.append(exc)

    threads = [threading.Thread(target=write, args=(w,)) for w in range(writers)]
    threads += [threading.Thread(target=read) for _ in range(readers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(cache.list_prices(1).as_map) == writers * per_writer
