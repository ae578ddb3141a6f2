import pytest

from pricing.errors import NotInitialized, SourceUnavailable, UnsupportedChain
from pricing.models import MicroUsd, Price
from pricing.storage import FacadeState, FileStorage, RedisStorage, StorageFacade, StorageType


def make_price(address, price=1_000_000, chain_id=1):
    return Price(address=address, chain_id=chain_id, price=MicroUsd(price), source="test")


@pytest.fixture
def facade(registry, clock):
    return StorageFacade(registry=registry, clock=clock)


@pytest.mark.asyncio
async def test_operations_before_initialize_raise(facade):
    assert facade.state == FacadeState.UNINITIALIZED
    assert facade.backend_type is None

    with pytest.raises(NotInitialized):
        await facade.get_price(1, "0xabc")
    with pytest.raises(NotInitialized):
        await facade.store_price(1, make_price("0xabc"))
    with pytest.raises(NotInitialized):
        _ = facade.backend


@pytest.mark.asyncio
async def test_file_backend(facade, tmp_path):
    await facade.initialize("file", ttl_seconds=60, backup_dir=tmp_path)

    assert facade.state == FacadeState.READY
    assert facade.backend_type == StorageType.FILE
    assert isinstance(facade.backend, FileStorage)

    await facade.store_price(1, make_price("0xAAbb"))
    assert (await facade.get_price(1, "0xaabb")).price == 1_000_000
    assert (tmp_path / "chain_1.json").exists()


@pytest.mark.asyncio
async def test_reinitialize_same_type_is_noop(facade, tmp_path):
    await facade.initialize(StorageType.FILE, backup_dir=tmp_path)
    backend = facade.backend
    await facade.store_price(1, make_price("0xabc"))

    await facade.initialize(StorageType.FILE, backup_dir=tmp_path)

    assert facade.backend is backend
    assert await facade.get_price(1, "0xabc") is not None


@pytest.mark.asyncio
async def test_unreachable_redis_falls_back_to_file(registry, clock, tmp_path):
    async def unreachable(url, **kwargs):
        raise SourceUnavailable("redis", "connection refused")

    facade = StorageFacade(registry=registry, clock=clock, redis_connect=unreachable)
    await facade.initialize("redis", ttl_seconds=60, backup_dir=tmp_path, redis_url="redis://nowhere:6379")

    assert facade.state == FacadeState.READY
    assert facade.backend_type == StorageType.FILE
    await facade.store_price(1, make_price("0xabc"))
    assert await facade.get_price(1, "0xabc") is not None


@pytest.mark.asyncio
async def test_redis_without_url_falls_back_to_file(facade, tmp_path):
    await facade.initialize("redis", backup_dir=tmp_path)

    assert facade.backend_type == StorageType.FILE


@pytest.mark.asyncio
async def test_redis_backend(registry, clock, fake_redis):
    async def connect(url, **kwargs):
        return RedisStorage(fake_redis, **kwargs)

    facade = StorageFacade(registry=registry, clock=clock, redis_connect=connect)
    await facade.initialize("redis", ttl_seconds=30, redis_url="redis://cache:6379", redis_key_prefix="px")

    assert facade.backend_type == StorageType.REDIS
    await facade.store_price(10, make_price("0xabc", chain_id=10))
    assert await fake_redis.get("px:chain:10:0xabc") is not None


@pytest.mark.asyncio
async def test_switching_backend_closes_previous(registry, clock, fake_redis, tmp_path):
    async def connect(url, **kwargs):
        return RedisStorage(fake_redis, **kwargs)

    facade = StorageFacade(registry=registry, clock=clock, redis_connect=connect)
    await facade.initialize("redis", redis_url="redis://cache:6379")
    await facade.initialize("file", backup_dir=tmp_path)

    assert facade.backend_type == StorageType.FILE
    assert fake_redis.closed


@pytest.mark.asyncio
async def test_invalid_storage_type(facade):
    with pytest.raises(ValueError):
        await facade.initialize("memcached")
    assert facade.state == FacadeState.UNINITIALIZED


@pytest.mark.asyncio
async def test_unsupported_chain_propagates(facade, tmp_path):
    await facade.initialize("file", backup_dir=tmp_path)

    with pytest.raises(UnsupportedChain):
        await facade.list_prices(56)
    assert await facade.get_stats(56) == {}


@pytest.mark.asyncio
async def test_close_resets_state(facade, tmp_path):
    await facade.initialize("file", backup_dir=tmp_path)

    await facade.close()

    assert facade.state == FacadeState.UNINITIALIZED
    with pytest.raises(NotInitialized):
        await facade.get_all_prices()
