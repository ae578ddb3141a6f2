"""Shared fixtures: a controllable clock and an in-memory Redis stand-in."""

import fnmatch

import pytest

from pricing.chains import ChainConfig, ChainRegistry


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePipeline:
    def __init__(self, redis: "FakeRedis"):
        self._redis = redis
        self._ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self._ops.clear()
        return False

    def set(self, key, value, ex=None, px=None):
        self._ops.append((key, value, ex, px))
        return self

    async def execute(self):
        results = []
        for key, value, ex, px in self._ops:
            results.append(await self._redis.set(key, value, ex=ex, px=px))
        self._ops.clear()
        return results


class FakeRedis:
    """Subset of redis.asyncio.Redis used by RedisStorage, with expiry."""

    def __init__(self, clock):
        self._clock = clock
        self._data = {}
        self.closed = False

    def _live(self, key):
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def ping(self):
        return True

    async def get(self, key):
        return self._live(key)

    async def set(self, key, value, ex=None, px=None):
        expires_at = None
        if ex is not None:
            expires_at = self._clock() + ex
        elif px is not None:
            expires_at = self._clock() + px / 1000
        self._data[key] = (value, expires_at)
        return True

    async def mget(self, keys):
        return [self._live(key) for key in keys]

    async def scan_iter(self, match=None, count=None):
        for key in list(self._data.keys()):
            if self._live(key) is None:
                continue
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def aclose(self):
        self.closed = True

    def ttl_of(self, key):
        item = self._data.get(key)
        if item is None or item[1] is None:
            return None
        return item[1] - self._clock()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return ChainRegistry([ChainConfig(1, "ethereum"), ChainConfig(10, "optimism"), ChainConfig(42161, "arbitrum")])


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)
