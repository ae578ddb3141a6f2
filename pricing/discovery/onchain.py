"""
On-chain Discovery Sources

Enumerates tokens straight from contracts over JSON-RPC ``eth_call``:
- RegistryEnumerationSource: ``method(uint256 index) returns (address)``
  registries, optionally bounded by a length getter
- UniswapV2PairsSource: ``allPairs`` plus each pair's ``token0``/``token1``
- CurveFactoryPoolsSource: ``pool_list`` plus each pool's ``get_coins``
- AaveReservesSource: ``getReservesList() returns (address[])``
"""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any, List, Optional, Sequence, Tuple

import httpx
from eth_utils import keccak

from ..errors import SourceUnavailable
from ..models import TokenInfo
from .base import deduplicate_tokens, paginate

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40

# JSON-RPC error code geth and erigon use for reverted calls
REVERT_ERROR_CODE = 3

RETRYABLE_STATUS = frozenset({429, 502, 503, 504})


class RpcError(Exception):
    """JSON-RPC error response (reverts included)."""

    def __init__(self, error: Any):
        if isinstance(error, dict):
            self.code = error.get("code")
            self.message = str(error.get("message", ""))
        else:
            self.code = None
            self.message = str(error)
        super().__init__(f"RPC error {self.code}: {self.message}" if self.code is not None else self.message)

    @property
    def is_revert(self) -> bool:
        return self.code == REVERT_ERROR_CODE or "revert" in self.message.lower()


@lru_cache(maxsize=None)
def _selector_from_signature(signature: str) -> str:
    selector = keccak(text=signature)[:4].hex()
    return f"0x{selector}"


def encode_uint256(value: int) -> str:
    if value < 0:
        raise ValueError("uint256 must be non-negative")
    return f"{value:064x}"


def encode_address(address: str) -> str:
    return address[2:].lower().rjust(64, "0")


def _words(result: str) -> List[str]:
    data = result[2:] if result.startswith("0x") else result
    if len(data) % 64:
        raise ValueError("ABI payload is not word aligned")
    return [data[i:i + 64] for i in range(0, len(data), 64)]


def decode_address(result: str) -> Optional[str]:
    """First ABI word as an address; None for empty results or the zero address."""
    words = _words(result) if result else []
    if not words:
        return None
    address = "0x" + words[0][-40:]
    return None if address == ZERO_ADDRESS else address


def decode_uint256(result: str) -> Optional[int]:
    words = _words(result) if result else []
    return int(words[0], 16) if words else None


def decode_static_addresses(result: str) -> List[str]:
    """Decode a fixed-size ``address[N]`` return value, dropping zero slots."""
    addresses = ["0x" + word[-40:] for word in _words(result)] if result else []
    return [address for address in addresses if address != ZERO_ADDRESS]


def decode_address_array(result: str) -> List[str]:
    """Decode a single dynamic ``address[]`` return value."""
    words = _words(result)
    if len(words) < 2:
        return []
    offset = int(words[0], 16) // 32
    length = int(words[offset], 16)
    items = words[offset + 1:offset + 1 + length]
    if len(items) != length:
        raise ValueError("Truncated address[] payload")
    return ["0x" + word[-40:] for word in items]


class RpcClient:
    """
    Minimal JSON-RPC client for read-only contract calls.

    Rate limits, node errors and dropped connections are retried with
    exponential backoff. Reverts are never retried.
    """

    def __init__(
        self,
        rpc_url: str,
        client: httpx.AsyncClient,
        timeout_s: float = 20.0,
        retries: int = 2,
        retry_delay: float = 0.25,
    ):
        self.rpc_url = rpc_url
        self._client = client
        self._timeout_s = timeout_s
        self._retries = retries
        self._retry_delay = retry_delay
        self._request_id = 0

    async def _rpc_call(self, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        response = await self._client.post(
            self.rpc_url,
            json={"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params},
            timeout=self._timeout_s,
        )
        response.raise_for_status()
        payload = response.json()
        if "error" in payload:
            raise RpcError(payload["error"])
        return payload.get("result")

    async def eth_call(self, to: str, data: str) -> str:
        attempt = 0
        while True:
            try:
                result = await self._rpc_call("eth_call", [{"to": to, "data": data}, "latest"])
                if not isinstance(result, str):
                    raise RpcError(f"Invalid eth_call result: {result!r}")
                return result
            except RpcError as exc:
                if exc.is_revert or attempt >= self._retries:
                    raise
                reason = str(exc)
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code not in RETRYABLE_STATUS or attempt >= self._retries:
                    raise
                reason = f"HTTP {exc.response.status_code}"
            except httpx.TransportError as exc:
                if attempt >= self._retries:
                    raise
                reason = type(exc).__name__

            logger.debug("eth_call to %s failed (%s), retry %d/%d", to, reason, attempt + 1, self._retries)
            await asyncio.sleep(self._retry_delay * 2 ** attempt)
            attempt += 1

    async def call_address(self, to: str, data: str) -> Optional[str]:
        """Single-address call; None when the call reverts or returns zero."""
        try:
            return decode_address(await self.eth_call(to, data))
        except RpcError as exc:
            if exc.is_revert:
                return None
            raise

    async def call_uint(self, to: str, data: str) -> Optional[int]:
        """Single-uint call; None when the call reverts."""
        try:
            return decode_uint256(await self.eth_call(to, data))
        except RpcError as exc:
            if exc.is_revert:
                return None
            raise


# Entry of an enumeration batch: (pool, underlying tokens), or None for a skipped index
PoolEntry = Optional[Tuple[str, List[str]]]


class RegistryEnumerationSource:
    """
    Walks an index-addressed registry in fixed-size batches.

    Batches run one after another; the calls inside a batch, and the
    follow-up reads of each pool's underlying tokens, are issued
    concurrently. With a length getter the index range is known up front;
    without one a revert or zero address marks the end of the list. An
    index whose read keeps failing is skipped, not treated as the end.
    """

    timeout_s = 60.0

    def __init__(
        self,
        name: str,
        chain_id: int,
        rpc: RpcClient,
        registry_address: str,
        signature: str,
        length_signature: Optional[str] = None,
        batch_size: int = 50,
        max_batches: int = 40,
    ):
        self.name = name
        self.chain_id = chain_id
        self._rpc = rpc
        self._registry = registry_address
        self._selector = _selector_from_signature(signature)
        self._length_selector = _selector_from_signature(length_signature) if length_signature else None
        self._batch_size = batch_size
        self._max_batches = max_batches

    async def discover_tokens(self, chain_id: int) -> List[TokenInfo]:
        if chain_id != self.chain_id:
            return []

        count = await self._read_length()
        failed: List[int] = []

        async def fetch_batch(offset: int, limit: int) -> Sequence[PoolEntry]:
            stop = offset + limit if count is None else min(offset + limit, count)
            return await self._fetch_batch(range(offset, stop), count is not None, failed)

        pools = await paginate(
            fetch_batch,
            batch_size=self._batch_size,
            max_batches=self._max_batches,
            label=f"{self.name} chain {chain_id}",
        )

        if failed and not pools:
            raise SourceUnavailable(self.name, f"all {len(failed)} registry reads failed")
        if failed:
            logger.warning(
                "%s: skipped %d registry entries on chain %d after RPC errors (indices %s)",
                self.name, len(failed), chain_id, failed[:10],
            )

        tokens: List[TokenInfo] = []
        for pool, underlying in pools:
            tokens.append(TokenInfo(address=pool, chain_id=chain_id, source=self.name))
            tokens.extend(TokenInfo(address=a, chain_id=chain_id, source=self.name) for a in underlying)
        logger.debug("%s: enumerated %d pools on chain %d", self.name, len(pools), chain_id)
        return deduplicate_tokens(tokens)

    async def _read_length(self) -> Optional[int]:
        if self._length_selector is None:
            return None
        count = await self._rpc.call_uint(self._registry, self._length_selector)
        if count is None:
            logger.debug("%s: registry has no length getter, enumerating until the first empty slot", self.name)
        return count

    async def _read_index(self, index: int) -> Optional[str]:
        return await self._rpc.call_address(self._registry, self._selector + encode_uint256(index))

    async def _read_underlying(self, pool: str) -> List[str]:
        return []

    async def _underlying_or_empty(self, pool: str) -> List[str]:
        try:
            return await self._read_underlying(pool)
        except (RpcError, httpx.HTTPError, ValueError) as exc:
            logger.debug("%s: could not read underlying tokens of %s: %s", self.name, pool, exc)
            return []

    async def _fetch_batch(self, indices: range, bounded: bool, failed: List[int]) -> List[PoolEntry]:
        results = await asyncio.gather(*(self._read_index(i) for i in indices), return_exceptions=True)
        if results and all(isinstance(result, BaseException) for result in results):
            for result in results:
                if not isinstance(result, Exception):
                    raise result
            failed.extend(indices)
            logger.debug("%s: every read in batch %d-%d failed: %s", self.name, indices[0], indices[-1], results[0])
            return []

        addresses: List[Optional[str]] = []
        for index, result in zip(indices, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failed.append(index)
                logger.debug("%s: index %d failed: %s", self.name, index, result)
                addresses.append(None)
            elif result is None:
                if not bounded:
                    break
                addresses.append(None)
            else:
                addresses.append(result)

        pools = [address for address in addresses if address]
        underlying = await asyncio.gather(*(self._underlying_or_empty(pool) for pool in pools))
        by_pool = dict(zip(pools, underlying))
        return [(address, by_pool[address]) if address else None for address in addresses]


class UniswapV2PairsSource(RegistryEnumerationSource):
    """Uniswap V2 style factory pairs and the two tokens of each pair."""

    def __init__(
        self,
        chain_id: int,
        rpc: RpcClient,
        factory_address: str,
        name: str = "uniswap-v2",
        batch_size: int = 50,
        max_batches: int = 40,
    ):
        super().__init__(
            name, chain_id, rpc, factory_address, "allPairs(uint256)",
            length_signature="allPairsLength()", batch_size=batch_size, max_batches=max_batches,
        )

    async def _read_underlying(self, pool: str) -> List[str]:
        token0, token1 = await asyncio.gather(
            self._rpc.call_address(pool, _selector_from_signature("token0()")),
            self._rpc.call_address(pool, _selector_from_signature("token1()")),
        )
        return [token for token in (token0, token1) if token]


class CurveFactoryPoolsSource(RegistryEnumerationSource):
    """Curve factory pools (the pool is its own LP token) and their coins."""

    def __init__(
        self,
        chain_id: int,
        rpc: RpcClient,
        factory_address: str,
        name: str = "curve-factory",
        batch_size: int = 50,
        max_batches: int = 40,
    ):
        super().__init__(
            name, chain_id, rpc, factory_address, "pool_list(uint256)",
            length_signature="pool_count()", batch_size=batch_size, max_batches=max_batches,
        )

    async def _read_underlying(self, pool: str) -> List[str]:
        data = _selector_from_signature("get_coins(address)") + encode_address(pool)
        try:
            result = await self._rpc.eth_call(self._registry, data)
        except RpcError as exc:
            if exc.is_revert:
                return []
            raise
        return decode_static_addresses(result)


class AaveReservesSource:
    """Reserve assets listed by an Aave v3 pool."""

    name = "aave"
    timeout_s = 60.0

    def __init__(self, chain_id: int, rpc: RpcClient, pool_address: str):
        self.chain_id = chain_id
        self._rpc = rpc
        self._pool = pool_address

    async def discover_tokens(self, chain_id: int) -> List[TokenInfo]:
        if chain_id != self.chain_id:
            return []
        result = await self._rpc.eth_call(self._pool, _selector_from_signature("getReservesList()"))
        return deduplicate_tokens(
            TokenInfo(address=address, chain_id=chain_id, source=self.name)
            for address in decode_address_array(result)
            if address != ZERO_ADDRESS
        )


__all__ = [
    "RpcClient",
    "RpcError",
    "RegistryEnumerationSource",
    "UniswapV2PairsSource",
    "CurveFactoryPoolsSource",
    "AaveReservesSource",
    "encode_uint256",
    "encode_address",
    "decode_address",
    "decode_uint256",
    "decode_static_addresses",
    "decode_address_array",
]
