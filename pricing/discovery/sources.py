"""
Off-chain Discovery Sources

- ConfiguredTokensSource: static per-chain token addresses
- TokenListSource: public token lists (Uniswap/1inch/official bridges)
- CurveApiSource: Curve pool API (LP tokens and pool coins)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import httpx

from ..errors import SourceUnavailable
from ..models import TokenInfo
from .base import deduplicate_tokens

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; PricingService/1.0)"


def _is_address(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("0x") and len(value) == 42


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ConfiguredTokensSource:
    """Addresses pinned in configuration so major tokens are always present."""

    name = "configured"

    def __init__(self, tokens_by_chain: Mapping[int, Sequence[str]]):
        self._tokens = {chain_id: tuple(addresses) for chain_id, addresses in tokens_by_chain.items()}

    async def discover_tokens(self, chain_id: int) -> List[TokenInfo]:
        return [
            TokenInfo(address=address.lower(), chain_id=chain_id, source=self.name)
            for address in self._tokens.get(chain_id, ())
        ]


class TokenListSource:
    """
    Token lists fetched concurrently; a list that fails is skipped.

    Raises SourceUnavailable only when every list for the chain failed.
    """

    name = "tokenlist"
    timeout_s = 45.0

    def __init__(
        self,
        lists_by_chain: Mapping[int, Sequence[Tuple[str, str]]],
        client: httpx.AsyncClient,
        request_timeout: float = 10.0,
    ):
        self._lists = {chain_id: tuple(lists) for chain_id, lists in lists_by_chain.items()}
        self._client = client
        self._request_timeout = request_timeout

    async def discover_tokens(self, chain_id: int) -> List[TokenInfo]:
        lists = self._lists.get(chain_id, ())
        if not lists:
            return []

        results = await asyncio.gather(
            *(self._fetch_list(list_name, url, chain_id) for list_name, url in lists),
            return_exceptions=True,
        )

        tokens: List[TokenInfo] = []
        failures = 0
        for (list_name, _), result in zip(lists, results):
            if isinstance(result, BaseException):
                failures += 1
                logger.debug("Token list %s failed for chain %d: %s", list_name, chain_id, result)
                continue
            tokens.extend(result)

        if failures == len(lists):
            raise SourceUnavailable(self.name, f"all {failures} token lists failed for chain {chain_id}")

        unique = deduplicate_tokens(tokens)
        logger.debug("Token Lists: discovered %d tokens for chain %d", len(unique), chain_id)
        return unique

    async def _fetch_list(self, list_name: str, url: str, chain_id: int) -> List[TokenInfo]:
        response = await self._client.get(
            url,
            timeout=self._request_timeout,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
        )
        response.raise_for_status()
        return list(self.parse_token_list(response.json(), chain_id))

    def parse_token_list(self, data: Any, chain_id: int) -> Iterable[TokenInfo]:
        """Accept bare arrays, ``{"tokens": [...]}``, ``{"result": [...]}`` and address-keyed maps."""
        entries: Iterable[Any] = ()
        if isinstance(data, list):
            entries = data
        elif isinstance(data, dict):
            if isinstance(data.get("tokens"), list):
                entries = data["tokens"]
            elif isinstance(data.get("result"), list):
                entries = data["result"]
            else:
                entries = data.values()

        for entry in entries:
            if not isinstance(entry, dict):
                continue
            entry_chain = entry.get("chainId")
            if entry_chain is not None and _as_int(entry_chain) != chain_id:
                continue
            address = entry.get("address")
            decimals = _as_int(entry.get("decimals"))
            if not _is_address(address) or not entry.get("symbol") or decimals is None:
                continue
            yield TokenInfo(
                address=address.lower(),
                chain_id=chain_id,
                source=self.name,
                symbol=str(entry["symbol"]),
                name=str(entry.get("name") or entry["symbol"]),
                decimals=decimals,
            )


class CurveApiSource:
    """LP tokens and underlying coins from the Curve pools API."""

    name = "curve-api"
    timeout_s = 45.0

    def __init__(self, api_urls: Mapping[int, str], client: httpx.AsyncClient, request_timeout: float = 30.0):
        self._api_urls = dict(api_urls)
        self._client = client
        self._request_timeout = request_timeout

    async def discover_tokens(self, chain_id: int) -> List[TokenInfo]:
        url = self._api_urls.get(chain_id)
        if not url:
            return []

        response = await self._client.get(url, timeout=self._request_timeout)
        response.raise_for_status()
        payload = response.json()

        pools = (payload.get("data") or {}).get("poolData") if isinstance(payload, dict) else None
        if not isinstance(pools, list):
            raise SourceUnavailable(self.name, "unexpected response shape")

        tokens: List[TokenInfo] = []
        for pool in pools:
            if not isinstance(pool, dict):
                continue
            lp_address = pool.get("lpTokenAddress") or pool.get("address")
            if _is_address(lp_address):
                tokens.append(TokenInfo(
                    address=lp_address.lower(),
                    chain_id=chain_id,
                    source=self.name,
                    symbol=pool.get("symbol"),
                    name=pool.get("name"),
                    decimals=18,
                ))
            for coin in pool.get("coins") or []:
                if not isinstance(coin, dict) or not _is_address(coin.get("address")):
                    continue
                tokens.append(TokenInfo(
                    address=coin["address"].lower(),
                    chain_id=chain_id,
                    source=self.name,
                    symbol=coin.get("symbol"),
                    decimals=_as_int(coin.get("decimals")),
                ))

        return deduplicate_tokens(tokens)


__all__ = ["ConfiguredTokensSource", "TokenListSource", "CurveApiSource"]
