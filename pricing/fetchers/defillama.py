"""DefiLlama current-price fetcher."""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

import httpx

from ..models import MicroUsd, Price, TokenInfo

logger = logging.getLogger(__name__)

# Chain ID to DefiLlama chain slug
CHAIN_TO_LLAMA = {
    1: "ethereum",
    10: "optimism",
    56: "bsc",
    100: "xdai",
    137: "polygon",
    146: "sonic",
    250: "fantom",
    8453: "base",
    42161: "arbitrum",
    43114: "avax",
    747474: "katana",
}


class DefiLlamaFetcher:
    """Batched lookups against ``coins.llama.fi/prices/current``."""

    name = "defillama"
    BASE_URL = "https://coins.llama.fi"

    def __init__(self, client: httpx.AsyncClient, batch_size: int = 100, request_timeout: float = 30.0):
        self._client = client
        self._batch_size = batch_size
        self._request_timeout = request_timeout

    async def fetch_prices(self, chain_id: int, tokens: Sequence[TokenInfo]) -> List[Price]:
        slug = CHAIN_TO_LLAMA.get(chain_id)
        if not slug or not tokens:
            return []

        addresses = list(dict.fromkeys(t.address.lower() for t in tokens))
        prices: List[Price] = []
        for start in range(0, len(addresses), self._batch_size):
            chunk = addresses[start:start + self._batch_size]
            try:
                quotes = await self._fetch_chunk(slug, chunk)
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("DefiLlama chunk failed for chain %d: %s", chain_id, str(exc)[:100])
                continue
            for address in chunk:
                usd = quotes.get(f"{slug}:{address}")
                price = self._to_micro_usd(usd)
                if price is not None:
                    prices.append(Price(address=address, chain_id=chain_id, price=price, source=self.name))

        logger.debug("DefiLlama priced %d/%d tokens on chain %d", len(prices), len(addresses), chain_id)
        return prices

    async def _fetch_chunk(self, slug: str, addresses: Sequence[str]) -> Dict[str, Decimal]:
        coins = ",".join(f"{slug}:{address}" for address in addresses)
        response = await self._client.get(
            f"{self.BASE_URL}/prices/current/{coins}",
            timeout=self._request_timeout,
        )
        response.raise_for_status()
        # Decimal keeps quotes exact on the way to micro-dollars
        payload = json.loads(response.text, parse_float=Decimal)
        coins_data = payload.get("coins") or {}
        quotes: Dict[str, Decimal] = {}
        for key, data in coins_data.items():
            if isinstance(data, dict) and data.get("price") is not None:
                quotes[key.lower()] = Decimal(data["price"])
        return quotes

    @staticmethod
    def _to_micro_usd(usd: Optional[Decimal]) -> Optional[MicroUsd]:
        if usd is None or usd <= 0:
            return None
        try:
            price = MicroUsd.from_decimal(usd)
        except ValueError:
            return None
        return price or None
