"""
Price Refresh Service

Discover tokens for a chain, price them with the configured fetchers and
store the result through the storage facade.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from ..discovery import DiscoveryAggregator
from ..fetchers import PriceFetcher
from ..logging_config import log_context
from ..models import Price, TokenInfo
from ..storage import StorageFacade

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    chain_id: int
    discovered: int = 0
    stored: int = 0
    by_fetcher: Dict[str, int] = field(default_factory=dict)
    failed_fetchers: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "chainId": self.chain_id,
            "discovered": self.discovered,
            "stored": self.stored,
            "byFetcher": self.by_fetcher,
            "failedFetchers": self.failed_fetchers,
            "error": self.error,
        }


class PriceRefreshService:
    """
    Runs discovery → fetch → store for one or many chains.

    Fetchers are tried in order; each only sees tokens the earlier ones could
    not price.
    """

    def __init__(
        self,
        aggregator: DiscoveryAggregator,
        fetchers: Sequence[PriceFetcher],
        storage: StorageFacade,
    ):
        self._aggregator = aggregator
        self._fetchers = tuple(fetchers)
        self._storage = storage

    async def refresh_chain(self, chain_id: int) -> RefreshResult:
        with log_context(chain_id=chain_id):
            return await self._refresh_chain(chain_id)

    async def _refresh_chain(self, chain_id: int) -> RefreshResult:
        result = RefreshResult(chain_id=chain_id)
        tokens = await self._aggregator.discover_tokens(chain_id)
        result.discovered = len(tokens)
        if not tokens:
            return result

        prices = await self._fetch_all(chain_id, tokens, result)
        if prices:
            await self._storage.store_prices(chain_id, prices)
        result.stored = len(prices)
        logger.info(
            "Chain %d: stored %d prices for %d discovered tokens", chain_id, result.stored, result.discovered
        )
        return result

    async def _fetch_all(self, chain_id: int, tokens: List[TokenInfo], result: RefreshResult) -> List[Price]:
        priced: Dict[str, Price] = {}
        remaining = tokens
        for fetcher in self._fetchers:
            if not remaining:
                break
            try:
                fetched = await fetcher.fetch_prices(chain_id, remaining)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Chain %d: fetcher %s failed: %s", chain_id, fetcher.name, str(exc)[:100])
                result.failed_fetchers.append(fetcher.name)
                continue

            added = 0
            for price in fetched:
                key = price.address.lower()
                if key not in priced:
                    priced[key] = price
                    added += 1
            result.by_fetcher[fetcher.name] = added
            remaining = [t for t in remaining if t.address.lower() not in priced]

        return list(priced.values())

    async def refresh_all(self, chain_ids: Optional[Iterable[int]] = None) -> List[RefreshResult]:
        """Refresh chains concurrently; one chain failing does not stop the others."""
        targets = list(chain_ids) if chain_ids is not None else self._aggregator.chain_ids
        outcomes = await asyncio.gather(
            *(self.refresh_chain(chain_id) for chain_id in targets),
            return_exceptions=True,
        )

        results: List[RefreshResult] = []
        for chain_id, outcome in zip(targets, outcomes):
            if isinstance(outcome, Exception):
                logger.error("Chain %d: refresh failed: %s", chain_id, outcome)
                outcome = RefreshResult(chain_id=chain_id, error=str(outcome)[:200])
            elif isinstance(outcome, BaseException):
                raise outcome
            results.append(outcome)
        return results


__all__ = ["PriceRefreshService", "RefreshResult"]
