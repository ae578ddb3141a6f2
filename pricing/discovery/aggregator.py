"""
Discovery aggregator.

Fans out to every source configured for a chain, isolates per-source
failures, then merges and deduplicates the results in configured order.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import structlog

from ..errors import SourceUnavailable
from ..models import TokenInfo
from .base import DiscoverySource, deduplicate_tokens

logger = structlog.stdlib.get_logger(__name__)

DEFAULT_DISCOVERY_TIMEOUT = 180.0


@dataclass
class SourceResult:
    """Outcome of one source during a discovery pass."""
    source: str
    tokens: List[TokenInfo] = field(default_factory=list)
    error: Optional[SourceUnavailable] = None
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class DiscoveryReport:
    chain_id: int
    tokens: List[TokenInfo]
    results: List[SourceResult]
    elapsed_ms: int = 0

    @property
    def failed_sources(self) -> List[str]:
        return [r.source for r in self.results if not r.ok]

    @property
    def source_counts(self) -> Dict[str, int]:
        return {r.source: len(r.tokens) for r in self.results if r.ok}


class DiscoveryAggregator:
    """Runs the per-chain discovery sources concurrently and merges them."""

    def __init__(
        self,
        sources_by_chain: Mapping[int, Sequence[DiscoverySource]],
        timeout_s: float = DEFAULT_DISCOVERY_TIMEOUT,
    ):
        if timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        self._sources = {chain_id: tuple(sources) for chain_id, sources in sources_by_chain.items()}
        self._timeout_s = timeout_s

    @property
    def chain_ids(self) -> List[int]:
        return list(self._sources.keys())

    def sources_for(self, chain_id: int) -> Sequence[DiscoverySource]:
        return self._sources.get(chain_id, ())

    async def discover_tokens(self, chain_id: int) -> List[TokenInfo]:
        """Unique tokens for the chain; empty when no sources are configured."""
        report = await self.discover_with_report(chain_id)
        return report.tokens

    async def discover_with_report(self, chain_id: int) -> DiscoveryReport:
        sources = self.sources_for(chain_id)
        if not sources:
            return DiscoveryReport(chain_id=chain_id, tokens=[], results=[])

        log = logger.bind(chain_id=chain_id)
        log.info("discovery_started", sources=[s.name for s in sources])
        started = time.monotonic()

        tasks = [asyncio.create_task(self._run_source(source, chain_id)) for source in sources]
        try:
            _, pending = await asyncio.wait(tasks, timeout=self._timeout_s)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        results: List[SourceResult] = []
        for source, task in zip(sources, tasks):
            if task in pending or task.cancelled():
                result = SourceResult(
                    source=source.name,
                    error=SourceUnavailable(source.name, f"timed out after {self._timeout_s}s"),
                    elapsed_ms=int(self._timeout_s * 1000),
                )
            else:
                result = task.result()
            if not result.ok:
                log.warning("discovery_source_failed", source=result.source, error=str(result.error))
            results.append(result)

        tokens = deduplicate_tokens(t for result in results for t in result.tokens)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        log.info(
            "discovery_completed",
            succeeded=sum(1 for r in results if r.ok),
            total=len(results),
            unique_tokens=len(tokens),
            elapsed_ms=elapsed_ms,
        )
        return DiscoveryReport(chain_id=chain_id, tokens=tokens, results=results, elapsed_ms=elapsed_ms)

    async def _run_source(self, source: DiscoverySource, chain_id: int) -> SourceResult:
        started = time.monotonic()
        timeout = getattr(source, "timeout_s", None)
        try:
            if timeout:
                found = await asyncio.wait_for(source.discover_tokens(chain_id), timeout)
            else:
                found = await source.discover_tokens(chain_id)
        except asyncio.TimeoutError:
            error = SourceUnavailable(source.name, f"timed out after {timeout}s")
            return SourceResult(source=source.name, error=error, elapsed_ms=_since(started))
        except Exception as exc:  # noqa: BLE001
            reason = str(exc).split("\n")[0][:100] or type(exc).__name__
            return SourceResult(
                source=source.name,
                error=SourceUnavailable(source.name, reason),
                elapsed_ms=_since(started),
            )

        tokens = [t for t in found or () if isinstance(t, TokenInfo) and t.chain_id == chain_id]
        return SourceResult(source=source.name, tokens=tokens, elapsed_ms=_since(started))

    async def discover_all(self, chain_ids: Optional[Iterable[int]] = None) -> Dict[int, List[TokenInfo]]:
        """Discover every configured chain concurrently."""
        targets = list(chain_ids) if chain_ids is not None else self.chain_ids
        reports = await asyncio.gather(*(self.discover_with_report(cid) for cid in targets))
        return {report.chain_id: report.tokens for report in reports}


def _since(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


__all__ = ["DiscoveryAggregator", "DiscoveryReport", "SourceResult", "DEFAULT_DISCOVERY_TIMEOUT"]
