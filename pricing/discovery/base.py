"""Discovery source capability and helpers shared by all sources."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Protocol, Sequence, TypeVar, runtime_checkable

from ..models import TokenInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class DiscoverySource(Protocol):
    """
    Anything that can enumerate candidate tokens for a chain.

    Implementations may set ``timeout_s`` to bound their own run time.
    """

    name: str

    async def discover_tokens(self, chain_id: int) -> Sequence[TokenInfo]: ...


def deduplicate_tokens(tokens: Iterable[TokenInfo]) -> List[TokenInfo]:
    """Keep the first token seen per (chain_id, lowercase address)."""
    seen = set()
    unique: List[TokenInfo] = []
    for token in tokens:
        key = token.identity
        if key in seen:
            continue
        seen.add(key)
        unique.append(token)
    return unique


async def paginate(
    fetch_batch: Callable[[int, int], Awaitable[Sequence[Optional[T]]]],
    batch_size: int,
    max_batches: int,
    label: str = "",
) -> List[T]:
    """
    Collect items from ``fetch_batch(offset, limit)`` one batch at a time.

    Stops when a batch comes back shorter than ``batch_size`` or after
    ``max_batches`` batches. A batch may hold None for slots that were
    skipped; those count toward the batch length but are not collected.
    """
    if batch_size < 1 or max_batches < 1:
        raise ValueError("batch_size and max_batches must be positive")

    items: List[T] = []
    offset = 0
    for _ in range(max_batches):
        batch = await fetch_batch(offset, batch_size)
        items.extend(item for item in batch if item is not None)
        if len(batch) < batch_size:
            return items
        offset += batch_size

    logger.warning(
        "%s: stopped after %d batches (%d items), more may exist",
        label or "pagination", max_batches, len(items),
    )
    return items


__all__ = ["DiscoverySource", "deduplicate_tokens", "paginate"]
