"""Error taxonomy shared by discovery, cache and storage layers."""

from __future__ import annotations

from typing import Optional


class PricingError(Exception):
    """Base class for pricing service errors."""


class SourceUnavailable(PricingError):
    """A discovery source or storage backend could not be reached."""

    def __init__(self, source: str, reason: str = "") -> None:
        self.source = source
        self.reason = reason
        message = f"{source} unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class UnsupportedChain(PricingError):
    """Operation requested for a chain that is not in the registry."""

    def __init__(self, chain_id: int) -> None:
        self.chain_id = chain_id
        super().__init__(f"Chain {chain_id} not supported")


class NotInitialized(PricingError):
    """Storage facade used before a successful initialize()."""

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or "Storage not initialized. Call initialize() first.")


class PersistenceWriteFailure(PricingError):
    """Snapshot file could not be written."""

    def __init__(self, chain_id: int, reason: str) -> None:
        self.chain_id = chain_id
        self.reason = reason
        super().__init__(f"Failed to persist backup for chain {chain_id}: {reason}")


__all__ = [
    "PricingError",
    "SourceUnavailable",
    "UnsupportedChain",
    "NotInitialized",
    "PersistenceWriteFailure",
]
