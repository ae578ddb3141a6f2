"""Token price cache and multi-source discovery service."""

from .chains import ChainConfig, ChainRegistry, DEFAULT_REGISTRY
from .errors import NotInitialized, PersistenceWriteFailure, PricingError, SourceUnavailable, UnsupportedChain
from .models import MicroUsd, Price, TokenInfo

__version__ = "0.1.0"

__all__ = [
    "ChainConfig",
    "ChainRegistry",
    "DEFAULT_REGISTRY",
    "NotInitialized",
    "PersistenceWriteFailure",
    "PricingError",
    "SourceUnavailable",
    "UnsupportedChain",
    "MicroUsd",
    "Price",
    "TokenInfo",
]
