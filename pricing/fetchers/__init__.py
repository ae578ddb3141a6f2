from .base import PriceFetcher
from .defillama import DefiLlamaFetcher

__all__ = ["PriceFetcher", "DefiLlamaFetcher"]
