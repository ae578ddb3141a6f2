from .refresh import PriceRefreshService, RefreshResult

__all__ = ["PriceRefreshService", "RefreshResult"]
