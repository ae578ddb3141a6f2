from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..errors import NotInitialized
from ..storage import StorageFacade
from .deps import get_storage

router = APIRouter()


@router.get("/healthz")
async def health_check(storage: StorageFacade = Depends(get_storage)) -> Dict[str, Any]:
    """Report which storage backend is active and how many prices it holds."""
    try:
        all_prices = await storage.get_all_prices()
    except NotInitialized:
        return {"status": "unavailable", "storage": None, "state": storage.state.value}

    return {
        "status": "healthy" if all_prices else "degraded",
        "storage": storage.backend_type.value if storage.backend_type else None,
        "state": storage.state.value,
        "chains": len(all_prices),
        "prices": sum(len(prices) for prices in all_prices.values()),
    }
