from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..storage import StorageFacade
from .deps import format_price, get_storage

router = APIRouter(prefix="/prices")


@router.get("")
async def all_prices(
    humanized: bool = False,
    detailed: bool = False,
    storage: StorageFacade = Depends(get_storage),
) -> Dict[str, Dict[str, Any]]:
    """Every live price, grouped by chain ID."""
    all_prices = await storage.get_all_prices()
    return {
        str(chain_id): {
            address: format_price(price, humanized, detailed)
            for address, price in prices.items()
        }
        for chain_id, prices in all_prices.items()
    }


@router.get("/chain/{chain_id}")
async def chain_prices(
    chain_id: int,
    humanized: bool = False,
    detailed: bool = False,
    storage: StorageFacade = Depends(get_storage),
) -> Dict[str, Any]:
    listed = await storage.list_prices(chain_id)
    return {address: format_price(price, humanized, detailed) for address, price in listed.as_map.items()}


@router.get("/chain/{chain_id}/{address}")
async def single_price(
    chain_id: int,
    address: str,
    humanized: bool = False,
    storage: StorageFacade = Depends(get_storage),
) -> Dict[str, Any]:
    price = await storage.get_price(chain_id, address)
    if price is None:
        raise HTTPException(status_code=404, detail="Price not found")
    return format_price(price, humanized, detailed=True)


@router.get("/tokens/{token_list}")
async def token_prices(
    token_list: str,
    humanized: bool = False,
    storage: StorageFacade = Depends(get_storage),
) -> Dict[str, Any]:
    """Prices for ``chainId:address`` pairs separated by commas; unknown tokens are omitted."""
    response: Dict[str, Any] = {}
    for item in filter(None, (part.strip() for part in token_list.split(","))):
        chain_part, sep, address = item.partition(":")
        if not sep or not chain_part.isdigit() or not address:
            raise HTTPException(status_code=400, detail=f"Invalid token reference: {item}")
        chain_id = int(chain_part)
        if chain_id not in storage.registry:
            continue
        price = await storage.get_price(chain_id, address)
        if price is not None:
            response[f"{chain_id}:{price.address}"] = format_price(price, humanized)
    return response


@router.get("/stats")
async def stats(
    chain_id: Optional[int] = Query(default=None),
    storage: StorageFacade = Depends(get_storage),
) -> Dict[str, Any]:
    raw = await storage.get_stats(chain_id)
    if chain_id is not None:
        return raw
    return {str(key): value for key, value in raw.items()}
