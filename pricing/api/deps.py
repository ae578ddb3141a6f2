from fastapi import Request

from ..models import Price
from ..storage import StorageFacade


def get_storage(request: Request) -> StorageFacade:
    return request.app.state.storage


def format_price(price: Price, humanized: bool = False, detailed: bool = False):
    """Price as returned by the HTTP API; amounts are always strings."""
    value = str(price.price.to_decimal()) if humanized else price.price.to_wire()
    if not detailed:
        return value
    payload = price.to_dict()
    if humanized:
        payload["humanizedPrice"] = value
    return payload
