from typing import Dict
from uuid import UUID

from fastapi import APIRouter, Depends

from core.errors import InventoryIOError
from routers.deps import get_inventory_engine, io_http_error
from services.domain import StockItem
from services.engine import InventoryEngine

router = APIRouter()


def _serialize_stock_item(item: StockItem) -> Dict:
    return {
        "id": str(item.id),
        "name": item.name,
        "quantity": item.quantity,
        "unit": item.unit,
        "min_level": item.min_level,
        "below_min": item.min_level is not None and item.quantity < item.min_level,
        "supports_fractional": item.supports_fractional,
    }


@router.get("/stores/{store_id}/inventory", response_model=Dict)
async def get_store_inventory(store_id: UUID, engine: InventoryEngine = Depends(get_inventory_engine)):
    """
    Cached inventory snapshot for a store (refreshed at most every cache TTL,
    or right after a deduction).
    """
    try:
        items = await engine.get_store_inventory(store_id)
    except InventoryIOError as e:
        raise io_http_error(e)

    return {
        "store_id": str(store_id),
        "count": len(items),
        "items": [_serialize_stock_item(i) for i in items],
    }
