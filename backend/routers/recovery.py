from typing import Dict
from uuid import UUID

from fastapi import APIRouter, Depends

from core.errors import InventoryIOError
from routers.deps import get_inventory_engine, io_http_error
from schemas.recovery import RecoveryRequest
from services.engine import InventoryEngine
from services.recovery import RecoverySummary

router = APIRouter()


def _serialize_summary(summary: RecoverySummary) -> Dict:
    health = summary.health
    return {
        "store_id": str(summary.store_id),
        "from_time": summary.from_time.isoformat(),
        "to_time": summary.to_time.isoformat(),
        "success": summary.success,
        "scanned": summary.scanned,
        "already_deducted": summary.already_deducted,
        "nothing_to_deduct": summary.nothing_to_deduct,
        "recovered_count": summary.recovered_count,
        "failed_count": summary.failed_count,
        "deduction_count": summary.deduction_count,
        "recovered": summary.recovered,
        "failed": summary.failed,
        "errors": summary.errors,
        "health": {
            "is_valid": health.is_valid,
            "negative_stock": health.negative_stock,
            "low_stock": health.low_stock,
        } if health else None,
        "summary": summary.summary,
    }


@router.post("/stores/{store_id}/recovery", response_model=Dict)
async def run_recovery(
    store_id: UUID,
    payload: RecoveryRequest,
    engine: InventoryEngine = Depends(get_inventory_engine),
):
    """
    Replay inventory deductions for completed sales in the window that have no
    stock movement. Per-sale failures are reported in the summary; only a
    failure to read the sales themselves fails the request.
    """
    try:
        summary = await engine.run_recovery(store_id, payload.from_time, payload.to_time)
    except InventoryIOError as e:
        raise io_http_error(e)
    return _serialize_summary(summary)
