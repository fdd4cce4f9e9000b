from fastapi import HTTPException, Request, status

from core.errors import InventoryIOError, ResolutionError
from services.engine import InventoryEngine


def get_inventory_engine(request: Request) -> InventoryEngine:
    engine = getattr(request.app.state, "inventory_engine", None)
    if engine is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Inventory engine is not ready")
    return engine


def resolution_http_error(e: ResolutionError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"kind": e.kind, "message": e.message},
    )


def io_http_error(e: InventoryIOError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"kind": e.kind, "message": e.message, "retryable": e.retryable},
    )
