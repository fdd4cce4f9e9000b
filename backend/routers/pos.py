import logging
from dataclasses import asdict
from typing import Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from core.errors import RESOLUTION_KINDS, InventoryIOError, ResolutionError, SupersededError
from routers.deps import get_inventory_engine, io_http_error, resolution_http_error
from schemas.cart import CartValidationRequest, CheckoutRequest
from services.cart_validation import CartValidationResult, LineValidation
from services.deduction import DeductionOutcome
from services.domain import CartItem
from services.engine import InventoryEngine

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize_line(line: LineValidation) -> Dict:
    return {
        "key": line.key,
        "product_id": line.product_id,
        "product_name": line.product_name,
        "quantity": line.quantity,
        "status": line.status,
        "is_valid": line.is_valid,
        "max_saleable_quantity": line.max_saleable_quantity,
        "per_item": [
            {
                "name": p.name,
                "required": p.required,
                "available": p.available,
                "sufficient": p.sufficient,
                "mapped": p.mapped,
                "inventory_item_id": str(p.inventory_item_id) if p.inventory_item_id else None,
            }
            for p in line.per_item
        ],
        "errors": [asdict(e) for e in line.errors],
        "warnings": list(line.warnings),
    }


def _serialize_validation(result: CartValidationResult) -> Dict:
    return {
        "store_id": str(result.store_id),
        "superseded": False,
        "is_valid": result.is_valid,
        "errors": [asdict(e) for e in result.errors],
        "warnings": list(result.warnings),
        "items": {key: _serialize_line(line) for key, line in result.items.items()},
        "validated_at": result.validated_at.isoformat(),
        "sequence": result.sequence,
    }


def _serialize_outcome(outcome: DeductionOutcome) -> Dict:
    return {
        "sale_reference": outcome.sale_reference,
        "success": outcome.success,
        "policy": outcome.policy,
        "compensated": outcome.compensated,
        "deductions": [
            {
                "inventory_item_id": str(d.inventory_item_id),
                "item_name": d.item_name,
                "quantity": d.quantity,
                "previous_quantity": d.previous_quantity,
                "new_quantity": d.new_quantity,
                "products": d.products,
                "compensated": d.compensated,
            }
            for d in outcome.deductions
        ],
        "errors": [
            {
                "kind": e.kind,
                "item_name": e.item_name,
                "message": e.message,
                "required": e.required,
                "available": e.available,
                "products": e.products,
            }
            for e in outcome.errors
        ],
        "skipped": outcome.skipped,
        "warnings": outcome.warnings,
    }


@router.post("/stores/{store_id}/cart/validate", response_model=Dict)
async def validate_cart(
    store_id: UUID,
    payload: CartValidationRequest,
    engine: InventoryEngine = Depends(get_inventory_engine),
):
    """
    Debounced cart validation. A request replaced by a newer one for the same
    store answers with `superseded: true`.
    """
    cart = [i.to_domain() for i in payload.items]
    try:
        result = await engine.validate_cart(store_id, cart)
    except SupersededError:
        return {"store_id": str(store_id), "superseded": True}
    except InventoryIOError as e:
        raise io_http_error(e)
    return _serialize_validation(result)


@router.post("/stores/{store_id}/cart/validate-immediate", response_model=Dict)
async def validate_cart_immediate(
    store_id: UUID,
    payload: CartValidationRequest,
    engine: InventoryEngine = Depends(get_inventory_engine),
):
    cart = [i.to_domain() for i in payload.items]
    try:
        result = await engine.validate_cart_immediate(store_id, cart)
    except InventoryIOError as e:
        raise io_http_error(e)
    return _serialize_validation(result)


@router.post("/stores/{store_id}/checkout", response_model=Dict)
async def checkout(
    store_id: UUID,
    payload: CheckoutRequest,
    engine: InventoryEngine = Depends(get_inventory_engine),
):
    """
    Validate the sale immediately, then deduct inventory for it.

    - Validation failures answer 409 with the per-ingredient shortfall and
      nothing is written.
    - Resolution problems answer 422, transport problems 503.
    - A deduction that fails part-way answers 409 with the outcome, which
      lists what was deducted (or compensated) and what failed.
    - A retried sale_reference that already deducted stock skips validation
      and answers with the executor outcome; deducted items are listed under
      `skipped`.
    """
    lines = [i.to_domain() for i in payload.items]
    cart = [CartItem(product_id=l.product_id, quantity=l.quantity, selections=l.selections, name=l.name) for l in lines]

    try:
        outcome = await engine.resume_checkout(store_id, lines, payload.sale_reference)
        if outcome is None:
            validation = await engine.validate_cart_immediate(store_id, cart)
            if not validation.is_valid:
                setup = [e for e in validation.errors if e.kind in RESOLUTION_KINDS]
                if setup:
                    raise HTTPException(
                        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                        detail={"kind": setup[0].kind, "message": setup[0].message, "validation": _serialize_validation(validation)},
                    )
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail={"kind": "validation_failed", "validation": _serialize_validation(validation)},
                )
            outcome = await engine.checkout_deduct(store_id, lines, payload.sale_reference)
    except HTTPException:
        raise
    except ResolutionError as e:
        raise resolution_http_error(e)
    except InventoryIOError as e:
        raise io_http_error(e)
    except Exception:
        logger.exception("Checkout for sale %s failed", payload.sale_reference)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Checkout failed")

    body = _serialize_outcome(outcome)
    if not outcome.success:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"kind": "deduction_failed", "outcome": body})
    return body
