from typing import Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from core.errors import InventoryIOError
from routers.deps import get_inventory_engine, io_http_error
from services.domain import RequirementLine
from services.engine import InventoryEngine

router = APIRouter()


def _serialize_requirement(line: RequirementLine) -> Dict:
    return {
        "ingredient_name": line.ingredient_name,
        "quantity": line.quantity,
        "unit": line.unit,
        "group_name": line.group_name,
        "selection_type": line.selection_type,
        "supports_fractional": line.supports_fractional,
    }


@router.get("/recipes/{recipe_id}/requirements", response_model=Dict)
async def get_recipe_requirements(recipe_id: UUID, engine: InventoryEngine = Depends(get_inventory_engine)):
    try:
        lines, groups = await engine.recipe_requirements(recipe_id)
    except InventoryIOError as e:
        raise io_http_error(e)
    if not lines and not groups:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipe not found")

    return {
        "recipe_id": str(recipe_id),
        "base": [_serialize_requirement(l) for l in lines if l.group_name is None],
        "groups": [
            {
                "name": g.name,
                "selection_type": g.selection_type,
                "options": [_serialize_requirement(o) for o in g.options],
            }
            for g in groups
        ],
    }
