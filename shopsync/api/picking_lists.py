"""
Picking list endpoints
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from shopsync.models.base import get_db
from shopsync.services.runtime import ServiceRuntime, get_runtime

router = APIRouter(prefix="/picking-lists", tags=["picking-lists"])


class CreatePickingListRequest(BaseModel):
    sale_id: int
    notes: Optional[str] = None


class PickedQuantityRequest(BaseModel):
    quantity_picked: int = Field(..., ge=0)


class AssignRequest(BaseModel):
    assignee: str


class CompleteRequest(BaseModel):
    override: bool = False


@router.post("", status_code=201)
async def create_picking_list(
    body: CreatePickingListRequest,
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    """Create a picking list without moving the sale (use the picking transition for that)"""
    picking_list = await runtime.picking_lists(db).create(body.sale_id, notes=body.notes)
    return picking_list.to_dict()


@router.get("/{list_id}")
async def get_picking_list(list_id: int, db: Session = Depends(get_db), runtime: ServiceRuntime = Depends(get_runtime)):
    return runtime.picking_lists(db).get(list_id).to_dict()


@router.patch("/{list_id}/items/{item_id}")
async def update_item_quantity(
    list_id: int,
    item_id: int,
    body: PickedQuantityRequest,
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    picking_list = runtime.picking_lists(db).update_item_quantity(list_id, item_id, body.quantity_picked)
    return picking_list.to_dict()


@router.post("/{list_id}/assign")
async def assign_picking_list(
    list_id: int,
    body: AssignRequest,
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    return runtime.picking_lists(db).assign(list_id, body.assignee).to_dict()


@router.post("/{list_id}/complete")
async def complete_picking_list(
    list_id: int,
    body: Optional[CompleteRequest] = None,
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    override = body.override if body else False
    return runtime.picking_lists(db).complete(list_id, override=override).to_dict()


@router.post("/{list_id}/cancel")
async def cancel_picking_list(list_id: int, db: Session = Depends(get_db), runtime: ServiceRuntime = Depends(get_runtime)):
    return runtime.picking_lists(db).cancel(list_id).to_dict()
