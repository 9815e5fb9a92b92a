"""
Sales, fulfillment transition and channel metrics endpoints

Amounts are integer minor units (cents).
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from shopsync.connectors.base_connector import CustomerCandidate
from shopsync.models.base import get_db
from shopsync.models.enums import FulfillmentStatus, PaymentStatus, SaleStatus, SalesChannel
from shopsync.services.channel_metrics_service import SalesFilter
from shopsync.services.fulfillment_service import TransitionContext
from shopsync.services.runtime import ServiceRuntime, get_runtime

router = APIRouter(prefix="/sales", tags=["sales"])


# ── Schemas ──────────────────────────────────────────────

class SaleItemIn(BaseModel):
    name: str
    quantity: int = Field(1, ge=1)
    unit_price: int = Field(..., ge=0)
    sku: Optional[str] = None
    notes: Optional[str] = None


class CustomerIn(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None


class CreateSaleRequest(BaseModel):
    channel: SalesChannel
    items: List[SaleItemIn]
    customer_id: Optional[int] = None
    customer: Optional[CustomerIn] = None
    total_amount: Optional[int] = Field(None, ge=0)
    platform_fees: int = Field(0, ge=0)
    taxes: int = Field(0, ge=0)
    shipping: int = Field(0, ge=0)
    payment_status: PaymentStatus = PaymentStatus.PENDING
    notes: Optional[str] = None
    tags: List[str] = []
    due_date: Optional[datetime] = None


class UpdateSaleRequest(BaseModel):
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    payment_status: Optional[PaymentStatus] = None
    sale_status: Optional[SaleStatus] = None
    due_date: Optional[datetime] = None
    shipping_address: Optional[Dict[str, Any]] = None
    shipping_method: Optional[str] = None


class TransitionRequest(BaseModel):
    target_status: FulfillmentStatus
    tracking_number: Optional[str] = None
    shipping_provider: Optional[str] = None
    notes: Optional[str] = None


def _sales_filter(
    channel: Optional[SalesChannel] = Query(None),
    fulfillment_status: Optional[FulfillmentStatus] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    customer_id: Optional[int] = Query(None),
) -> SalesFilter:
    return SalesFilter(
        channel=channel,
        fulfillment_status=fulfillment_status,
        payment_status=payment_status,
        date_from=date_from,
        date_to=date_to,
        customer_id=customer_id,
    )


# ── Metrics ──────────────────────────────────────────────
# Registered before /{sale_id} so the path is not read as an id

@router.get("/metrics/channels")
async def channel_metrics(
    sales_filter: SalesFilter = Depends(_sales_filter),
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    """Orders, revenue, average order value, fees and share of total per channel"""
    return runtime.metrics(db).report(sales_filter)


# ── Sales ────────────────────────────────────────────────

@router.get("")
async def list_sales(
    sales_filter: SalesFilter = Depends(_sales_filter),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    sales = runtime.sales(db).list_sales(sales_filter, limit=limit, offset=offset)
    return {"sales": [sale.to_dict() for sale in sales], "count": len(sales)}


@router.post("", status_code=201)
async def create_sale(
    body: CreateSaleRequest,
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    """Enter a direct, wholesale or custom-order sale"""
    customer = CustomerCandidate(**body.customer.model_dump()) if body.customer else None
    sale = await runtime.sales(db).create_sale(
        channel=body.channel,
        items=[item.model_dump() for item in body.items],
        customer_id=body.customer_id,
        customer=customer,
        total_amount=body.total_amount,
        platform_fees=body.platform_fees,
        taxes=body.taxes,
        shipping=body.shipping,
        payment_status=body.payment_status,
        notes=body.notes,
        tags=body.tags,
        due_date=body.due_date,
    )
    return sale.to_dict()


@router.get("/{sale_id}")
async def get_sale(sale_id: int, db: Session = Depends(get_db), runtime: ServiceRuntime = Depends(get_runtime)):
    return runtime.sales(db).get_sale(sale_id).to_dict()


@router.get("/{sale_id}/materials")
async def sale_material_availability(
    sale_id: int,
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    """Whether on-hand stock covers the sale's material requirements"""
    sale = runtime.sales(db).get_sale(sale_id)
    report = await runtime.inventory(db).check_material_availability(sale.id)
    return {"sale_id": sale.id, **report.to_dict()}


@router.patch("/{sale_id}")
async def update_sale(
    sale_id: int,
    body: UpdateSaleRequest,
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    changes = body.model_dump(exclude_unset=True, mode="json")
    if "due_date" in changes and body.due_date is not None:
        changes["due_date"] = body.due_date
    sale = runtime.sales(db).update_sale(sale_id, changes)
    return sale.to_dict()


@router.post("/{sale_id}/transition")
async def transition_sale(
    sale_id: int,
    body: TransitionRequest,
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    """
    Move a sale to another fulfillment status.

    Shipping requires tracking_number and shipping_provider.
    """
    context = TransitionContext(
        tracking_number=body.tracking_number,
        shipping_provider=body.shipping_provider,
        notes=body.notes,
    )
    sale = await runtime.state_machine(db).transition(sale_id, body.target_status, context)
    return sale.to_dict()
