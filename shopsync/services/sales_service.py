"""
Sales Service
Manual sale entry, administrative edits and sale queries

Marketplace sales are created by the sync orchestrator through
``sale_from_order``; every other channel goes through ``create_sale``.
Fulfillment status is never edited here, only through transitions.
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from shopsync.connectors.base_connector import CustomerCandidate, NormalizedOrder
from shopsync.models.enums import FulfillmentStatus, PaymentStatus, SaleStatus, SalesChannel
from shopsync.models.sale import Sale, SaleItem
from shopsync.services.channel_metrics_service import SalesFilter
from shopsync.services.customer_resolver import CustomerResolver
from shopsync.utils.errors import NotFoundError, ValidationError
from shopsync.utils.logger import log

EDITABLE_FIELDS = {
    "notes",
    "tags",
    "payment_status",
    "sale_status",
    "due_date",
    "shipping_address",
    "shipping_method",
}


def validate_amounts(total_amount: int, platform_fees: int = 0, taxes: int = 0, shipping: int = 0):
    for name, value in (
        ("total_amount", total_amount),
        ("platform_fees", platform_fees),
        ("taxes", taxes),
        ("shipping", shipping),
    ):
        if value is None or int(value) < 0:
            raise ValidationError(f"{name} must be a non-negative amount", field=name)
    if platform_fees > total_amount:
        raise ValidationError("platform_fees cannot exceed total_amount", field="platform_fees")


def validate_item(name: Optional[str], quantity: Any, unit_price: Any):
    if not name:
        raise ValidationError("Line item name is required")
    if quantity is None or int(quantity) < 1:
        raise ValidationError(f"Quantity for '{name}' must be at least 1", field="quantity")
    if unit_price is None or int(unit_price) < 0:
        raise ValidationError(f"Unit price for '{name}' must be non-negative", field="unit_price")


def sale_from_order(order: NormalizedOrder, customer_id: int) -> Sale:
    """Build (not persist) a Pending sale for a normalized marketplace order."""
    validate_amounts(order.total_amount, order.platform_fees, order.taxes, order.shipping)

    sale = Sale(
        channel=order.channel.value,
        external_order_id=order.external_order_id,
        customer_id=customer_id,
        fulfillment_status=FulfillmentStatus.PENDING.value,
        payment_status=order.payment_status.value,
        sale_status=order.sale_status.value,
        currency=order.currency,
        order_url=order.order_url,
        notes=order.notes,
        tags=list(order.tags),
        shipping_address=order.shipping_address,
        shipping_method=order.shipping_method,
        ordered_at=order.ordered_at,
    )
    sale.set_amounts(order.total_amount, order.platform_fees, order.taxes, order.shipping)

    for position, item in enumerate(order.items):
        validate_item(item.name, item.quantity, item.unit_price)
        sale.items.append(SaleItem(
            position=position,
            name=item.name,
            sku=item.sku,
            quantity=item.quantity,
            unit_price=item.unit_price,
            notes=item.notes,
        ))
    return sale


class SalesService:
    """Service for manual sales and sale lookups"""

    def __init__(
        self,
        db: Session,
        resolver: CustomerResolver,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.db = db
        self.resolver = resolver
        self.on_change = on_change

    def get_sale(self, sale_id: int) -> Sale:
        sale = self.db.get(Sale, sale_id)
        if sale is None:
            raise NotFoundError("Sale", sale_id)
        return sale

    def list_sales(
        self,
        sales_filter: Optional[SalesFilter] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Sale]:
        query = (sales_filter or SalesFilter()).apply(self.db.query(Sale))
        return query.order_by(Sale.created_at.desc(), Sale.id.desc()).offset(offset).limit(limit).all()

    async def create_sale(
        self,
        channel: SalesChannel,
        items: List[Dict[str, Any]],
        customer_id: Optional[int] = None,
        customer: Optional[CustomerCandidate] = None,
        total_amount: Optional[int] = None,
        platform_fees: int = 0,
        taxes: int = 0,
        shipping: int = 0,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        notes: Optional[str] = None,
        tags: Optional[List[str]] = None,
        due_date: Optional[datetime] = None,
    ) -> Sale:
        """
        Create a Pending sale entered by hand (direct, wholesale, custom order...).

        ``total_amount`` defaults to items + shipping + taxes.
        """
        channel = SalesChannel(channel)
        if channel.is_marketplace:
            raise ValidationError(f"{channel.value} sales are imported by sync, not entered manually")
        if not items:
            raise ValidationError("A sale needs at least one line item")
        for item in items:
            validate_item(item.get("name"), item.get("quantity"), item.get("unit_price"))

        if total_amount is None:
            total_amount = sum(int(i["quantity"]) * int(i["unit_price"]) for i in items) + shipping + taxes
        validate_amounts(total_amount, platform_fees, taxes, shipping)

        if customer_id is not None:
            record = self.resolver.get_customer(customer_id)
            if record is None:
                raise NotFoundError("Customer", customer_id)
        elif customer is not None:
            record = await self.resolver.find_or_create(channel.value, None, customer)
        else:
            raise ValidationError("Either customer_id or customer details are required")

        sale = Sale(
            channel=channel.value,
            customer_id=record.id,
            fulfillment_status=FulfillmentStatus.PENDING.value,
            payment_status=PaymentStatus(payment_status).value,
            sale_status=SaleStatus.CONFIRMED.value,
            notes=notes,
            tags=tags or [],
            due_date=due_date,
            ordered_at=datetime.utcnow(),
        )
        sale.set_amounts(total_amount, platform_fees, taxes, shipping)
        for position, item in enumerate(items):
            sale.items.append(SaleItem(
                position=position,
                name=item["name"],
                sku=item.get("sku"),
                quantity=int(item["quantity"]),
                unit_price=int(item["unit_price"]),
                notes=item.get("notes"),
            ))

        self.db.add(sale)
        self.db.commit()
        log.info(f"Created {channel.value} sale {sale.id} for customer {record.id} ({total_amount} minor units)")

        if self.on_change:
            self.on_change()
        return sale

    def update_sale(self, sale_id: int, changes: Dict[str, Any]) -> Sale:
        """Administrative edit of non-lifecycle fields"""
        if "fulfillment_status" in changes:
            raise ValidationError("Fulfillment status can only change through a transition")
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")

        sale = self.get_sale(sale_id)
        for key, value in changes.items():
            try:
                if key == "payment_status" and value is not None:
                    value = PaymentStatus(value).value
                elif key == "sale_status" and value is not None:
                    value = SaleStatus(value).value
            except ValueError:
                raise ValidationError(f"Invalid {key.replace('_', ' ')} '{value}'", field=key)
            setattr(sale, key, value)

        self.db.commit()
        log.info(f"Updated sale {sale_id}: {', '.join(sorted(changes))}")

        if self.on_change:
            self.on_change()
        return sale
