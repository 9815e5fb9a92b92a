"""
Sales Data Models

One row per purchase order, whatever channel it came from. Marketplace
orders carry their (channel, external_order_id) pair, which is the dedup key
for sync. Money is stored as integer minor units (cents).
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from shopsync.models.base import Base
from shopsync.models.enums import FulfillmentStatus, PaymentStatus, SaleStatus, SalesChannel


class Sale(Base):
    """A purchase order from any sales channel"""
    __tablename__ = "sales"
    __table_args__ = (
        UniqueConstraint("channel", "external_order_id", name="uq_sales_channel_external_order"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Origin
    channel = Column(String, index=True, nullable=False, default=SalesChannel.DIRECT.value)
    external_order_id = Column(String, index=True, nullable=True)  # Marketplace order id
    order_url = Column(Text, nullable=True)

    # Customer
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True, nullable=False)

    # Status
    fulfillment_status = Column(String, index=True, nullable=False, default=FulfillmentStatus.PENDING.value)
    payment_status = Column(String, index=True, nullable=False, default=PaymentStatus.PENDING.value)
    sale_status = Column(String, index=True, nullable=False, default=SaleStatus.CONFIRMED.value)

    # Amounts (minor units)
    total_amount = Column(Integer, nullable=False, default=0)
    taxes = Column(Integer, nullable=False, default=0)
    shipping = Column(Integer, nullable=False, default=0)
    platform_fees = Column(Integer, nullable=False, default=0)
    net_revenue = Column(Integer, nullable=False, default=0)  # total_amount - platform_fees
    currency = Column(String, default="USD")

    # Picking list summary (at most one open list per sale)
    picking_list_id = Column(Integer, nullable=True)
    picking_list_status = Column(String, nullable=True)

    # Shipping
    shipping_method = Column(String, nullable=True)
    shipping_provider = Column(String, nullable=True)
    tracking_number = Column(String, nullable=True)
    shipping_address = Column(JSON, nullable=True)  # {street, city, state, postal_code, country}

    # Misc
    notes = Column(Text, nullable=True)
    tags = Column(JSON, nullable=True)

    # Timestamps
    ordered_at = Column(DateTime, index=True, nullable=True)  # When the buyer placed the order
    due_date = Column(DateTime, nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    completed_date = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    returned_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("Customer", back_populates="sales")
    items = relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.position",
        cascade="all, delete-orphan",
    )

    def set_amounts(self, total_amount: int, platform_fees: int = 0, taxes: int = 0, shipping: int = 0):
        """Set monetary fields and keep net_revenue derived."""
        self.total_amount = total_amount
        self.platform_fees = platform_fees
        self.taxes = taxes
        self.shipping = shipping
        self.net_revenue = total_amount - platform_fees

    @property
    def dedup_key(self):
        if not self.external_order_id:
            return None
        return (self.channel, self.external_order_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "channel": self.channel,
            "external_order_id": self.external_order_id,
            "order_url": self.order_url,
            "customer_id": self.customer_id,
            "fulfillment_status": self.fulfillment_status,
            "payment_status": self.payment_status,
            "sale_status": self.sale_status,
            "total_amount": self.total_amount,
            "taxes": self.taxes,
            "shipping": self.shipping,
            "platform_fees": self.platform_fees,
            "net_revenue": self.net_revenue,
            "currency": self.currency,
            "picking_list_id": self.picking_list_id,
            "picking_list_status": self.picking_list_status,
            "shipping_method": self.shipping_method,
            "shipping_provider": self.shipping_provider,
            "tracking_number": self.tracking_number,
            "shipping_address": self.shipping_address,
            "notes": self.notes,
            "tags": self.tags or [],
            "items": [item.to_dict() for item in self.items],
            "ordered_at": self.ordered_at.isoformat() if self.ordered_at else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "shipped_at": self.shipped_at.isoformat() if self.shipped_at else None,
            "completed_date": self.completed_date.isoformat() if self.completed_date else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "returned_at": self.returned_at.isoformat() if self.returned_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class SaleItem(Base):
    """Line item of a sale, ordered by position"""
    __tablename__ = "sale_items"

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), index=True, nullable=False)
    position = Column(Integer, nullable=False, default=0)

    name = Column(String, nullable=False)
    sku = Column(String, index=True, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)  # >= 1
    unit_price = Column(Integer, nullable=False, default=0)  # minor units, >= 0
    item_type = Column(String, default="PRODUCT")
    notes = Column(Text, nullable=True)

    sale = relationship("Sale", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "item_type": self.item_type,
            "notes": self.notes,
        }
