"""
Enumerations shared by models, services and the API.

Values are the lowercase strings stored in the database and sent over the wire.
"""
from enum import Enum


class SalesChannel(str, Enum):
    SHOPIFY = "shopify"
    ETSY = "etsy"
    AMAZON = "amazon"
    EBAY = "ebay"
    DIRECT = "direct"
    WHOLESALE = "wholesale"
    CUSTOM_ORDER = "custom_order"
    OTHER = "other"

    @property
    def is_marketplace(self) -> bool:
        return self in MARKETPLACE_CHANNELS


MARKETPLACE_CHANNELS = frozenset({
    SalesChannel.SHOPIFY,
    SalesChannel.ETSY,
    SalesChannel.AMAZON,
    SalesChannel.EBAY,
})


class FulfillmentStatus(str, Enum):
    PENDING = "pending"
    PICKING = "picking"
    IN_PRODUCTION = "in_production"
    READY_TO_SHIP = "ready_to_ship"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    RETURNED = "returned"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    DEPOSIT_PENDING = "deposit_pending"
    DEPOSIT_PAID = "deposit_paid"
    BALANCE_PENDING = "balance_pending"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    OVERDUE = "overdue"
    REFUND_REQUESTED = "refund_requested"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class SaleStatus(str, Enum):
    INQUIRY = "inquiry"
    QUOTE_REQUEST = "quote_request"
    CONFIRMED = "confirmed"
    DEPOSIT_RECEIVED = "deposit_received"
    IN_PROGRESS = "in_progress"
    IN_PRODUCTION = "in_production"
    READY_FOR_PICKUP = "ready_for_pickup"
    ON_HOLD = "on_hold"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class CustomerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    POTENTIAL = "potential"
    FIRST_PURCHASE = "first_purchase"
    RETURNING = "returning"
    WHOLESALE = "wholesale"
    BLOCKED = "blocked"


class CustomerTier(str, Enum):
    NEW = "new"
    STANDARD = "standard"
    PREMIUM = "premium"
    VIP = "vip"
    WHOLESALE = "wholesale"


class CustomerSource(str, Enum):
    WEBSITE = "website"
    ONLINE_STORE = "online_store"
    MARKETPLACE = "marketplace"
    ETSY = "etsy"
    SHOPIFY = "shopify"
    RETAIL = "retail"
    REFERRAL = "referral"
    WORD_OF_MOUTH = "word_of_mouth"
    OTHER = "other"


class PickingListStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_open(self) -> bool:
        return self not in (PickingListStatus.COMPLETED, PickingListStatus.CANCELLED)


OPEN_PICKING_LIST_STATUSES = (PickingListStatus.PENDING.value, PickingListStatus.IN_PROGRESS.value)


class PickingListItemStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETE = "complete"


class ReservationStatus(str, Enum):
    RESERVED = "reserved"
    CONSUMED = "consumed"
    RELEASED = "released"
