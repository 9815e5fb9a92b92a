"""
Amazon Selling Partner API order connector

Orders come from the Orders v0 API (NextToken paging). Line items are not
embedded in the order list, so each page fetches them per order and attaches
them under ``OrderItems`` before normalization.
"""
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime

from shopsync.connectors.base_connector import (
    CustomerCandidate,
    NormalizedItem,
    NormalizedOrder,
    PlatformConnector,
    PlatformCredentials,
    settings,
)
from shopsync.models.enums import PaymentStatus, SaleStatus, SalesChannel
from shopsync.utils.errors import ValidationError
from shopsync.utils.helpers import parse_datetime, percentage_of, to_minor_units
from shopsync.utils.logger import log

REGION_ENDPOINTS = {
    "na": "https://sellingpartnerapi-na.amazon.com",
    "eu": "https://sellingpartnerapi-eu.amazon.com",
    "fe": "https://sellingpartnerapi-fe.amazon.com",
}

# Approximate referral fee
AMAZON_FEE_RATE = "0.15"

SALE_STATUS_MAP = {
    "Pending": SaleStatus.INQUIRY,
    "Unshipped": SaleStatus.CONFIRMED,
    "PartiallyShipped": SaleStatus.IN_PROGRESS,
    "Shipped": SaleStatus.SHIPPED,
    "Canceled": SaleStatus.CANCELLED,
    "Unfulfillable": SaleStatus.ON_HOLD,
}


def _amount(money: Optional[Dict[str, Any]]) -> int:
    return to_minor_units((money or {}).get("Amount"))


class AmazonConnector(PlatformConnector):
    """Connector for Amazon Seller Central"""

    channel = SalesChannel.AMAZON
    display_name = "Amazon"
    docs_url = "https://developer-docs.amazon.com/sp-api/"
    token_url = "https://api.amazon.com/auth/o2/token"

    @property
    def api_base(self) -> str:
        region = (self.config.region or settings.amazon_default_region).lower()
        if region not in REGION_ENDPOINTS:
            raise ValidationError(f"Unknown Amazon region '{region}'")
        return REGION_ENDPOINTS[region]

    @property
    def marketplace_id(self) -> str:
        if not self.config.marketplace_id:
            raise ValidationError("Amazon marketplace id is not configured")
        return self.config.marketplace_id

    def _headers(self, creds: PlatformCredentials) -> Dict[str, str]:
        return {
            "x-amz-access-token": creds.access_token,
            "Accept": "application/json",
        }

    async def _fetch_page(
        self, creds: PlatformCredentials, since: datetime, cursor: Optional[str]
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        params: Dict[str, Any] = {"MarketplaceIds": self.marketplace_id}
        if cursor:
            params["NextToken"] = cursor
        else:
            params["LastUpdatedAfter"] = since.isoformat()
            params["MaxResultsPerPage"] = min(self.page_size, 100)

        body, _ = await self._request(
            "GET",
            f"{self.api_base}/orders/v0/orders",
            operation_name="fetch orders",
            headers=self._headers(creds),
            params=params,
        )
        payload = (body or {}).get("payload") or {}
        orders = payload.get("Orders", [])

        for order in orders:
            order["OrderItems"] = await self._fetch_order_items(creds, order["AmazonOrderId"])

        return orders, payload.get("NextToken")

    async def _fetch_order_items(self, creds: PlatformCredentials, amazon_order_id: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        next_token = None
        while True:
            params = {"NextToken": next_token} if next_token else None
            body, _ = await self._request(
                "GET",
                f"{self.api_base}/orders/v0/orders/{amazon_order_id}/orderItems",
                operation_name="fetch order items",
                headers=self._headers(creds),
                params=params,
            )
            payload = (body or {}).get("payload") or {}
            items.extend(payload.get("OrderItems", []))
            next_token = payload.get("NextToken")
            if not next_token:
                return items

    @staticmethod
    def _payment_status(raw: Dict[str, Any]) -> PaymentStatus:
        if raw.get("OrderStatus") == "Canceled":
            return PaymentStatus.CANCELLED
        if raw.get("PaymentMethod") == "COD":
            return PaymentStatus.PENDING
        # Amazon collects payment before releasing the order to the seller
        return PaymentStatus.PAID

    def normalize_order(self, raw: Dict[str, Any]) -> NormalizedOrder:
        order_items = raw.get("OrderItems", [])
        buyer = raw.get("BuyerInfo") or {}
        address = raw.get("ShippingAddress")
        email = (buyer.get("BuyerEmail") or "").strip() or None

        items = []
        shipping = 0
        taxes = 0
        for item in order_items:
            quantity = int(item.get("QuantityOrdered", 1))
            # ItemPrice is the line total
            line_total = _amount(item.get("ItemPrice"))
            items.append(NormalizedItem(
                name=item.get("Title") or "Item",
                sku=item.get("SellerSKU") or item.get("ASIN"),
                quantity=quantity,
                unit_price=line_total // quantity if quantity else line_total,
                notes=item.get("ConditionNote"),
            ))
            shipping += _amount(item.get("ShippingPrice"))
            taxes += _amount(item.get("ItemTax")) + _amount(item.get("ShippingTax"))

        total = _amount(raw.get("OrderTotal"))

        tags = []
        if raw.get("IsPrime"):
            tags.append("prime")
        if raw.get("MarketplaceId"):
            tags.append(f"marketplace:{raw['MarketplaceId']}")
        if raw.get("OrderType"):
            tags.append(f"type:{raw['OrderType']}")
        if raw.get("IsBusinessOrder"):
            tags.append("business")

        return NormalizedOrder(
            channel=self.channel,
            external_order_id=raw["AmazonOrderId"],
            # Amazon has no stable buyer id; the buyer email stands in for one
            external_customer_id=email.lower() if email else None,
            customer=CustomerCandidate(
                name=buyer.get("BuyerName") or (address or {}).get("Name") or "Amazon Customer",
                email=email,
                phone=(address or {}).get("Phone"),
            ),
            items=items,
            total_amount=total,
            platform_fees=percentage_of(total, AMAZON_FEE_RATE),
            taxes=taxes,
            shipping=shipping,
            currency=(raw.get("OrderTotal") or {}).get("CurrencyCode") or "USD",
            payment_status=self._payment_status(raw),
            sale_status=SALE_STATUS_MAP.get(raw.get("OrderStatus"), SaleStatus.INQUIRY),
            ordered_at=parse_datetime(raw.get("PurchaseDate")),
            order_url=f"https://sellercentral.amazon.com/orders-v3/order/{raw['AmazonOrderId']}",
            tags=tags,
            shipping_address={
                "street": ", ".join(p for p in (address.get("AddressLine1"), address.get("AddressLine2")) if p),
                "city": address.get("City") or "",
                "state": address.get("StateOrRegion") or "",
                "postal_code": address.get("PostalCode") or "",
                "country": address.get("CountryCode") or "",
            } if address else None,
            shipping_method=raw.get("ShipmentServiceLevelCategory"),
        )

    async def update_fulfillment(
        self, external_order_id: str, tracking_number: str, shipping_provider: str
    ) -> bool:
        with self.unlocked_credentials() as creds:
            order_items = await self._fetch_order_items(creds, external_order_id)
            payload = {
                "marketplaceId": self.marketplace_id,
                "packageDetail": {
                    "packageReferenceId": "1",
                    "carrierCode": shipping_provider,
                    "trackingNumber": tracking_number,
                    "shipDate": datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ"),
                    "orderItems": [
                        {"orderItemId": item["OrderItemId"], "quantity": int(item.get("QuantityOrdered", 1))}
                        for item in order_items
                    ],
                },
            }
            await self._request(
                "POST",
                f"{self.api_base}/orders/v0/orders/{external_order_id}/shipmentConfirmation",
                operation_name="confirm shipment",
                headers=self._headers(creds),
                json_body=payload,
            )
        log.info(f"Amazon order {external_order_id} shipment confirmed")
        return True

    def _auth_base_url(self) -> str:
        return "https://sellercentral.amazon.com/apps/authorize/consent"

    def _auth_params(self, redirect_uri: str, scopes: List[str], state: Optional[str]) -> Dict[str, str]:
        # Seller Central consent takes the application id, not OAuth scopes
        params = {
            "application_id": self.config.api_key or "",
            "redirect_uri": redirect_uri,
        }
        if state:
            params["state"] = state
        return params
