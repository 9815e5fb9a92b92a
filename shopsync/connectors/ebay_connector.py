"""
eBay order connector
Sell Fulfillment API orders, offset-paginated
"""
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime
import base64

from shopsync.connectors.base_connector import (
    CustomerCandidate,
    NormalizedItem,
    NormalizedOrder,
    PlatformConnector,
    PlatformCredentials,
    join_notes,
)
from shopsync.models.enums import PaymentStatus, SaleStatus, SalesChannel
from shopsync.utils.helpers import parse_datetime, percentage_of, to_minor_units
from shopsync.utils.logger import log

API_BASE = "https://api.ebay.com/sell/fulfillment/v1"

# Used when the order carries no totalFeeBasisAmount
EBAY_FEE_RATE = "0.10"

PAYMENT_STATUS_MAP = {
    "FULLY_PAID": PaymentStatus.PAID,
    "PARTIALLY_PAID": PaymentStatus.PARTIALLY_PAID,
    "NOT_PAID": PaymentStatus.PENDING,
    "PENDING": PaymentStatus.PENDING,
    "FAILED": PaymentStatus.PENDING,
    "REFUNDED": PaymentStatus.REFUNDED,
    "PARTIALLY_REFUNDED": PaymentStatus.PARTIALLY_REFUNDED,
}


def _value(amount: Optional[Dict[str, Any]]) -> int:
    return to_minor_units((amount or {}).get("value"))


def _ship_to_step(raw: Dict[str, Any]) -> Dict[str, Any]:
    for instruction in raw.get("fulfillmentStartInstructions") or []:
        if instruction.get("fulfillmentInstructionsType") == "SHIP_TO":
            return instruction.get("shippingStep") or {}
    return {}


class EbayConnector(PlatformConnector):
    """Connector for eBay sellers"""

    channel = SalesChannel.EBAY
    display_name = "eBay"
    docs_url = "https://developer.ebay.com/api-docs/sell/fulfillment/overview.html"
    default_scopes = ["https://api.ebay.com/oauth/api_scope/sell.fulfillment"]
    token_url = "https://api.ebay.com/identity/v1/oauth2/token"

    def _headers(self, creds: PlatformCredentials) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {creds.access_token}",
            "Accept": "application/json",
        }

    async def _fetch_page(
        self, creds: PlatformCredentials, since: datetime, cursor: Optional[int]
    ) -> Tuple[List[Dict[str, Any]], Optional[int]]:
        offset = cursor or 0
        body, _ = await self._request(
            "GET",
            f"{API_BASE}/order",
            operation_name="fetch orders",
            headers=self._headers(creds),
            params={
                "filter": f"lastmodifieddate:[{since.strftime('%Y-%m-%dT%H:%M:%S.000Z')}..]",
                "limit": self.page_size,
                "offset": offset,
            },
        )
        body = body or {}
        orders = body.get("orders", [])
        next_offset = offset + len(orders)
        if not orders or not body.get("next") or next_offset >= int(body.get("total", 0)):
            return orders, None
        return orders, next_offset

    @staticmethod
    def _sale_status(raw: Dict[str, Any]) -> SaleStatus:
        if (raw.get("cancelStatus") or {}).get("cancelState") == "COMPLETE":
            return SaleStatus.CANCELLED
        fulfillment = raw.get("orderFulfillmentStatus")
        if fulfillment == "FULFILLED":
            return SaleStatus.SHIPPED
        if fulfillment == "IN_PROGRESS":
            return SaleStatus.IN_PROGRESS
        if fulfillment == "NOT_STARTED" and raw.get("orderPaymentStatus") == "FULLY_PAID":
            return SaleStatus.CONFIRMED
        return SaleStatus.INQUIRY

    def normalize_order(self, raw: Dict[str, Any]) -> NormalizedOrder:
        step = _ship_to_step(raw)
        ship_to = step.get("shipTo") or {}
        contact = ship_to.get("contactAddress") or ship_to
        phone = (ship_to.get("primaryPhone") or {}).get("phoneNumber") or ship_to.get("phoneNumber")

        items = []
        for item in raw.get("lineItems", []):
            quantity = int(item.get("quantity", 1))
            line_total = _value(item.get("lineItemCost"))
            items.append(NormalizedItem(
                name=item.get("title") or "Item",
                sku=item.get("sku") or f"EBAY-{item.get('legacyItemId')}",
                quantity=quantity,
                unit_price=line_total // quantity if quantity else line_total,
                notes=join_notes(item.get("properties") or []),
            ))

        pricing = raw.get("pricingSummary") or {}
        total = _value(pricing.get("total"))
        if raw.get("totalFeeBasisAmount"):
            fees = _value(raw["totalFeeBasisAmount"])
        else:
            fees = percentage_of(total, EBAY_FEE_RATE)

        external_id = raw.get("legacyOrderId") or raw["orderId"]
        username = (raw.get("buyer") or {}).get("username")

        carrier, service = step.get("shippingCarrierCode"), step.get("shippingServiceCode")
        shipping_method = " - ".join(p for p in (carrier, service) if p) or None

        tags = []
        if raw.get("salesRecordReference"):
            tags.append(f"srn:{raw['salesRecordReference']}")

        return NormalizedOrder(
            channel=self.channel,
            external_order_id=external_id,
            external_customer_id=username,
            customer=CustomerCandidate(
                name=ship_to.get("fullName") or username or "",
                email=ship_to.get("email"),
                phone=phone,
            ),
            items=items,
            total_amount=total,
            platform_fees=fees,
            taxes=_value(pricing.get("tax")),
            shipping=_value(pricing.get("deliveryCost")),
            currency=(pricing.get("total") or {}).get("currency") or "USD",
            payment_status=PAYMENT_STATUS_MAP.get(raw.get("orderPaymentStatus"), PaymentStatus.PENDING),
            sale_status=self._sale_status(raw),
            ordered_at=parse_datetime(raw.get("creationDate")),
            order_url=f"https://www.ebay.com/sh/ord/?orderid={external_id}",
            tags=tags,
            shipping_address={
                "street": ", ".join(p for p in (contact.get("addressLine1"), contact.get("addressLine2")) if p),
                "city": contact.get("city") or "",
                "state": contact.get("stateOrProvince") or "",
                "postal_code": contact.get("postalCode") or "",
                "country": contact.get("countryCode") or "",
            } if contact.get("addressLine1") else None,
            shipping_method=shipping_method,
        )

    async def update_fulfillment(
        self, external_order_id: str, tracking_number: str, shipping_provider: str
    ) -> bool:
        with self.unlocked_credentials() as creds:
            headers = self._headers(creds)
            order, _ = await self._request(
                "GET",
                f"{API_BASE}/order/{external_order_id}",
                operation_name="fetch order",
                headers=headers,
            )
            payload = {
                "lineItems": [
                    {"lineItemId": item["lineItemId"], "quantity": int(item.get("quantity", 1))}
                    for item in (order or {}).get("lineItems", [])
                ],
                "shippedDate": datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%S.000Z"),
                "shippingCarrierCode": shipping_provider,
                "trackingNumber": tracking_number,
            }
            await self._request(
                "POST",
                f"{API_BASE}/order/{external_order_id}/shipping_fulfillment",
                operation_name="create shipping fulfillment",
                headers=headers,
                json_body=payload,
            )
        log.info(f"eBay order {external_order_id} shipping fulfillment created")
        return True

    def _auth_base_url(self) -> str:
        return "https://auth.ebay.com/oauth2/authorize"

    def _token_request(self, code: str, redirect_uri: str, client_secret: Optional[str]) -> Dict[str, Any]:
        basic = base64.b64encode(f"{self.config.api_key or ''}:{client_secret or ''}".encode()).decode()
        return {
            "headers": {
                "Authorization": f"Basic {basic}",
                "Accept": "application/json",
            },
            "data": {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
        }
