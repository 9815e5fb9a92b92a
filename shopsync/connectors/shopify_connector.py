"""
Shopify order connector
Fetches orders through the Admin REST API and confirms shipments via fulfillment orders
"""
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime
import re

from shopsync.connectors.base_connector import (
    CustomerCandidate,
    NormalizedItem,
    NormalizedOrder,
    PlatformConnector,
    PlatformCredentials,
    join_notes,
    settings,
)
from shopsync.models.enums import PaymentStatus, SaleStatus, SalesChannel
from shopsync.utils.errors import ValidationError
from shopsync.utils.helpers import parse_datetime, to_minor_units
from shopsync.utils.logger import log

_NEXT_LINK = re.compile(r'<([^>]+)>;\s*rel="next"')
_PAGE_INFO = re.compile(r"[?&]page_info=([^&]+)")

PAYMENT_STATUS_MAP = {
    "paid": PaymentStatus.PAID,
    "partially_paid": PaymentStatus.PARTIALLY_PAID,
    "pending": PaymentStatus.PENDING,
    "authorized": PaymentStatus.PENDING,
    "refunded": PaymentStatus.REFUNDED,
    "partially_refunded": PaymentStatus.PARTIALLY_REFUNDED,
    "voided": PaymentStatus.CANCELLED,
}


class ShopifyConnector(PlatformConnector):
    """Connector for Shopify stores"""

    channel = SalesChannel.SHOPIFY
    display_name = "Shopify"
    docs_url = "https://shopify.dev/docs/api/admin-rest"
    default_scopes = ["read_orders", "write_orders"]

    @property
    def shop_domain(self) -> str:
        shop = (self.config.shop_name or "").strip()
        if not shop:
            raise ValidationError("Shopify shop name is not configured")
        if shop.endswith(".myshopify.com"):
            return shop
        return f"{shop}.myshopify.com"

    @property
    def api_base(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{settings.shopify_api_version}"

    def _headers(self, creds: PlatformCredentials) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": creds.access_token,
            "Accept": "application/json",
        }

    async def _fetch_page(
        self, creds: PlatformCredentials, since: datetime, cursor: Optional[str]
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        # Shopify rejects filters alongside page_info: the cursor carries them
        if cursor:
            params = {"limit": self.page_size, "page_info": cursor}
        else:
            params = {
                "limit": self.page_size,
                "status": "any",
                "updated_at_min": since.isoformat(),
            }

        body, headers = await self._request(
            "GET",
            f"{self.api_base}/orders.json",
            operation_name="fetch orders",
            headers=self._headers(creds),
            params=params,
        )
        orders = (body or {}).get("orders", [])
        return orders, self._next_page_info(headers.get("link"))

    @staticmethod
    def _next_page_info(link_header: Optional[str]) -> Optional[str]:
        if not link_header:
            return None
        match = _NEXT_LINK.search(link_header)
        if not match:
            return None
        page_info = _PAGE_INFO.search(match.group(1))
        return page_info.group(1) if page_info else None

    def normalize_order(self, raw: Dict[str, Any]) -> NormalizedOrder:
        customer = raw.get("customer") or {}
        name = f"{customer.get('first_name') or ''} {customer.get('last_name') or ''}".strip()

        items = [
            NormalizedItem(
                name=item.get("title") or item.get("name") or "Item",
                sku=item.get("sku") or None,
                quantity=int(item.get("quantity", 1)),
                unit_price=to_minor_units(item.get("price")),
                notes=join_notes(item.get("properties") or []),
            )
            for item in raw.get("line_items", [])
        ]

        shipping_set = (raw.get("total_shipping_price_set") or {}).get("shop_money") or {}
        address = raw.get("shipping_address")

        return NormalizedOrder(
            channel=self.channel,
            external_order_id=str(raw["id"]),
            external_customer_id=str(customer["id"]) if customer.get("id") else None,
            customer=CustomerCandidate(
                name=name or (address or {}).get("name") or "",
                email=customer.get("email") or raw.get("email"),
                phone=customer.get("phone"),
            ),
            items=items,
            total_amount=to_minor_units(raw.get("total_price")),
            platform_fees=0,  # not exposed by the order API
            taxes=to_minor_units(raw.get("total_tax")),
            shipping=to_minor_units(shipping_set.get("amount")),
            currency=raw.get("currency") or "USD",
            payment_status=PAYMENT_STATUS_MAP.get(raw.get("financial_status"), PaymentStatus.PENDING),
            sale_status=SaleStatus.CANCELLED if raw.get("cancelled_at") else SaleStatus.IN_PROGRESS,
            ordered_at=parse_datetime(raw.get("created_at")),
            order_url=f"https://{self.shop_domain}/admin/orders/{raw['id']}",
            notes=raw.get("note") or None,
            tags=[t.strip() for t in (raw.get("tags") or "").split(",") if t.strip()],
            shipping_address={
                "street": ", ".join(p for p in (address.get("address1"), address.get("address2")) if p),
                "city": address.get("city") or "",
                "state": address.get("province") or "",
                "postal_code": address.get("zip") or "",
                "country": address.get("country") or "",
            } if address else None,
        )

    async def update_fulfillment(
        self, external_order_id: str, tracking_number: str, shipping_provider: str
    ) -> bool:
        with self.unlocked_credentials() as creds:
            headers = self._headers(creds)
            body, _ = await self._request(
                "GET",
                f"{self.api_base}/orders/{external_order_id}/fulfillment_orders.json",
                operation_name="fetch fulfillment orders",
                headers=headers,
            )
            open_orders = [
                fo for fo in (body or {}).get("fulfillment_orders", [])
                if fo.get("status") in ("open", "in_progress")
            ]
            if not open_orders:
                log.warning(f"Shopify order {external_order_id} has no open fulfillment orders")
                return False

            payload = {
                "fulfillment": {
                    "line_items_by_fulfillment_order": [
                        {"fulfillment_order_id": fo["id"]} for fo in open_orders
                    ],
                    "tracking_info": {"number": tracking_number, "company": shipping_provider},
                    "notify_customer": True,
                }
            }
            await self._request(
                "POST",
                f"{self.api_base}/fulfillments.json",
                operation_name="create fulfillment",
                headers=headers,
                json_body=payload,
            )
        log.info(f"Shopify order {external_order_id} marked fulfilled ({shipping_provider} {tracking_number})")
        return True

    def _auth_base_url(self) -> str:
        return f"https://{self.shop_domain}/admin/oauth/authorize"

    def _auth_params(self, redirect_uri: str, scopes: List[str], state: Optional[str]) -> Dict[str, str]:
        params = {
            "client_id": self.config.api_key or "",
            "scope": ",".join(scopes),
            "redirect_uri": redirect_uri,
        }
        if state:
            params["state"] = state
        return params

    def _token_url(self) -> str:
        return f"https://{self.shop_domain}/admin/oauth/access_token"

    def _token_request(self, code: str, redirect_uri: str, client_secret: Optional[str]) -> Dict[str, Any]:
        return {
            "headers": {"Accept": "application/json"},
            "json_body": {
                "client_id": self.config.api_key or "",
                "client_secret": client_secret or "",
                "code": code,
            },
        }
