"""
Etsy order connector
Receipts from the Open API v3, offset-paginated
"""
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime

from shopsync.connectors.base_connector import (
    CustomerCandidate,
    NormalizedItem,
    NormalizedOrder,
    PlatformConnector,
    PlatformCredentials,
    join_notes,
)
from shopsync.models.enums import PaymentStatus, SaleStatus, SalesChannel
from shopsync.utils.errors import ValidationError
from shopsync.utils.helpers import parse_datetime, percentage_of, to_minor_units
from shopsync.utils.logger import log

API_BASE = "https://openapi.etsy.com/v3/application"

# Approximate transaction + processing fee
ETSY_FEE_RATE = "0.065"


def etsy_money(value: Any) -> int:
    """Etsy money is {amount, divisor} (v3) or a bare major-unit number"""
    if isinstance(value, dict):
        divisor = value.get("divisor")
        if divisor:
            return to_minor_units(value.get("amount"), divisor=int(divisor))
        return to_minor_units(value.get("amount"))
    return to_minor_units(value)


class EtsyConnector(PlatformConnector):
    """Connector for Etsy shops"""

    channel = SalesChannel.ETSY
    display_name = "Etsy"
    docs_url = "https://developers.etsy.com/documentation/"
    default_scopes = ["transactions_r", "transactions_w"]
    token_url = "https://api.etsy.com/v3/public/oauth/token"

    @property
    def shop_id(self) -> str:
        if not self.config.store_id:
            raise ValidationError("Etsy shop id (store_id) is not configured")
        return self.config.store_id

    def _headers(self, creds: PlatformCredentials) -> Dict[str, str]:
        return {
            "x-api-key": self.config.api_key or "",
            "Authorization": f"Bearer {creds.access_token}",
            "Accept": "application/json",
        }

    async def _fetch_page(
        self, creds: PlatformCredentials, since: datetime, cursor: Optional[int]
    ) -> Tuple[List[Dict[str, Any]], Optional[int]]:
        offset = cursor or 0
        body, _ = await self._request(
            "GET",
            f"{API_BASE}/shops/{self.shop_id}/receipts",
            operation_name="fetch receipts",
            headers=self._headers(creds),
            params={
                "min_last_modified": int(since.timestamp()),
                "limit": self.page_size,
                "offset": offset,
            },
        )
        body = body or {}
        results = body.get("results", [])
        count = int(body.get("count", 0))
        next_offset = offset + len(results)
        if not results or next_offset >= count:
            return results, None
        return results, next_offset

    @staticmethod
    def _payment_status(status: str, was_paid: bool) -> PaymentStatus:
        if status == "canceled":
            return PaymentStatus.CANCELLED
        if not was_paid:
            return PaymentStatus.PENDING
        if status in ("paid", "completed"):
            return PaymentStatus.PAID
        return PaymentStatus.PENDING

    def normalize_order(self, raw: Dict[str, Any]) -> NormalizedOrder:
        status = (raw.get("status") or "").lower()
        was_paid = bool(raw.get("is_paid", raw.get("was_paid")))

        buyer = raw.get("buyer") or {}
        buyer_name = f"{buyer.get('first_name') or ''} {buyer.get('last_name') or ''}".strip()

        items = []
        for transaction in raw.get("transactions", []):
            items.append(NormalizedItem(
                name=transaction.get("title") or "Item",
                sku=transaction.get("sku") or f"ETSY-{transaction.get('listing_id')}",
                quantity=int(transaction.get("quantity", 1)),
                unit_price=etsy_money(transaction.get("price")),
                notes=join_notes(
                    transaction.get("variations") or [],
                    name_key="formatted_name",
                    value_key="formatted_value",
                ),
            ))

        grandtotal = raw.get("grandtotal") or raw.get("total_price")
        total = etsy_money(grandtotal)
        currency = grandtotal.get("currency_code") if isinstance(grandtotal, dict) else None
        buyer_id = raw.get("buyer_user_id")
        created = raw.get("create_timestamp") or raw.get("creation_tsz")

        return NormalizedOrder(
            channel=self.channel,
            external_order_id=str(raw["receipt_id"]),
            external_customer_id=str(buyer_id) if buyer_id else None,
            customer=CustomerCandidate(
                name=buyer_name or raw.get("name") or "",
                email=raw.get("buyer_email") or buyer.get("email"),
                phone=None,  # Etsy does not expose buyer phone numbers
            ),
            items=items,
            total_amount=total,
            platform_fees=percentage_of(total, ETSY_FEE_RATE),
            taxes=etsy_money(raw.get("total_tax_cost")),
            shipping=etsy_money(raw.get("total_shipping_cost")),
            currency=currency or "USD",
            payment_status=self._payment_status(status, was_paid),
            sale_status=SaleStatus.CANCELLED if status == "canceled" else SaleStatus.CONFIRMED,
            ordered_at=parse_datetime(created),
            order_url=f"https://www.etsy.com/your/orders/{raw['receipt_id']}",
            notes=raw.get("message_from_buyer") or None,
            shipping_address={
                "street": ", ".join(p for p in (raw.get("first_line"), raw.get("second_line")) if p),
                "city": raw.get("city") or "",
                "state": raw.get("state") or "",
                "postal_code": raw.get("zip") or "",
                "country": str(raw.get("country_iso") or raw.get("country_id") or ""),
            } if raw.get("first_line") else None,
        )

    async def update_fulfillment(
        self, external_order_id: str, tracking_number: str, shipping_provider: str
    ) -> bool:
        with self.unlocked_credentials() as creds:
            await self._request(
                "POST",
                f"{API_BASE}/shops/{self.shop_id}/receipts/{external_order_id}/tracking",
                operation_name="submit tracking",
                headers=self._headers(creds),
                json_body={"tracking_code": tracking_number, "carrier_name": shipping_provider},
            )
        log.info(f"Etsy receipt {external_order_id} tracking submitted")
        return True

    def _auth_base_url(self) -> str:
        return "https://www.etsy.com/oauth/connect"

    def _token_request(self, code: str, redirect_uri: str, client_secret: Optional[str]) -> Dict[str, Any]:
        # Etsy uses PKCE: pass code_verifier through exchange_auth_code's extra params
        return {
            "headers": {"Accept": "application/json"},
            "data": {
                "grant_type": "authorization_code",
                "client_id": self.config.api_key or "",
                "redirect_uri": redirect_uri,
                "code": code,
            },
        }
