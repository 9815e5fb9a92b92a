"""
Tests for marketplace connectors.

Every connector talks HTTP through ``_send``; tests replace it with a
scripted fake so normalization, paging, error classification and retry
run without a network.
"""
import asyncio
from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from shopsync.connectors import CONNECTORS
from shopsync.connectors.amazon_connector import AmazonConnector
from shopsync.connectors.base_connector import ConnectorConfig
from shopsync.connectors.ebay_connector import EbayConnector
from shopsync.connectors.etsy_connector import EtsyConnector, etsy_money
from shopsync.connectors.shopify_connector import ShopifyConnector
from shopsync.models.enums import PaymentStatus, SaleStatus, SalesChannel
from shopsync.utils.errors import AuthExpiredError, TransientPlatformError, ValidationError

SINCE = datetime(2025, 1, 1)


class ScriptedSend:
    """Stand-in for PlatformConnector._send returning queued responses"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def __call__(self, method, url, headers=None, params=None, json_body=None, data=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "params": params,
                           "json_body": json_body, "data": data})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        status, body = response[0], response[1]
        headers = response[2] if len(response) > 2 else {}
        return status, body, headers


def make_connector(cls, cipher, send=None, token="secret-token", expires_at=None, **config):
    config.setdefault("api_key", "client-id")
    connector = cls(
        ConnectorConfig(
            platform=cls.channel.value,
            access_token_encrypted=cipher.encrypt(token),
            api_secret_encrypted=cipher.encrypt("client-secret"),
            token_expires_at=expires_at,
            **config,
        ),
        cipher,
    )
    connector.retry_base_delay = 0
    connector.retry_max_delay = 0
    if send is not None:
        connector._send = send
    return connector


def fetch(connector):
    return asyncio.run(connector.fetch_orders(SINCE))


# ────────────────────────────────────────────
# SHOPIFY
# ────────────────────────────────────────────


SHOPIFY_ORDER = {
    "id": 5551234,
    "name": "#1001",
    "email": "order@example.com",
    "created_at": "2025-03-01T10:00:00-05:00",
    "total_price": "105.50",
    "total_tax": "8.00",
    "currency": "USD",
    "financial_status": "paid",
    "cancelled_at": None,
    "tags": "gift, rush ,",
    "note": "Please gift wrap",
    "total_shipping_price_set": {"shop_money": {"amount": "7.50"}},
    "customer": {"id": 77, "first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com"},
    "line_items": [
        {"title": "Wallet", "sku": "W-1", "quantity": 2, "price": "45.00",
         "properties": [{"name": "Monogram", "value": "AL"}]},
    ],
    "shipping_address": {"address1": "1 Main St", "city": "London", "zip": "N1", "country": "UK"},
}


class TestShopify:

    def test_normalize(self, cipher):
        order = make_connector(ShopifyConnector, cipher, shop_name="leatherco").normalize_order(SHOPIFY_ORDER)
        assert order.dedup_key == ("shopify", "5551234")
        assert order.external_customer_id == "77"
        assert order.customer.name == "Ada Lovelace"
        assert order.customer.email == "ada@example.com"
        assert (order.total_amount, order.taxes, order.shipping, order.platform_fees) == (10550, 800, 750, 0)
        assert order.payment_status is PaymentStatus.PAID
        assert order.sale_status is SaleStatus.IN_PROGRESS
        assert order.tags == ["gift", "rush"]
        assert order.items[0].unit_price == 4500
        assert order.items[0].notes == "Monogram: AL"
        assert order.order_url == "https://leatherco.myshopify.com/admin/orders/5551234"
        assert order.ordered_at == datetime(2025, 3, 1, 15, 0)

    def test_cancelled_order(self, cipher):
        raw = dict(SHOPIFY_ORDER, cancelled_at="2025-03-02T00:00:00Z", financial_status="voided")
        order = make_connector(ShopifyConnector, cipher, shop_name="x").normalize_order(raw)
        assert order.sale_status is SaleStatus.CANCELLED
        assert order.payment_status is PaymentStatus.CANCELLED

    def test_follows_link_header_pages(self, cipher):
        link = '<https://x.myshopify.com/admin/api/2024-01/orders.json?limit=100&page_info=abc123>; rel="next"'
        send = ScriptedSend(
            (200, {"orders": [SHOPIFY_ORDER]}, {"link": link}),
            (200, {"orders": [dict(SHOPIFY_ORDER, id=2)]}, {}),
        )
        orders = fetch(make_connector(ShopifyConnector, cipher, send, shop_name="x"))

        assert [o.external_order_id for o in orders] == ["5551234", "2"]
        assert send.calls[0]["params"]["status"] == "any"
        assert send.calls[0]["headers"]["X-Shopify-Access-Token"] == "secret-token"
        assert send.calls[1]["params"] == {"limit": 100, "page_info": "abc123"}

    def test_update_fulfillment(self, cipher):
        send = ScriptedSend(
            (200, {"fulfillment_orders": [{"id": 9, "status": "open"}, {"id": 10, "status": "closed"}]}),
            (201, {"fulfillment": {"id": 1}}),
        )
        connector = make_connector(ShopifyConnector, cipher, send, shop_name="x")
        assert asyncio.run(connector.update_fulfillment("5551234", "1Z", "UPS"))
        payload = send.calls[1]["json_body"]["fulfillment"]
        assert payload["line_items_by_fulfillment_order"] == [{"fulfillment_order_id": 9}]
        assert payload["tracking_info"] == {"number": "1Z", "company": "UPS"}

    def test_auth_url(self, cipher):
        connector = make_connector(ShopifyConnector, cipher, shop_name="x")
        url = urlparse(connector.generate_auth_url("https://app/callback", state="s1"))
        query = parse_qs(url.query)
        assert url.netloc == "x.myshopify.com"
        assert query["scope"] == ["read_orders,write_orders"]
        assert query["state"] == ["s1"]


# ────────────────────────────────────────────
# ETSY
# ────────────────────────────────────────────


ETSY_RECEIPT = {
    "receipt_id": 3001,
    "buyer_user_id": 88,
    "buyer_email": "grace@example.com",
    "name": "Grace Hopper",
    "status": "Paid",
    "is_paid": True,
    "create_timestamp": 1735732800,
    "grandtotal": {"amount": 2599, "divisor": 100, "currency_code": "EUR"},
    "total_tax_cost": {"amount": 200, "divisor": 100},
    "total_shipping_cost": {"amount": 399, "divisor": 100},
    "transactions": [
        {"title": "Keyring", "listing_id": 42, "quantity": 1, "price": {"amount": 2000, "divisor": 100},
         "variations": [{"formatted_name": "Color", "formatted_value": "Brown"}]},
    ],
}


class TestEtsy:

    def test_money_forms(self):
        assert etsy_money({"amount": 2599, "divisor": 100}) == 2599
        assert etsy_money({"amount": "25.99"}) == 2599
        assert etsy_money("25.99") == 2599
        assert etsy_money(None) == 0

    def test_normalize(self, cipher):
        order = make_connector(EtsyConnector, cipher, store_id="shop1").normalize_order(ETSY_RECEIPT)
        assert order.dedup_key == ("etsy", "3001")
        assert order.external_customer_id == "88"
        assert order.customer.name == "Grace Hopper"
        assert order.total_amount == 2599
        assert order.platform_fees == 169  # 6.5% of 25.99, half-up
        assert order.currency == "EUR"
        assert order.payment_status is PaymentStatus.PAID
        assert order.items[0].sku == "ETSY-42"
        assert order.items[0].notes == "Color: Brown"
        assert order.ordered_at == datetime(2025, 1, 1, 12, 0)

    def test_unpaid_and_cancelled(self, cipher):
        connector = make_connector(EtsyConnector, cipher, store_id="shop1")
        unpaid = connector.normalize_order(dict(ETSY_RECEIPT, is_paid=False))
        cancelled = connector.normalize_order(dict(ETSY_RECEIPT, status="Canceled"))
        assert unpaid.payment_status is PaymentStatus.PENDING
        assert cancelled.payment_status is PaymentStatus.CANCELLED
        assert cancelled.sale_status is SaleStatus.CANCELLED

    def test_offset_paging_stops_at_count(self, cipher):
        send = ScriptedSend(
            (200, {"count": 2, "results": [ETSY_RECEIPT]}),
            (200, {"count": 2, "results": [dict(ETSY_RECEIPT, receipt_id=3002)]}),
        )
        connector = make_connector(EtsyConnector, cipher, send, store_id="shop1")
        connector.page_size = 1
        orders = fetch(connector)
        assert [o.external_order_id for o in orders] == ["3001", "3002"]
        assert [c["params"]["offset"] for c in send.calls] == [0, 1]

    def test_malformed_receipt_is_skipped_and_counted(self, cipher):
        send = ScriptedSend((200, {"count": 2, "results": [{"status": "paid"}, ETSY_RECEIPT]}))
        connector = make_connector(EtsyConnector, cipher, send, store_id="shop1")
        orders = fetch(connector)
        assert [o.external_order_id for o in orders] == ["3001"]
        assert connector.normalization_failures == 1

    def test_code_exchange_passes_pkce_verifier(self, cipher):
        send = ScriptedSend((200, {"access_token": "new", "refresh_token": "r", "expires_in": 3600}))
        connector = make_connector(EtsyConnector, cipher, send, store_id="shop1")
        tokens = asyncio.run(connector.exchange_auth_code("code-1", "https://app/cb", code_verifier="v"))

        assert tokens["access_token"] == "new"
        assert tokens["token_expires_at"] > datetime.utcnow()
        assert send.calls[0]["data"]["code_verifier"] == "v"
        assert "client_secret" not in send.calls[0]["data"]


# ────────────────────────────────────────────
# AMAZON
# ────────────────────────────────────────────


AMAZON_ORDER = {
    "AmazonOrderId": "111-2222222-3333333",
    "PurchaseDate": "2025-02-01T08:00:00Z",
    "OrderStatus": "Unshipped",
    "OrderTotal": {"CurrencyCode": "USD", "Amount": "60.00"},
    "IsPrime": True,
    "MarketplaceId": "ATVPDKIKX0DER",
    "BuyerInfo": {"BuyerEmail": "Buyer@Marketplace.Amazon.com", "BuyerName": "Sam"},
}

AMAZON_ITEMS = [
    {"OrderItemId": "oi-1", "Title": "Belt", "SellerSKU": "B-1", "QuantityOrdered": 2,
     "ItemPrice": {"Amount": "50.00"}, "ShippingPrice": {"Amount": "5.00"},
     "ItemTax": {"Amount": "4.00"}, "ShippingTax": {"Amount": "1.00"}},
]


class TestAmazon:

    def test_normalize(self, cipher):
        connector = make_connector(AmazonConnector, cipher, marketplace_id="ATVPDKIKX0DER")
        order = connector.normalize_order(dict(AMAZON_ORDER, OrderItems=AMAZON_ITEMS))
        assert order.external_customer_id == "buyer@marketplace.amazon.com"
        assert order.total_amount == 6000
        assert order.platform_fees == 900
        assert (order.shipping, order.taxes) == (500, 500)
        assert order.items[0].unit_price == 2500
        assert order.sale_status is SaleStatus.CONFIRMED
        assert order.payment_status is PaymentStatus.PAID
        assert "prime" in order.tags

    def test_unfulfillable_is_on_hold(self, cipher):
        connector = make_connector(AmazonConnector, cipher, marketplace_id="M")
        order = connector.normalize_order(dict(AMAZON_ORDER, OrderStatus="Unfulfillable"))
        assert order.sale_status is SaleStatus.ON_HOLD

    def test_items_fetched_per_order(self, cipher):
        send = ScriptedSend(
            (200, {"payload": {"Orders": [dict(AMAZON_ORDER)]}}),
            (200, {"payload": {"OrderItems": AMAZON_ITEMS}}),
        )
        connector = make_connector(AmazonConnector, cipher, send, marketplace_id="M", region="eu")
        orders = fetch(connector)
        assert orders[0].items[0].name == "Belt"
        assert send.calls[0]["url"].startswith("https://sellingpartnerapi-eu.amazon.com")
        assert send.calls[1]["url"].endswith("/orders/111-2222222-3333333/orderItems")

    def test_unknown_region(self, cipher):
        connector = make_connector(AmazonConnector, cipher, marketplace_id="M", region="mars")
        with pytest.raises(ValidationError):
            connector.api_base


# ────────────────────────────────────────────
# EBAY
# ────────────────────────────────────────────


EBAY_ORDER = {
    "orderId": "12-34567-89012",
    "legacyOrderId": "110000000000-2000000000",
    "creationDate": "2025-02-10T12:00:00.000Z",
    "orderPaymentStatus": "FULLY_PAID",
    "orderFulfillmentStatus": "NOT_STARTED",
    "buyer": {"username": "sam_buys"},
    "salesRecordReference": "1234",
    "pricingSummary": {
        "total": {"value": "80.00", "currency": "GBP"},
        "deliveryCost": {"value": "5.00"},
        "tax": {"value": "0.00"},
    },
    "totalFeeBasisAmount": {"value": "9.60"},
    "lineItems": [{"lineItemId": "li-1", "title": "Satchel", "quantity": 1, "lineItemCost": {"value": "75.00"}}],
    "fulfillmentStartInstructions": [
        {"fulfillmentInstructionsType": "SHIP_TO", "shippingStep": {
            "shippingCarrierCode": "Royal Mail",
            "shipTo": {"fullName": "Sam Smith", "email": "sam@example.com",
                       "primaryPhone": {"phoneNumber": "0123"},
                       "contactAddress": {"addressLine1": "2 High St", "city": "Leeds", "countryCode": "GB"}},
        }},
    ],
}


class TestEbay:

    def test_normalize(self, cipher):
        order = make_connector(EbayConnector, cipher).normalize_order(EBAY_ORDER)
        assert order.external_order_id == "110000000000-2000000000"
        assert order.external_customer_id == "sam_buys"
        assert order.customer.email == "sam@example.com"
        assert order.customer.phone == "0123"
        assert order.platform_fees == 960
        assert order.currency == "GBP"
        assert order.sale_status is SaleStatus.CONFIRMED
        assert order.shipping_address["city"] == "Leeds"
        assert "srn:1234" in order.tags

    def test_default_fee_rate(self, cipher):
        raw = {k: v for k, v in EBAY_ORDER.items() if k != "totalFeeBasisAmount"}
        order = make_connector(EbayConnector, cipher).normalize_order(raw)
        assert order.platform_fees == 800

    def test_cancelled(self, cipher):
        raw = dict(EBAY_ORDER, cancelStatus={"cancelState": "COMPLETE"})
        assert make_connector(EbayConnector, cipher).normalize_order(raw).sale_status is SaleStatus.CANCELLED

    def test_token_exchange_uses_basic_auth(self, cipher):
        send = ScriptedSend((200, {"access_token": "a", "expires_in": 7200}))
        asyncio.run(make_connector(EbayConnector, cipher, send).exchange_auth_code("c", "https://app/cb"))
        assert send.calls[0]["headers"]["Authorization"].startswith("Basic ")


# ────────────────────────────────────────────
# ERROR CLASSIFICATION + RETRY
# ────────────────────────────────────────────


class TestErrorHandling:

    def test_401_is_auth_expired_and_not_retried(self, cipher):
        send = ScriptedSend((401, {"errors": "invalid token"}), (200, {"orders": []}))
        with pytest.raises(AuthExpiredError):
            fetch(make_connector(ShopifyConnector, cipher, send, shop_name="x"))
        assert len(send.calls) == 1

    def test_5xx_is_retried_then_succeeds(self, cipher):
        send = ScriptedSend((503, "unavailable"), (200, {"orders": [SHOPIFY_ORDER]}))
        connector = make_connector(ShopifyConnector, cipher, send, shop_name="x")
        assert len(fetch(connector)) == 1
        assert connector.retry_stats.attempts == 2

    def test_rate_limit_exhausts_retries(self, cipher):
        send = ScriptedSend(*[(429, "slow down")] * 3)
        with pytest.raises(TransientPlatformError):
            fetch(make_connector(ShopifyConnector, cipher, send, shop_name="x"))
        assert len(send.calls) == 3

    def test_connection_errors_are_transient(self, cipher):
        send = ScriptedSend(TransientPlatformError("etsy", "connection error"), (200, {"count": 0, "results": []}))
        assert fetch(make_connector(EtsyConnector, cipher, send, store_id="s")) == []

    def test_other_4xx_is_validation_error(self, cipher):
        send = ScriptedSend((400, {"error": "bad filter"}))
        with pytest.raises(ValidationError):
            fetch(make_connector(EbayConnector, cipher, send))
        assert len(send.calls) == 1

    def test_expired_token_fails_before_any_request(self, cipher):
        send = ScriptedSend()
        connector = make_connector(
            EtsyConnector, cipher, send, store_id="s", expires_at=datetime.utcnow() - timedelta(minutes=1)
        )
        with pytest.raises(AuthExpiredError):
            fetch(connector)
        assert send.calls == []

    def test_missing_token_is_auth_expired(self, cipher):
        connector = make_connector(EbayConnector, cipher, ScriptedSend(), token=None)
        with pytest.raises(AuthExpiredError):
            fetch(connector)

    def test_auth_url_needs_client_id(self, cipher):
        connector = make_connector(EbayConnector, cipher, api_key=None)
        with pytest.raises(ValidationError):
            connector.generate_auth_url("https://app/cb")


def test_registry_covers_every_marketplace():
    assert set(CONNECTORS) == {c for c in SalesChannel if c.is_marketplace}
