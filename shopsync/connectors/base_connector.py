"""
Base connector class for all marketplaces

A connector fetches orders from one marketplace and normalizes them into
``NormalizedOrder``. It never deduplicates: fetching overlapping windows is
safe, the sync orchestrator owns dedup.

Every HTTP call goes through ``_send`` (one aiohttp request) and ``_request``
(status classification + retry). Credentials stay encrypted on the connector
and are only decrypted inside ``unlocked_credentials()``.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Tuple
from urllib.parse import urlencode
import asyncio
import json

import aiohttp

from shopsync.config import get_settings
from shopsync.models.enums import PaymentStatus, SaleStatus, SalesChannel
from shopsync.utils.credentials import CredentialCipher
from shopsync.utils.errors import (
    AuthExpiredError,
    TransientPlatformError,
    ValidationError,
)
from shopsync.utils.logger import log
from shopsync.utils.retry import RetryStats, retry_operation

settings = get_settings()


@dataclass
class CustomerCandidate:
    """Buyer identity as the marketplace reports it"""
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class NormalizedItem:
    name: str
    quantity: int
    unit_price: int  # minor units
    sku: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class NormalizedOrder:
    """Canonical order shape produced by every connector"""
    channel: SalesChannel
    external_order_id: str
    external_customer_id: Optional[str]
    customer: CustomerCandidate
    items: List[NormalizedItem]
    total_amount: int
    platform_fees: int = 0
    taxes: int = 0
    shipping: int = 0
    currency: str = "USD"
    payment_status: PaymentStatus = PaymentStatus.PENDING
    sale_status: SaleStatus = SaleStatus.CONFIRMED
    ordered_at: Optional[datetime] = None
    order_url: Optional[str] = None
    notes: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    shipping_address: Optional[Dict[str, str]] = None
    shipping_method: Optional[str] = None

    @property
    def dedup_key(self) -> Tuple[str, str]:
        return (self.channel.value, self.external_order_id)

    @property
    def net_revenue(self) -> int:
        return self.total_amount - self.platform_fees


@dataclass
class ConnectorConfig:
    """
    Snapshot of a platform integration row.

    Secrets are kept in their encrypted form; see
    ``PlatformConnector.unlocked_credentials``.
    """
    platform: str
    shop_name: Optional[str] = None
    store_id: Optional[str] = None
    marketplace_id: Optional[str] = None
    region: Optional[str] = None
    api_key: Optional[str] = None
    access_token_encrypted: Optional[str] = None
    refresh_token_encrypted: Optional[str] = None
    api_secret_encrypted: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    integration_id: Optional[int] = None

    @classmethod
    def from_integration(cls, integration) -> "ConnectorConfig":
        return cls(
            platform=integration.platform,
            shop_name=integration.shop_name,
            store_id=integration.store_id,
            marketplace_id=integration.marketplace_id,
            region=integration.region,
            api_key=integration.api_key,
            access_token_encrypted=integration.access_token_encrypted,
            refresh_token_encrypted=integration.refresh_token_encrypted,
            api_secret_encrypted=integration.api_secret_encrypted,
            token_expires_at=integration.token_expires_at,
            integration_id=integration.id,
        )


@dataclass
class PlatformCredentials:
    """Plaintext credentials, alive only inside ``unlocked_credentials()``"""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    api_secret: Optional[str] = None

    def wipe(self):
        self.access_token = None
        self.refresh_token = None
        self.api_secret = None


class PlatformConnector(ABC):
    """Base class for all marketplace connectors"""

    channel: SalesChannel = SalesChannel.OTHER
    display_name: str = "Marketplace"
    docs_url: Optional[str] = None
    default_scopes: List[str] = []
    token_url: Optional[str] = None

    def __init__(self, config: ConnectorConfig, cipher: CredentialCipher):
        self.config = config
        self.cipher = cipher
        self.name = self.display_name

        # Retry configuration
        self.retry_attempts = settings.connector_retry_attempts
        self.retry_base_delay = settings.connector_retry_base_delay
        self.retry_max_delay = settings.connector_retry_max_delay
        self.request_timeout = settings.sync_platform_timeout_seconds
        self.page_size = settings.connector_page_size

        self.retry_stats = RetryStats()
        self.normalization_failures = 0

    # ── Credentials ─────────────────────────────────────

    @contextmanager
    def unlocked_credentials(self) -> Iterator[PlatformCredentials]:
        """Decrypt credentials for the duration of one call."""
        expires_at = self.config.token_expires_at
        if expires_at is not None and expires_at <= datetime.utcnow():
            raise AuthExpiredError(self.channel.value, "access token expired")

        try:
            creds = PlatformCredentials(
                access_token=self.cipher.decrypt(self.config.access_token_encrypted),
                refresh_token=self.cipher.decrypt(self.config.refresh_token_encrypted),
                api_secret=self.cipher.decrypt(self.config.api_secret_encrypted),
            )
        except ValidationError:
            raise AuthExpiredError(self.channel.value, "stored credentials could not be decrypted")

        if not creds.access_token:
            creds.wipe()
            raise AuthExpiredError(self.channel.value, "no access token stored")

        try:
            yield creds
        finally:
            creds.wipe()

    # ── HTTP ────────────────────────────────────────────

    async def _send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Any, Dict[str, str]]:
        """Perform a single HTTP request. Returns (status, decoded body, lowercased headers)."""
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method, url, headers=headers, params=params, json=json_body, data=data
                ) as response:
                    text = await response.text()
                    response_headers = {k.lower(): v for k, v in response.headers.items()}
                    return response.status, _decode_body(text), response_headers
        except asyncio.TimeoutError:
            raise TransientPlatformError(self.channel.value, f"timed out calling {url}")
        except aiohttp.ClientError as e:
            raise TransientPlatformError(self.channel.value, f"connection error: {e}")

    def _raise_for_status(self, status: int, body: Any):
        if status < 400:
            return
        snippet = str(body)[:200] if body else ""
        if status in (401, 403):
            raise AuthExpiredError(self.channel.value, f"credentials rejected ({status})", status=status)
        if status == 429 or status >= 500:
            raise TransientPlatformError(self.channel.value, f"HTTP {status}: {snippet}", status=status)
        raise ValidationError(
            f"{self.display_name} rejected request (HTTP {status}): {snippet}",
            platform=self.channel.value,
            status=status,
        )

    async def _request(
        self,
        method: str,
        url: str,
        operation_name: str = "request",
        **kwargs,
    ) -> Tuple[Any, Dict[str, str]]:
        """Send with status classification; transient failures are retried with backoff."""

        async def attempt():
            status, body, headers = await self._send(method, url, **kwargs)
            self._raise_for_status(status, body)
            return body, headers

        return await retry_operation(
            attempt,
            operation_name=f"{self.display_name} {operation_name}",
            max_attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            stats=self.retry_stats,
        )

    # ── Orders ──────────────────────────────────────────

    @abstractmethod
    async def _fetch_page(
        self, creds: PlatformCredentials, since: datetime, cursor: Optional[Any]
    ) -> Tuple[List[Dict[str, Any]], Optional[Any]]:
        """Fetch one page of raw orders. Returns (raw orders, next cursor or None)."""
        pass

    @abstractmethod
    def normalize_order(self, raw: Dict[str, Any]) -> NormalizedOrder:
        """Convert one raw marketplace order to a NormalizedOrder (pure)"""
        pass

    async def iter_order_pages(self, since: datetime) -> AsyncIterator[List[NormalizedOrder]]:
        """
        Yield normalized orders page by page.

        Stopping iteration (or cancelling the consuming task) stops further
        page requests. Orders that fail normalization are logged and counted
        in ``normalization_failures``.
        """
        with self.unlocked_credentials() as creds:
            cursor = None
            page_number = 0
            while True:
                raw_orders, cursor = await self._fetch_page(creds, since, cursor)
                page_number += 1

                orders = []
                for raw in raw_orders:
                    try:
                        orders.append(self.normalize_order(raw))
                    except (ValidationError, KeyError, TypeError, ValueError) as e:
                        self.normalization_failures += 1
                        log.warning(f"{self.display_name}: skipping malformed order on page {page_number}: {e}")

                yield orders

                if not cursor:
                    break

    async def fetch_orders(self, since: datetime) -> List[NormalizedOrder]:
        """Fetch every order created or updated since ``since``."""
        orders: List[NormalizedOrder] = []
        async for page in self.iter_order_pages(since):
            orders.extend(page)
        log.info(f"{self.display_name}: fetched {len(orders)} orders since {since.isoformat()}")
        return orders

    # ── Fulfillment ─────────────────────────────────────

    @abstractmethod
    async def update_fulfillment(
        self, external_order_id: str, tracking_number: str, shipping_provider: str
    ) -> bool:
        """Tell the marketplace an order has shipped"""
        pass

    # ── OAuth ───────────────────────────────────────────

    @abstractmethod
    def _auth_base_url(self) -> str:
        pass

    def _auth_params(self, redirect_uri: str, scopes: List[str], state: Optional[str]) -> Dict[str, str]:
        params = {
            "client_id": self.config.api_key or "",
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "scope": " ".join(scopes),
        }
        if state:
            params["state"] = state
        return params

    def generate_auth_url(
        self,
        redirect_uri: str,
        scopes: Optional[List[str]] = None,
        state: Optional[str] = None,
        **extra_params: str,
    ) -> str:
        """Build the marketplace consent URL the operator is sent to."""
        if not self.config.api_key:
            raise ValidationError(f"{self.display_name} client id (api_key) is not configured")
        params = self._auth_params(redirect_uri, scopes or list(self.default_scopes), state)
        params.update(extra_params)
        return f"{self._auth_base_url()}?{urlencode(params)}"

    def _token_request(self, code: str, redirect_uri: str, client_secret: Optional[str]) -> Dict[str, Any]:
        """Keyword arguments for ``_request`` performing the code exchange."""
        return {
            "headers": {"Accept": "application/json"},
            "data": {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": self.config.api_key or "",
                "client_secret": client_secret or "",
            },
        }

    async def exchange_auth_code(self, code: str, redirect_uri: str, **extra_params: str) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Returns plaintext ``access_token``, ``refresh_token`` and
        ``token_expires_at``; the caller stores them encrypted.
        """
        if not code:
            raise ValidationError("Authorization code is required")
        try:
            client_secret = self.cipher.decrypt(self.config.api_secret_encrypted)
        except ValidationError:
            raise AuthExpiredError(self.channel.value, "stored API secret could not be decrypted")

        request = self._token_request(code, redirect_uri, client_secret)
        if extra_params:
            payload_key = "data" if "data" in request else "json_body"
            request[payload_key].update(extra_params)

        body, _ = await self._request("POST", self._token_url(), operation_name="token exchange", **request)
        if not isinstance(body, dict) or not body.get("access_token"):
            raise AuthExpiredError(self.channel.value, "token endpoint returned no access token")

        expires_in = body.get("expires_in")
        token_expires_at = None
        if expires_in:
            token_expires_at = datetime.utcnow() + timedelta(seconds=int(expires_in))

        log.info(f"{self.display_name}: exchanged authorization code for access token")
        return {
            "access_token": body.get("access_token"),
            "refresh_token": body.get("refresh_token"),
            "token_expires_at": token_expires_at,
        }

    def _token_url(self) -> str:
        if not self.token_url:
            raise ValidationError(f"{self.display_name} has no token endpoint")
        return self.token_url

    # ── Status ──────────────────────────────────────────

    def get_status(self) -> Dict[str, Any]:
        """Get connector status"""
        return {
            "name": self.name,
            "platform": self.channel.value,
            "retry_stats": self.retry_stats.to_dict(),
            "normalization_failures": self.normalization_failures,
            "retry_config": {
                "max_attempts": self.retry_attempts,
                "base_delay": self.retry_base_delay,
                "max_delay": self.retry_max_delay,
            },
        }


def _decode_body(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


def join_notes(pairs: List[Dict[str, Any]], name_key: str = "name", value_key: str = "value") -> Optional[str]:
    """[{name: Color, value: Brown}, ...] -> 'Color: Brown, ...'"""
    if not pairs:
        return None
    joined = ", ".join(f"{p.get(name_key)}: {p.get(value_key)}" for p in pairs)
    return joined or None
