"""
Integration Service
Marketplace connection records, OAuth helpers and connector construction

Secrets (access token, refresh token, API secret) are encrypted one field at
a time before they are stored and never leave this service in plaintext.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from shopsync.connectors import CONNECTORS
from shopsync.connectors.base_connector import ConnectorConfig, PlatformConnector
from shopsync.models.enums import SalesChannel
from shopsync.models.integration import PlatformIntegration, SyncEvent
from shopsync.models.sale import Sale
from shopsync.utils.credentials import CredentialCipher
from shopsync.utils.errors import PlatformNotConfiguredError, ValidationError
from shopsync.utils.logger import log

PLAIN_FIELDS = ("shop_name", "store_id", "marketplace_id", "region", "api_key", "token_expires_at", "settings", "active")
SECRET_FIELDS = ("access_token", "refresh_token", "api_secret")

# Channels that need no external connection
LOCAL_CHANNEL_NAMES = {
    SalesChannel.DIRECT: "Direct Sales",
    SalesChannel.WHOLESALE: "Wholesale",
    SalesChannel.CUSTOM_ORDER: "Custom Orders",
    SalesChannel.OTHER: "Other",
}


def marketplace_channel(platform) -> SalesChannel:
    try:
        channel = SalesChannel(platform)
    except ValueError:
        raise ValidationError(f"Unknown platform '{platform}'")
    if not channel.is_marketplace:
        raise ValidationError(f"{channel.value} is not a marketplace platform")
    return channel


class IntegrationService:
    """Service for marketplace integration records"""

    def __init__(self, db: Session, cipher: CredentialCipher):
        self.db = db
        self.cipher = cipher

    # ── Records ─────────────────────────────────────────

    def _find(self, channel: SalesChannel) -> Optional[PlatformIntegration]:
        return self.db.query(PlatformIntegration).filter(
            PlatformIntegration.platform == channel.value
        ).first()

    def get_integration(self, platform) -> PlatformIntegration:
        channel = marketplace_channel(platform)
        integration = self._find(channel)
        if integration is None:
            raise PlatformNotConfiguredError(channel.value)
        return integration

    def save_integration(self, platform, data: Dict[str, Any]) -> PlatformIntegration:
        """
        Create or update a platform's connection.

        Secret fields are encrypted before storage. A secret left out of
        ``data`` keeps its stored value; an empty string clears it. Saving
        credentials clears any pending reconnect.
        """
        channel = marketplace_channel(platform)
        unknown = set(data) - set(PLAIN_FIELDS) - set(SECRET_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown integration fields: {', '.join(sorted(unknown))}")

        integration = self._find(channel)
        if integration is None:
            integration = PlatformIntegration(platform=channel.value, active=True)
            self.db.add(integration)

        for key in PLAIN_FIELDS:
            if key in data:
                setattr(integration, key, data[key])

        credentials_changed = False
        for key in SECRET_FIELDS:
            if key in data:
                setattr(integration, f"{key}_encrypted", self.cipher.encrypt(data[key]))
                credentials_changed = True

        if credentials_changed:
            integration.needs_reconnect = False
            integration.last_error = None

        self.db.commit()
        log.info(f"Saved {channel.value} integration" + (" (credentials updated)" if credentials_changed else ""))
        return integration

    def remove_integration(self, platform) -> None:
        integration = self.get_integration(platform)
        self.db.delete(integration)
        self.db.commit()
        log.info(f"Removed {integration.platform} integration")

    def list_integrations(self) -> List[Dict[str, Any]]:
        integrations = self.db.query(PlatformIntegration).order_by(PlatformIntegration.platform).all()
        return [integration.to_dict() for integration in integrations]

    def active_integrations(self) -> List[PlatformIntegration]:
        """Active marketplaces holding an access token"""
        return self.db.query(PlatformIntegration).filter(
            PlatformIntegration.active.is_(True),
            PlatformIntegration.access_token_encrypted.isnot(None),
        ).order_by(PlatformIntegration.platform).all()

    def get_configured_platforms(self) -> List[SalesChannel]:
        return [SalesChannel(i.platform) for i in self.active_integrations()]

    def get_platform_info(self, platform) -> Dict[str, Any]:
        try:
            channel = SalesChannel(platform)
        except ValueError:
            raise ValidationError(f"Unknown platform '{platform}'")

        if not channel.is_marketplace:
            return {
                "platform": channel.value,
                "display_name": LOCAL_CHANNEL_NAMES[channel],
                "docs_url": None,
                "configured": True,
                "needs_reconnect": False,
            }

        connector_cls = CONNECTORS[channel]
        integration = self._find(channel)
        return {
            "platform": channel.value,
            "display_name": connector_cls.display_name,
            "docs_url": connector_cls.docs_url,
            "configured": bool(integration and integration.active and integration.access_token_encrypted),
            "needs_reconnect": bool(integration and integration.needs_reconnect),
        }

    # ── Sync bookkeeping ────────────────────────────────

    def mark_needs_reconnect(self, platform: str, message: str):
        integration = self.get_integration(platform)
        integration.needs_reconnect = True
        integration.last_error = message
        self.db.commit()
        log.warning(f"{platform} needs reconnect: {message}")

    def record_sync(
        self,
        platform: str,
        status: str,
        processed: int,
        created: int,
        message: Optional[str],
        duration_seconds: float,
    ) -> SyncEvent:
        integration = self._find(SalesChannel(platform))
        event = SyncEvent(
            platform_integration_id=integration.id if integration else None,
            platform=platform,
            event_type="order_import",
            status=status,
            items_processed=processed,
            items_created=created,
            message=message,
            duration_seconds=int(round(duration_seconds)),
        )
        self.db.add(event)
        if integration is not None:
            if status == "success":
                integration.last_sync_at = datetime.utcnow()
                integration.last_error = None
            else:
                integration.last_error = message
        self.db.commit()
        return event

    def sync_history(self, platform: Optional[str] = None, limit: int = 50) -> List[SyncEvent]:
        query = self.db.query(SyncEvent)
        if platform:
            query = query.filter(SyncEvent.platform == marketplace_channel(platform).value)
        return query.order_by(SyncEvent.created_at.desc(), SyncEvent.id.desc()).limit(limit).all()

    # ── Connectors ──────────────────────────────────────

    def build_connector(self, platform) -> PlatformConnector:
        integration = self.get_integration(platform)
        channel = SalesChannel(integration.platform)
        return CONNECTORS[channel](ConnectorConfig.from_integration(integration), self.cipher)

    def generate_auth_url(
        self,
        platform,
        redirect_uri: str,
        scopes: Optional[List[str]] = None,
        state: Optional[str] = None,
    ) -> str:
        return self.build_connector(platform).generate_auth_url(redirect_uri, scopes=scopes, state=state)

    async def exchange_auth_code(
        self, platform, code: str, redirect_uri: str, **extra_params: str
    ) -> PlatformIntegration:
        """Exchange an OAuth code and store the resulting tokens encrypted."""
        connector = self.build_connector(platform)
        tokens = await connector.exchange_auth_code(code, redirect_uri, **extra_params)

        data: Dict[str, Any] = {"access_token": tokens["access_token"]}
        if tokens.get("refresh_token"):
            data["refresh_token"] = tokens["refresh_token"]
        data["token_expires_at"] = tokens.get("token_expires_at")
        return self.save_integration(platform, data)


class MarketplaceFulfillmentNotifier:
    """Tells the originating marketplace that a sale shipped"""

    def __init__(self, integrations: IntegrationService):
        self.integrations = integrations

    async def notify_shipped(self, sale: Sale) -> bool:
        connector = self.integrations.build_connector(sale.channel)
        accepted = await connector.update_fulfillment(
            sale.external_order_id,
            sale.tracking_number,
            sale.shipping_provider,
        )
        if not accepted:
            log.warning(
                f"Sale {sale.id}: {sale.channel} did not accept shipment of "
                f"order {sale.external_order_id} (tracking {sale.tracking_number})"
            )
        return bool(accepted)
