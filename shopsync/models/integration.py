"""
Marketplace integration models

Per-platform connection settings with individually encrypted secrets, and the
sync event log written once per platform per sync run.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON, Text, ForeignKey
from datetime import datetime

from shopsync.models.base import Base


class PlatformIntegration(Base):
    __tablename__ = "platform_integrations"

    id = Column(Integer, primary_key=True, index=True)
    platform = Column(String, unique=True, index=True, nullable=False)  # SalesChannel value

    # Store identity (non-secret)
    shop_name = Column(String, nullable=True)       # Shopify shop subdomain
    store_id = Column(String, nullable=True)        # Etsy shop id
    marketplace_id = Column(String, nullable=True)  # Amazon marketplace id
    region = Column(String, nullable=True)          # Amazon SP-API region (na, eu, fe)
    api_key = Column(String, nullable=True)         # OAuth client id

    # Secrets, each encrypted on its own (see utils.credentials)
    access_token_encrypted = Column(Text, nullable=True)
    refresh_token_encrypted = Column(Text, nullable=True)
    api_secret_encrypted = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)

    # State
    active = Column(Boolean, default=True)
    needs_reconnect = Column(Boolean, default=False)
    last_sync_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    settings = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        """Public view: secrets are reported only as present/absent"""
        return {
            "platform": self.platform,
            "shop_name": self.shop_name,
            "store_id": self.store_id,
            "marketplace_id": self.marketplace_id,
            "region": self.region,
            "api_key": self.api_key,
            "has_access_token": bool(self.access_token_encrypted),
            "has_refresh_token": bool(self.refresh_token_encrypted),
            "has_api_secret": bool(self.api_secret_encrypted),
            "token_expires_at": self.token_expires_at.isoformat() if self.token_expires_at else None,
            "active": self.active,
            "needs_reconnect": self.needs_reconnect,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "last_error": self.last_error,
        }


class SyncEvent(Base):
    """One row per platform per sync run"""
    __tablename__ = "sync_events"

    id = Column(Integer, primary_key=True, index=True)
    platform_integration_id = Column(Integer, ForeignKey("platform_integrations.id"), index=True, nullable=True)
    platform = Column(String, index=True, nullable=False)
    event_type = Column(String, nullable=False, default="order_import")
    status = Column(String, nullable=False)  # success, error
    items_processed = Column(Integer, default=0)
    items_created = Column(Integer, default=0)
    message = Column(Text, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "platform": self.platform,
            "event_type": self.event_type,
            "status": self.status,
            "items_processed": self.items_processed,
            "items_created": self.items_created,
            "message": self.message,
            "duration_seconds": self.duration_seconds,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
