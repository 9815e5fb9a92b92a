"""Marketplace connectors for ShopSync"""
from typing import Dict, Type

from shopsync.connectors.base_connector import (
    ConnectorConfig,
    CustomerCandidate,
    NormalizedItem,
    NormalizedOrder,
    PlatformConnector,
)
from shopsync.connectors.shopify_connector import ShopifyConnector
from shopsync.connectors.etsy_connector import EtsyConnector
from shopsync.connectors.amazon_connector import AmazonConnector
from shopsync.connectors.ebay_connector import EbayConnector
from shopsync.models.enums import SalesChannel

CONNECTORS: Dict[SalesChannel, Type[PlatformConnector]] = {
    SalesChannel.SHOPIFY: ShopifyConnector,
    SalesChannel.ETSY: EtsyConnector,
    SalesChannel.AMAZON: AmazonConnector,
    SalesChannel.EBAY: EbayConnector,
}

__all__ = [
    "CONNECTORS",
    "ConnectorConfig",
    "CustomerCandidate",
    "NormalizedItem",
    "NormalizedOrder",
    "PlatformConnector",
    "ShopifyConnector",
    "EtsyConnector",
    "AmazonConnector",
    "EbayConnector",
]
