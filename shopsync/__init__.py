"""ShopSync - multi-channel order sync and fulfillment orchestration"""

__version__ = "1.0.0"
