"""
Service Runtime
Long-lived shared state and per-request service construction

Caches, locks and the in-flight sync set live for the whole process and are
owned here. Services hold a database session and are built per request (or
per scheduled job) through the factory methods.
"""
from typing import Optional, Set

from sqlalchemy.orm import Session

from shopsync.config import Settings, get_settings
from shopsync.services.channel_metrics_service import ChannelMetricsService
from shopsync.services.customer_resolver import CustomerCaches, CustomerResolver
from shopsync.services.fulfillment_service import FulfillmentStateMachine
from shopsync.services.integration_service import IntegrationService, MarketplaceFulfillmentNotifier
from shopsync.services.inventory_service import LocalInventoryGateway
from shopsync.services.picking_list_service import PickingListCoordinator
from shopsync.services.sales_service import SalesService
from shopsync.services.sync_orchestrator import SyncOrchestrator
from shopsync.utils.cache import ExpiringCache
from shopsync.utils.credentials import CredentialCipher
from shopsync.utils.keyed_lock import KeyedLock
from shopsync.utils.logger import log


class ServiceRuntime:
    def __init__(self, settings: Optional[Settings] = None, cipher: Optional[CredentialCipher] = None):
        self.settings = settings or get_settings()
        self.cipher = cipher or CredentialCipher.from_settings(self.settings)
        self.customer_caches = CustomerCaches.from_settings(self.settings)
        self.metrics_cache = ExpiringCache(self.settings.metrics_cache_ttl, name="channel_metrics")
        self.customer_locks = KeyedLock()
        self.sale_locks = KeyedLock()
        self.syncs_in_flight: Set[str] = set()

    # ── Lifecycle ───────────────────────────────────────

    def start(self):
        interval = self.settings.cache_sweep_interval_seconds
        for cache in self.customer_caches.all() + [self.metrics_cache]:
            cache.start_sweeper(interval=interval)
        log.info(f"Cache sweepers started (every {interval}s)")

    def stop(self):
        for cache in self.customer_caches.all() + [self.metrics_cache]:
            cache.stop_sweeper()
        log.info("Cache sweepers stopped")

    # ── Services ────────────────────────────────────────

    def invalidate_metrics(self):
        self.metrics_cache.clear()

    def resolver(self, db: Session) -> CustomerResolver:
        return CustomerResolver(db, self.customer_caches, self.customer_locks)

    def inventory(self, db: Session) -> LocalInventoryGateway:
        return LocalInventoryGateway(db)

    def picking_lists(self, db: Session) -> PickingListCoordinator:
        return PickingListCoordinator(db, self.inventory(db))

    def integrations(self, db: Session) -> IntegrationService:
        return IntegrationService(db, self.cipher)

    def state_machine(self, db: Session) -> FulfillmentStateMachine:
        inventory = self.inventory(db)
        return FulfillmentStateMachine(
            db,
            picking_lists=PickingListCoordinator(db, inventory),
            inventory=inventory,
            locks=self.sale_locks,
            notifier=MarketplaceFulfillmentNotifier(self.integrations(db)),
            on_change=self.invalidate_metrics,
        )

    def sales(self, db: Session) -> SalesService:
        return SalesService(db, self.resolver(db), on_change=self.invalidate_metrics)

    def metrics(self, db: Session) -> ChannelMetricsService:
        return ChannelMetricsService(db, self.metrics_cache)

    def orchestrator(self, db: Session) -> SyncOrchestrator:
        return SyncOrchestrator(
            db,
            integrations=self.integrations(db),
            resolver=self.resolver(db),
            in_flight=self.syncs_in_flight,
            on_new_sales=self.invalidate_metrics,
            max_concurrency=self.settings.sync_max_concurrency,
            platform_timeout=self.settings.sync_platform_timeout_seconds,
        )


_runtime: Optional[ServiceRuntime] = None


def get_runtime() -> ServiceRuntime:
    """Process-wide runtime, created on first use"""
    global _runtime
    if _runtime is None:
        _runtime = ServiceRuntime()
    return _runtime
