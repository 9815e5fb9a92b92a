"""
Sync Orchestrator
Imports orders from every configured marketplace concurrently

One task per platform, bounded by a semaphore and a per-platform timeout.
A failure on one platform is recorded in the report and never stops the
others. Orders are committed one at a time, so a cancelled or timed-out sync
keeps what it already imported; re-running is idempotent because every order
is checked against the (channel, external_order_id) dedup set first.
"""
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
import asyncio
import time

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopsync.config import get_settings
from shopsync.connectors.base_connector import NormalizedOrder, PlatformConnector
from shopsync.models.sale import Sale
from shopsync.services.customer_resolver import CustomerResolver
from shopsync.services.integration_service import IntegrationService, marketplace_channel
from shopsync.services.sales_service import sale_from_order
from shopsync.utils.errors import AuthExpiredError, ShopSyncError, SyncInProgressError
from shopsync.utils.logger import log

settings = get_settings()

DedupKey = Tuple[str, str]


@dataclass
class PlatformSyncOutcome:
    """Result of one platform within a sync run"""
    platform: str
    orders_fetched: int = 0
    orders_new: int = 0
    orders_duplicate: int = 0
    orders_failed: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None
    needs_reconnect: bool = False
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "orders_fetched": self.orders_fetched,
            "orders_new": self.orders_new,
            "orders_duplicate": self.orders_duplicate,
            "orders_failed": self.orders_failed,
            "error": self.error,
            "error_type": self.error_type,
            "needs_reconnect": self.needs_reconnect,
            "duration_seconds": round(self.duration_seconds, 2),
        }


@dataclass
class SyncReport:
    since: datetime
    started_at: datetime
    finished_at: Optional[datetime] = None
    platforms: List[PlatformSyncOutcome] = field(default_factory=list)

    @property
    def orders_new(self) -> int:
        return sum(p.orders_new for p in self.platforms)

    @property
    def failed_platforms(self) -> List[str]:
        return [p.platform for p in self.platforms if not p.succeeded]

    def outcome(self, platform: str) -> Optional[PlatformSyncOutcome]:
        return next((p for p in self.platforms if p.platform == platform), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "since": self.since.isoformat(),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "orders_new": self.orders_new,
            "failed_platforms": self.failed_platforms,
            "platforms": [p.to_dict() for p in self.platforms],
        }


class SyncOrchestrator:
    """Fans out order imports to all configured marketplaces"""

    def __init__(
        self,
        db: Session,
        integrations: IntegrationService,
        resolver: CustomerResolver,
        in_flight: Set[str],
        connector_factory: Optional[Callable[[str], PlatformConnector]] = None,
        on_new_sales: Optional[Callable[[], None]] = None,
        max_concurrency: Optional[int] = None,
        platform_timeout: Optional[float] = None,
    ):
        self.db = db
        self.integrations = integrations
        self.resolver = resolver
        self.in_flight = in_flight
        self.connector_factory = connector_factory or integrations.build_connector
        self.on_new_sales = on_new_sales
        self.max_concurrency = max_concurrency or settings.sync_max_concurrency
        self.platform_timeout = platform_timeout or settings.sync_platform_timeout_seconds

    async def sync(
        self,
        since: Optional[datetime] = None,
        platforms: Optional[List[str]] = None,
    ) -> SyncReport:
        """
        Import orders created or updated since ``since`` from every active marketplace.

        Blocks until every platform task has finished. Cancelling the caller
        cancels in-flight fetches; orders already committed stay.
        """
        since = since or datetime.utcnow() - timedelta(days=settings.sync_lookback_days)
        report = SyncReport(since=since, started_at=datetime.utcnow())

        integrations = self.integrations.active_integrations()
        if platforms is not None:
            wanted = {marketplace_channel(p).value for p in platforms}
            integrations = [i for i in integrations if i.platform in wanted]

        if not integrations:
            log.info("No marketplace integrations configured, nothing to sync")
            report.finished_at = datetime.utcnow()
            return report

        seen = self._known_orders([i.platform for i in integrations])
        semaphore = asyncio.Semaphore(self.max_concurrency)

        log.info(
            f"Starting sync of {len(integrations)} platform(s) since {since.isoformat()} "
            f"({len(seen)} orders already known)"
        )
        outcomes = await asyncio.gather(*(
            self._run_platform(i.platform, bool(i.needs_reconnect), since, seen, semaphore)
            for i in integrations
        ))
        report.platforms = list(outcomes)
        report.finished_at = datetime.utcnow()

        if report.orders_new and self.on_new_sales:
            self.on_new_sales()

        log.info(
            f"Sync finished: {report.orders_new} new orders, "
            f"{len(report.failed_platforms)} platform(s) failed"
        )
        return report

    def _known_orders(self, platforms: List[str]) -> Set[DedupKey]:
        rows = self.db.query(Sale.channel, Sale.external_order_id).filter(
            Sale.channel.in_(platforms),
            Sale.external_order_id.isnot(None),
        ).all()
        return {(channel, external_id) for channel, external_id in rows}

    async def _run_platform(
        self,
        platform: str,
        needs_reconnect: bool,
        since: datetime,
        seen: Set[DedupKey],
        semaphore: asyncio.Semaphore,
    ) -> PlatformSyncOutcome:
        outcome = PlatformSyncOutcome(platform=platform)

        if needs_reconnect:
            outcome.error = "Credentials expired, reconnect required"
            outcome.error_type = AuthExpiredError.code
            outcome.needs_reconnect = True
            log.warning(f"Skipping {platform}: needs reconnect")
            return outcome

        if platform in self.in_flight:
            error = SyncInProgressError(platform)
            outcome.error = error.message
            outcome.error_type = error.code
            log.warning(error.message)
            return outcome

        self.in_flight.add(platform)
        start_time = time.time()
        try:
            async with semaphore:
                log.info(f"Syncing {platform} orders since {since.isoformat()}")
                connector = self.connector_factory(platform)
                try:
                    await asyncio.wait_for(
                        self._import_orders(connector, since, seen, outcome),
                        timeout=self.platform_timeout,
                    )
                finally:
                    outcome.orders_failed += connector.normalization_failures

        except asyncio.TimeoutError:
            outcome.error = f"Timed out after {self.platform_timeout:.0f}s"
            outcome.error_type = "timeout"
            log.error(f"{platform} sync timed out after {self.platform_timeout:.0f}s ({outcome.orders_new} new orders kept)")

        except AuthExpiredError as e:
            outcome.error = e.message
            outcome.error_type = e.code
            outcome.needs_reconnect = True

        except ShopSyncError as e:
            outcome.error = e.message
            outcome.error_type = e.code
            log.error(f"{platform} sync failed: {e.message}")

        except Exception as e:
            self.db.rollback()
            outcome.error = str(e) or type(e).__name__
            outcome.error_type = "unexpected_error"
            log.exception(f"{platform} sync failed unexpectedly: {e}")

        finally:
            self.in_flight.discard(platform)
            outcome.duration_seconds = time.time() - start_time

        self._record_outcome(outcome)
        log.info(
            f"{platform}: fetched {outcome.orders_fetched}, new {outcome.orders_new}, "
            f"duplicate {outcome.orders_duplicate}, failed {outcome.orders_failed} "
            f"in {outcome.duration_seconds:.2f}s"
        )
        return outcome

    def _record_outcome(self, outcome: PlatformSyncOutcome):
        """Sync bookkeeping. A failure here is logged and never fails the run."""
        try:
            if outcome.needs_reconnect:
                self.integrations.mark_needs_reconnect(outcome.platform, outcome.error)
            self.integrations.record_sync(
                outcome.platform,
                status="success" if outcome.succeeded else "error",
                processed=outcome.orders_fetched,
                created=outcome.orders_new,
                message=outcome.error,
                duration_seconds=outcome.duration_seconds,
            )
        except Exception as e:
            self.db.rollback()
            log.exception(f"Could not record {outcome.platform} sync event: {e}")

    async def _import_orders(
        self,
        connector: PlatformConnector,
        since: datetime,
        seen: Set[DedupKey],
        outcome: PlatformSyncOutcome,
    ):
        # Closing the page iterator on timeout wipes the connector's decrypted credentials now
        async with aclosing(connector.iter_order_pages(since)) as pages:
            async for page in pages:
                for order in page:
                    outcome.orders_fetched += 1
                    await self._import_order(order, seen, outcome)

    async def _import_order(self, order: NormalizedOrder, seen: Set[DedupKey], outcome: PlatformSyncOutcome):
        key = order.dedup_key
        if key in seen:
            outcome.orders_duplicate += 1
            return
        # Claimed before the first await so a second platform task skips it
        seen.add(key)

        try:
            customer = await self.resolver.find_or_create(
                order.channel.value, order.external_customer_id, order.customer
            )
            sale = sale_from_order(order, customer.id)
            self.db.add(sale)
            self.db.commit()
        except IntegrityError:
            # Imported by a concurrent process since the dedup set was built
            self.db.rollback()
            outcome.orders_duplicate += 1
            return
        except ShopSyncError as e:
            self.db.rollback()
            seen.discard(key)
            outcome.orders_failed += 1
            log.warning(f"Could not import {order.channel.value} order {order.external_order_id}: {e.message}")
            return
        except BaseException:
            # Session is shared by every platform task
            self.db.rollback()
            seen.discard(key)
            raise

        outcome.orders_new += 1
        log.debug(f"Imported {order.channel.value} order {order.external_order_id} as sale {sale.id}")
