"""
Fulfillment Service
Drives a sale through its fulfillment lifecycle

    pending -> picking -> in_production -> ready_to_ship -> shipped -> delivered
                  \\______________________/                               |
    cancelled: from any state before shipped                         returned

A transition and the side effect it requires (picking list + reservation,
inventory consumption, reservation release) are committed together. If the
side effect fails, the session is rolled back and the sale keeps its status.
Telling the marketplace a sale shipped happens after the commit and never
undoes it.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, FrozenSet, Optional, Protocol

from sqlalchemy.orm import Session

from shopsync.models.enums import FulfillmentStatus, SalesChannel
from shopsync.models.sale import Sale
from shopsync.services.inventory_service import InventoryGateway
from shopsync.services.picking_list_service import PickingListCoordinator
from shopsync.utils.errors import (
    DuplicatePickingListError,
    InvalidTransitionError,
    MissingShippingInfoError,
    NotFoundError,
    ShopSyncError,
    SideEffectError,
    ValidationError,
)
from shopsync.utils.keyed_lock import KeyedLock
from shopsync.utils.logger import log

S = FulfillmentStatus

ALLOWED_TRANSITIONS: Dict[FulfillmentStatus, FrozenSet[FulfillmentStatus]] = {
    S.PENDING: frozenset({S.PICKING, S.CANCELLED}),
    S.PICKING: frozenset({S.IN_PRODUCTION, S.READY_TO_SHIP, S.CANCELLED}),
    S.IN_PRODUCTION: frozenset({S.READY_TO_SHIP, S.CANCELLED}),
    S.READY_TO_SHIP: frozenset({S.SHIPPED, S.CANCELLED}),
    S.SHIPPED: frozenset({S.DELIVERED}),
    S.DELIVERED: frozenset({S.RETURNED}),
    S.CANCELLED: frozenset(),
    S.RETURNED: frozenset(),
}

TERMINAL_STATES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)


def can_transition(current: FulfillmentStatus, target: FulfillmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass
class TransitionContext:
    """Operator-supplied details for a transition"""
    tracking_number: Optional[str] = None
    shipping_provider: Optional[str] = None
    notes: Optional[str] = None


class FulfillmentNotifier(Protocol):
    async def notify_shipped(self, sale: Sale) -> bool:
        ...


class FulfillmentStateMachine:
    """Validates and applies fulfillment status transitions"""

    def __init__(
        self,
        db: Session,
        picking_lists: PickingListCoordinator,
        inventory: InventoryGateway,
        locks: KeyedLock,
        notifier: Optional[FulfillmentNotifier] = None,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.db = db
        self.picking_lists = picking_lists
        self.inventory = inventory
        self.locks = locks
        self.notifier = notifier
        self.on_change = on_change

    async def transition(
        self,
        sale_id: int,
        target,
        context: Optional[TransitionContext] = None,
    ) -> Sale:
        """
        Move a sale to ``target``.

        Raises InvalidTransitionError, DuplicatePickingListError,
        MissingShippingInfoError or SideEffectError; on any failure the sale's
        status is unchanged.
        """
        try:
            target = FulfillmentStatus(target)
        except ValueError:
            raise ValidationError(f"Unknown fulfillment status '{target}'")
        context = context or TransitionContext()

        async with self.locks.hold(sale_id):
            sale = self.db.get(Sale, sale_id, populate_existing=True)
            if sale is None:
                raise NotFoundError("Sale", sale_id)
            current = FulfillmentStatus(sale.fulfillment_status)

            try:
                await self._apply(sale, current, target, context)
                self.db.commit()
            except ShopSyncError as e:
                self.db.rollback()
                log.warning(f"Sale {sale_id}: transition {current.value} -> {target.value} rejected: {e.message}")
                raise
            except Exception:
                self.db.rollback()
                raise

        log.info(f"Sale {sale_id}: {current.value} -> {target.value}")
        if self.on_change:
            self.on_change()

        if target is S.SHIPPED:
            await self._notify_marketplace(sale)
        return sale

    async def _apply(
        self,
        sale: Sale,
        current: FulfillmentStatus,
        target: FulfillmentStatus,
        context: TransitionContext,
    ):
        # A repeated picking request reports the existing list, not a bad transition.
        # Later states keep their list open, so they get the table's verdict.
        if target is S.PICKING and current in (S.PENDING, S.PICKING):
            existing = self.picking_lists.open_list_for_sale(sale.id)
            if existing is not None:
                raise DuplicatePickingListError(sale.id, existing.id)

        if not can_transition(current, target):
            raise InvalidTransitionError(current.value, target.value)

        now = datetime.utcnow()

        if target is S.PICKING:
            await self.picking_lists.build_for_sale(sale)
            await self._side_effect(
                "reserve materials", sale.id, self.inventory.reserve_materials(sale.id)
            )

        elif target is S.SHIPPED:
            tracking = (context.tracking_number or "").strip()
            provider = (context.shipping_provider or "").strip()
            missing = []
            if not tracking:
                missing.append("tracking_number")
            if not provider:
                missing.append("shipping_provider")
            if missing:
                raise MissingShippingInfoError(missing)
            sale.tracking_number = tracking
            sale.shipping_provider = provider
            sale.shipped_at = now

        elif target is S.DELIVERED:
            await self._side_effect(
                "update inventory", sale.id, self.inventory.update_inventory_on_fulfillment(sale.id)
            )
            sale.completed_date = now

        elif target is S.CANCELLED:
            await self._side_effect(
                "release materials", sale.id, self.inventory.release_materials(sale.id)
            )
            open_list = self.picking_lists.open_list_for_sale(sale.id)
            if open_list is not None:
                self.picking_lists.mark_cancelled(open_list)
            sale.cancelled_at = now

        elif target is S.RETURNED:
            sale.returned_at = now

        if context.notes:
            sale.notes = f"{sale.notes}\n{context.notes}" if sale.notes else context.notes
        sale.fulfillment_status = target.value

    async def _side_effect(self, name: str, sale_id: int, call: Awaitable[bool]):
        try:
            ok = await call
        except ShopSyncError:
            raise
        except Exception as e:
            raise SideEffectError(f"Could not {name} for sale {sale_id}: {e}", sale_id=sale_id) from e
        if not ok:
            raise SideEffectError(f"Could not {name} for sale {sale_id}", sale_id=sale_id)

    async def _notify_marketplace(self, sale: Sale):
        """Best-effort: the local shipment record stands whatever the marketplace says."""
        if self.notifier is None or not sale.external_order_id:
            return
        try:
            channel = SalesChannel(sale.channel)
        except ValueError:
            return
        if not channel.is_marketplace:
            return

        try:
            await self.notifier.notify_shipped(sale)
        except Exception as e:
            log.warning(
                f"Sale {sale.id}: could not notify {channel.value} of shipment "
                f"(order {sale.external_order_id}): {e}"
            )
