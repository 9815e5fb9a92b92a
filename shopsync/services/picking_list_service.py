"""
Picking List Service
Creates, assigns and completes the material worklists tied to sales
"""
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from shopsync.models.enums import OPEN_PICKING_LIST_STATUSES, PickingListItemStatus, PickingListStatus
from shopsync.models.picking_list import PickingList, PickingListItem
from shopsync.models.sale import Sale
from shopsync.services.inventory_service import InventoryGateway
from shopsync.utils.errors import (
    DuplicatePickingListError,
    IncompletePickingError,
    NotFoundError,
    ValidationError,
)
from shopsync.utils.logger import log


def item_status(picked: int, required: int) -> PickingListItemStatus:
    if picked <= 0:
        return PickingListItemStatus.PENDING
    if picked < required:
        return PickingListItemStatus.PARTIAL
    return PickingListItemStatus.COMPLETE


class PickingListCoordinator:
    """Service for picking list lifecycle"""

    def __init__(self, db: Session, inventory: InventoryGateway):
        self.db = db
        self.inventory = inventory

    # ── Queries ─────────────────────────────────────────

    def get(self, list_id: int) -> PickingList:
        picking_list = self.db.get(PickingList, list_id)
        if picking_list is None:
            raise NotFoundError("Picking list", list_id)
        return picking_list

    def open_list_for_sale(self, sale_id: int) -> Optional[PickingList]:
        return self.db.query(PickingList).filter(
            PickingList.sale_id == sale_id,
            PickingList.status.in_(OPEN_PICKING_LIST_STATUSES),
        ).first()

    def _get_open(self, list_id: int) -> PickingList:
        picking_list = self.get(list_id)
        if not picking_list.is_open:
            raise ValidationError(f"Picking list {list_id} is {picking_list.status}")
        return picking_list

    # ── Creation ────────────────────────────────────────

    async def build_for_sale(self, sale: Sale, notes: Optional[str] = None) -> PickingList:
        """
        Add a picking list for ``sale`` to the session without committing.

        Items come from the sale's material requirements, or from its line
        items when it has none recorded.
        """
        existing = self.open_list_for_sale(sale.id)
        if existing is not None:
            raise DuplicatePickingListError(sale.id, existing.id)

        picking_list = PickingList(
            sale_id=sale.id,
            status=PickingListStatus.PENDING.value,
            notes=notes,
        )

        requirements = await self.inventory.get_material_requirements(sale.id)
        if requirements:
            for requirement in requirements:
                picking_list.items.append(PickingListItem(
                    material_id=requirement.material_id,
                    description=requirement.material_name,
                    quantity_required=requirement.quantity,
                ))
        else:
            for line in sale.items:
                picking_list.items.append(PickingListItem(
                    description=line.name,
                    quantity_required=line.quantity,
                ))

        self.db.add(picking_list)
        self.db.flush()

        sale.picking_list_id = picking_list.id
        sale.picking_list_status = picking_list.status
        return picking_list

    async def create(self, sale_id: int, notes: Optional[str] = None) -> PickingList:
        sale = self.db.get(Sale, sale_id)
        if sale is None:
            raise NotFoundError("Sale", sale_id)

        try:
            picking_list = await self.build_for_sale(sale, notes=notes)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        log.info(f"Created picking list {picking_list.id} for sale {sale_id} ({len(picking_list.items)} items)")
        return picking_list

    # ── Updates ─────────────────────────────────────────

    def assign(self, list_id: int, assignee: str) -> PickingList:
        if not assignee or not assignee.strip():
            raise ValidationError("Assignee is required")
        picking_list = self._get_open(list_id)
        picking_list.assigned_to = assignee.strip()
        self.db.commit()
        log.info(f"Picking list {list_id} assigned to {picking_list.assigned_to}")
        return picking_list

    def update_item_quantity(self, list_id: int, item_id: int, picked_quantity: int) -> PickingList:
        """
        Record how much of an item has been picked, clamped to [0, required].

        The list moves between pending and in_progress only; completion is
        always an explicit ``complete`` call.
        """
        picking_list = self._get_open(list_id)
        item = next((i for i in picking_list.items if i.id == item_id), None)
        if item is None:
            raise NotFoundError("Picking list item", item_id)

        item.quantity_picked = max(0, min(int(picked_quantity), item.quantity_required))
        item.status = item_status(item.quantity_picked, item.quantity_required).value

        any_picked = any(i.quantity_picked > 0 for i in picking_list.items)
        picking_list.status = (
            PickingListStatus.IN_PROGRESS.value if any_picked else PickingListStatus.PENDING.value
        )
        self._mirror_on_sale(picking_list)
        self.db.commit()
        return picking_list

    def complete(self, list_id: int, override: bool = False) -> PickingList:
        picking_list = self._get_open(list_id)
        short = [i.id for i in picking_list.items if i.quantity_picked != i.quantity_required]
        if short and not override:
            raise IncompletePickingError(list_id, short)
        if short:
            log.warning(f"Picking list {list_id} completed with {len(short)} short item(s) by override")

        picking_list.status = PickingListStatus.COMPLETED.value
        picking_list.completed_at = datetime.utcnow()
        self._mirror_on_sale(picking_list)
        self.db.commit()
        log.info(f"Picking list {list_id} completed")
        return picking_list

    def cancel(self, list_id: int) -> PickingList:
        picking_list = self._get_open(list_id)
        self.mark_cancelled(picking_list)
        self.db.commit()
        log.info(f"Picking list {list_id} cancelled")
        return picking_list

    def mark_cancelled(self, picking_list: PickingList):
        """Cancel without committing (used inside sale cancellation)."""
        picking_list.status = PickingListStatus.CANCELLED.value
        self._mirror_on_sale(picking_list)

    def _mirror_on_sale(self, picking_list: PickingList):
        if picking_list.sale_id is None:
            return
        sale = self.db.get(Sale, picking_list.sale_id)
        if sale is not None and sale.picking_list_id == picking_list.id:
            sale.picking_list_status = picking_list.status
