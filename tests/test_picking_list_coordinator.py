"""
Tests for picking list creation, item updates and completion.
"""
import asyncio

import pytest

from shopsync.models.enums import PickingListItemStatus, PickingListStatus
from shopsync.models.sale import Sale
from shopsync.services.inventory_service import LocalInventoryGateway
from shopsync.services.picking_list_service import PickingListCoordinator, item_status
from shopsync.utils.errors import (
    DuplicatePickingListError,
    IncompletePickingError,
    NotFoundError,
    ValidationError,
)


@pytest.fixture
def coordinator(db):
    return PickingListCoordinator(db, LocalInventoryGateway(db))


@pytest.fixture
def picking_list(coordinator, make_sale):
    sale = make_sale(items=(("Tote bag", 3, 8000), ("Card holder", 1, 2500)))
    return asyncio.run(coordinator.create(sale.id, notes="Rush order"))


class TestItemStatus:

    def test_thresholds(self):
        assert item_status(0, 3) is PickingListItemStatus.PENDING
        assert item_status(2, 3) is PickingListItemStatus.PARTIAL
        assert item_status(3, 3) is PickingListItemStatus.COMPLETE


class TestCreate:

    def test_create_links_sale(self, db, picking_list):
        sale = db.get(Sale, picking_list.sale_id)
        assert sale.picking_list_id == picking_list.id
        assert sale.picking_list_status == PickingListStatus.PENDING.value
        assert picking_list.notes == "Rush order"
        assert len(picking_list.items) == 2

    def test_second_open_list_rejected(self, coordinator, picking_list):
        with pytest.raises(DuplicatePickingListError):
            asyncio.run(coordinator.create(picking_list.sale_id))

    def test_new_list_allowed_after_cancel(self, coordinator, picking_list):
        coordinator.cancel(picking_list.id)
        replacement = asyncio.run(coordinator.create(picking_list.sale_id))
        assert replacement.id != picking_list.id

    def test_unknown_sale(self, coordinator):
        with pytest.raises(NotFoundError):
            asyncio.run(coordinator.create(999))


class TestUpdateItemQuantity:

    def test_partial_pick_moves_list_in_progress(self, db, coordinator, picking_list):
        item = picking_list.items[0]
        updated = coordinator.update_item_quantity(picking_list.id, item.id, 2)
        assert item.quantity_picked == 2
        assert item.status == PickingListItemStatus.PARTIAL.value
        assert updated.status == PickingListStatus.IN_PROGRESS.value
        assert db.get(Sale, picking_list.sale_id).picking_list_status == PickingListStatus.IN_PROGRESS.value

    def test_quantity_is_clamped(self, coordinator, picking_list):
        item = picking_list.items[0]
        coordinator.update_item_quantity(picking_list.id, item.id, 50)
        assert item.quantity_picked == item.quantity_required
        coordinator.update_item_quantity(picking_list.id, item.id, -4)
        assert item.quantity_picked == 0

    def test_unpicking_everything_returns_to_pending(self, coordinator, picking_list):
        item = picking_list.items[0]
        coordinator.update_item_quantity(picking_list.id, item.id, 1)
        updated = coordinator.update_item_quantity(picking_list.id, item.id, 0)
        assert updated.status == PickingListStatus.PENDING.value

    def test_unknown_item(self, coordinator, picking_list):
        with pytest.raises(NotFoundError):
            coordinator.update_item_quantity(picking_list.id, 9999, 1)

    def test_closed_list_rejects_updates(self, coordinator, picking_list):
        coordinator.cancel(picking_list.id)
        with pytest.raises(ValidationError):
            coordinator.update_item_quantity(picking_list.id, picking_list.items[0].id, 1)


class TestComplete:

    def test_incomplete_list_cannot_complete(self, coordinator, picking_list):
        with pytest.raises(IncompletePickingError) as exc:
            coordinator.complete(picking_list.id)
        assert set(exc.value.short_items) == {i.id for i in picking_list.items}

    def test_override_completes_short_list(self, coordinator, picking_list):
        done = coordinator.complete(picking_list.id, override=True)
        assert done.status == PickingListStatus.COMPLETED.value
        assert done.completed_at is not None

    def test_fully_picked_list_completes(self, db, coordinator, picking_list):
        for item in picking_list.items:
            coordinator.update_item_quantity(picking_list.id, item.id, item.quantity_required)
        done = coordinator.complete(picking_list.id)
        assert done.status == PickingListStatus.COMPLETED.value
        assert db.get(Sale, picking_list.sale_id).picking_list_status == PickingListStatus.COMPLETED.value

    def test_completed_list_cannot_complete_again(self, coordinator, picking_list):
        coordinator.complete(picking_list.id, override=True)
        with pytest.raises(ValidationError):
            coordinator.complete(picking_list.id)


class TestAssign:

    def test_assign_trims_name(self, coordinator, picking_list):
        assigned = coordinator.assign(picking_list.id, "  Sam  ")
        assert assigned.assigned_to == "Sam"

    def test_blank_assignee_rejected(self, coordinator, picking_list):
        with pytest.raises(ValidationError):
            coordinator.assign(picking_list.id, " ")
