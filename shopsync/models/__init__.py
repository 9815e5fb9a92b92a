"""Database models for ShopSync"""

from shopsync.models.customer import Customer, ExternalCustomerMapping

from shopsync.models.sale import Sale, SaleItem

from shopsync.models.picking_list import PickingList, PickingListItem

from shopsync.models.inventory import (
    Material,
    SaleMaterialRequirement,
    MaterialReservation
)

from shopsync.models.integration import PlatformIntegration, SyncEvent

__all__ = [
    "Customer",
    "ExternalCustomerMapping",
    "Sale",
    "SaleItem",
    "PickingList",
    "PickingListItem",
    "Material",
    "SaleMaterialRequirement",
    "MaterialReservation",
    "PlatformIntegration",
    "SyncEvent",
]
