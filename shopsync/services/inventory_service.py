"""
Inventory Service
Material requirements and reservations driven by fulfillment transitions

``InventoryGateway`` is the contract the fulfillment state machine calls.
``LocalInventoryGateway`` implements it on the local tables. It only flushes;
the caller commits, so a reservation is persisted together with the status
change that required it.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

from sqlalchemy.orm import Session

from shopsync.models.enums import ReservationStatus
from shopsync.models.inventory import Material, MaterialReservation, SaleMaterialRequirement
from shopsync.utils.logger import log


@dataclass
class MaterialRequirement:
    material_id: int
    material_name: str
    quantity: int
    available: int

    @property
    def is_short(self) -> bool:
        return self.available < self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "material_id": self.material_id,
            "material_name": self.material_name,
            "quantity": self.quantity,
            "available": self.available,
        }


@dataclass
class AvailabilityReport:
    all_available: bool
    missing_items: List[MaterialRequirement] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "all_available": self.all_available,
            "missing_items": [item.to_dict() for item in self.missing_items],
        }


class InventoryGateway(Protocol):
    async def get_material_requirements(self, sale_id: int) -> List[MaterialRequirement]:
        ...

    async def reserve_materials(self, sale_id: int) -> bool:
        ...

    async def update_inventory_on_fulfillment(self, sale_id: int) -> bool:
        ...

    async def release_materials(self, sale_id: int) -> bool:
        ...

    async def check_material_availability(self, sale_id: int) -> AvailabilityReport:
        ...


class LocalInventoryGateway:
    """InventoryGateway backed by the materials tables"""

    def __init__(self, db: Session):
        self.db = db

    async def get_material_requirements(self, sale_id: int) -> List[MaterialRequirement]:
        rows = (
            self.db.query(SaleMaterialRequirement, Material)
            .join(Material, Material.id == SaleMaterialRequirement.material_id)
            .filter(SaleMaterialRequirement.sale_id == sale_id)
            .order_by(SaleMaterialRequirement.id)
            .all()
        )
        return [
            MaterialRequirement(
                material_id=material.id,
                material_name=material.name,
                quantity=requirement.quantity,
                available=material.quantity_available,
            )
            for requirement, material in rows
        ]

    async def check_material_availability(self, sale_id: int) -> AvailabilityReport:
        requirements = await self.get_material_requirements(sale_id)
        missing = [r for r in requirements if r.is_short]
        return AvailabilityReport(all_available=not missing, missing_items=missing)

    def _reservations(self, sale_id: int, status: ReservationStatus) -> List[MaterialReservation]:
        return self.db.query(MaterialReservation).filter(
            MaterialReservation.sale_id == sale_id,
            MaterialReservation.status == status.value,
        ).all()

    async def reserve_materials(self, sale_id: int) -> bool:
        """
        Reserve every required material for the sale, or nothing.

        Returns False when any material is short. Calling again while the
        reservation is held is a no-op that returns True.
        """
        if self._reservations(sale_id, ReservationStatus.RESERVED):
            return True

        requirements = await self.get_material_requirements(sale_id)
        short = [r for r in requirements if r.is_short]
        if short:
            log.warning(
                f"Cannot reserve materials for sale {sale_id}: short on "
                + ", ".join(f"{r.material_name} (need {r.quantity}, have {r.available})" for r in short)
            )
            return False

        for requirement in requirements:
            material = self.db.get(Material, requirement.material_id)
            material.quantity_reserved += requirement.quantity
            self.db.add(MaterialReservation(
                sale_id=sale_id,
                material_id=requirement.material_id,
                quantity=requirement.quantity,
                status=ReservationStatus.RESERVED.value,
            ))
        self.db.flush()

        if requirements:
            log.info(f"Reserved {len(requirements)} material(s) for sale {sale_id}")
        return True

    async def update_inventory_on_fulfillment(self, sale_id: int) -> bool:
        """Consume the sale's reservations: stock leaves the shelf."""
        reservations = self._reservations(sale_id, ReservationStatus.RESERVED)
        for reservation in reservations:
            material = self.db.get(Material, reservation.material_id)
            if material.quantity_on_hand < reservation.quantity:
                log.warning(
                    f"Material {material.id} has {material.quantity_on_hand} on hand, "
                    f"cannot consume {reservation.quantity} for sale {sale_id}"
                )
                return False
            material.quantity_on_hand -= reservation.quantity
            material.quantity_reserved -= reservation.quantity
            reservation.status = ReservationStatus.CONSUMED.value
        self.db.flush()

        if reservations:
            log.info(f"Consumed {len(reservations)} reservation(s) for sale {sale_id}")
        return True

    async def release_materials(self, sale_id: int) -> bool:
        """Return reserved stock to the available pool."""
        reservations = self._reservations(sale_id, ReservationStatus.RESERVED)
        for reservation in reservations:
            material = self.db.get(Material, reservation.material_id)
            material.quantity_reserved = max(material.quantity_reserved - reservation.quantity, 0)
            reservation.status = ReservationStatus.RELEASED.value
        self.db.flush()

        if reservations:
            log.info(f"Released {len(reservations)} reservation(s) for sale {sale_id}")
        return True
