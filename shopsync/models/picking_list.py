"""
Picking list models

A picking list is the worklist of materials to gather for one sale.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime

from shopsync.models.base import Base
from shopsync.models.enums import PickingListItemStatus, PickingListStatus


class PickingList(Base):
    __tablename__ = "picking_lists"

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), index=True, nullable=True)
    status = Column(String, index=True, nullable=False, default=PickingListStatus.PENDING.value)
    assigned_to = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    items = relationship(
        "PickingListItem",
        back_populates="picking_list",
        order_by="PickingListItem.id",
        cascade="all, delete-orphan",
    )

    @property
    def is_open(self) -> bool:
        return PickingListStatus(self.status).is_open

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "status": self.status,
            "assigned_to": self.assigned_to,
            "notes": self.notes,
            "items": [item.to_dict() for item in self.items],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class PickingListItem(Base):
    __tablename__ = "picking_list_items"

    id = Column(Integer, primary_key=True, index=True)
    picking_list_id = Column(Integer, ForeignKey("picking_lists.id"), index=True, nullable=False)
    material_id = Column(Integer, ForeignKey("materials.id"), index=True, nullable=True)
    description = Column(String, nullable=True)
    quantity_required = Column(Integer, nullable=False, default=0)
    quantity_picked = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default=PickingListItemStatus.PENDING.value)
    notes = Column(Text, nullable=True)

    picking_list = relationship("PickingList", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "material_id": self.material_id,
            "description": self.description,
            "quantity_required": self.quantity_required,
            "quantity_picked": self.quantity_picked,
            "status": self.status,
            "notes": self.notes,
        }
