"""
Material inventory models

Stock levels, what each sale needs, and the reservations held against stock
while a sale moves through fulfillment.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from shopsync.models.base import Base
from shopsync.models.enums import ReservationStatus


class Material(Base):
    __tablename__ = "materials"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    material_type = Column(String, nullable=True)  # leather, hardware, thread...
    unit = Column(String, default="piece")
    quantity_on_hand = Column(Integer, nullable=False, default=0)
    quantity_reserved = Column(Integer, nullable=False, default=0)
    location = Column(String, nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def quantity_available(self) -> int:
        return self.quantity_on_hand - self.quantity_reserved


class SaleMaterialRequirement(Base):
    """How much of a material a sale needs"""
    __tablename__ = "sale_material_requirements"
    __table_args__ = (
        UniqueConstraint("sale_id", "material_id", name="uq_requirement_sale_material"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), index=True, nullable=False)
    material_id = Column(Integer, ForeignKey("materials.id"), index=True, nullable=False)
    quantity = Column(Integer, nullable=False)

    material = relationship("Material")


class MaterialReservation(Base):
    """Stock held for a sale: reserved -> consumed on delivery, or released on cancel"""
    __tablename__ = "material_reservations"

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), index=True, nullable=False)
    material_id = Column(Integer, ForeignKey("materials.id"), index=True, nullable=False)
    quantity = Column(Integer, nullable=False)
    status = Column(String, index=True, nullable=False, default=ReservationStatus.RESERVED.value)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    material = relationship("Material")
