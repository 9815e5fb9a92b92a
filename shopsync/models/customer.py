"""
Customer data models
Buyers from every channel plus their marketplace identity mappings
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from shopsync.models.base import Base
from shopsync.models.enums import CustomerSource, CustomerStatus, CustomerTier


class Customer(Base):
    """Unified customer model"""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, default="")
    email = Column(String, index=True, nullable=True)  # Soft-unique, used for dedup
    phone = Column(String, nullable=True)

    # Classification
    status = Column(String, default=CustomerStatus.ACTIVE.value)
    tier = Column(String, default=CustomerTier.STANDARD.value)
    source = Column(String, default=CustomerSource.OTHER.value)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    sales = relationship("Sale", back_populates="customer")
    external_mappings = relationship("ExternalCustomerMapping", back_populates="customer")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "status": self.status,
            "tier": self.tier,
            "source": self.source,
        }


class ExternalCustomerMapping(Base):
    """Links one (platform, external customer id) to exactly one internal customer"""
    __tablename__ = "external_customer_mappings"
    __table_args__ = (
        UniqueConstraint("platform", "external_id", name="uq_customer_mapping_platform_external"),
    )

    id = Column(Integer, primary_key=True, index=True)
    platform = Column(String, index=True, nullable=False)
    external_id = Column(String, index=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True, nullable=False)
    email = Column(String, nullable=True)  # Email seen when the mapping was made

    created_at = Column(DateTime, server_default=func.now())
    last_synced_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    customer = relationship("Customer", back_populates="external_mappings")
