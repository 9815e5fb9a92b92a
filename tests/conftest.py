"""
Shared fixtures: an isolated in-memory database per test and a service
runtime wired to it.
"""
import os

os.environ.setdefault("SYNC_SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shopsync.models.base import init_db
from shopsync.models.customer import Customer
from shopsync.models.enums import FulfillmentStatus, PaymentStatus, SaleStatus, SalesChannel
from shopsync.models.inventory import Material, SaleMaterialRequirement
from shopsync.models.sale import Sale, SaleItem
from shopsync.services.runtime import ServiceRuntime
from shopsync.utils.credentials import CredentialCipher


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def cipher():
    return CredentialCipher(Fernet.generate_key())


@pytest.fixture
def runtime(cipher):
    return ServiceRuntime(cipher=cipher)


@pytest.fixture
def customer(db):
    customer = Customer(name="Ada Lovelace", email="ada@example.com")
    db.add(customer)
    db.commit()
    return customer


@pytest.fixture
def make_sale(db, customer):
    """Factory for committed sales in a given fulfillment status."""

    def _make(
        status=FulfillmentStatus.PENDING,
        channel=SalesChannel.DIRECT,
        total_amount=10000,
        platform_fees=0,
        external_order_id=None,
        items=(("Leather wallet", 1, 10000),),
    ):
        sale = Sale(
            channel=SalesChannel(channel).value,
            external_order_id=external_order_id,
            customer_id=customer.id,
            fulfillment_status=FulfillmentStatus(status).value,
            payment_status=PaymentStatus.PAID.value,
            sale_status=SaleStatus.CONFIRMED.value,
        )
        sale.set_amounts(total_amount, platform_fees)
        for position, (name, quantity, unit_price) in enumerate(items):
            sale.items.append(SaleItem(position=position, name=name, quantity=quantity, unit_price=unit_price))
        db.add(sale)
        db.commit()
        return sale

    return _make


@pytest.fixture
def material_for(db):
    """Attach a material requirement to a sale; returns the Material."""

    def _attach(sale, name="Veg-tan leather", on_hand=10, required=2):
        material = Material(name=name, quantity_on_hand=on_hand, quantity_reserved=0)
        db.add(material)
        db.flush()
        db.add(SaleMaterialRequirement(sale_id=sale.id, material_id=material.id, quantity=required))
        db.commit()
        return material

    return _attach
