"""Pytest fixtures for marketplace tests."""

import hashlib
import hmac
import os
from decimal import Decimal

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TMONEY_WEBHOOK_SECRET"] = "tmoney-test-secret"
os.environ["MTN_MONEY_WEBHOOK_SECRET"] = "mtn-test-secret"
os.environ["WAVE_WEBHOOK_SECRET"] = ""
os.environ["EMAIL_SERVICE"] = "console"

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace import models  # noqa: F401
from marketplace.constants import PaymentMethod, UserRole
from marketplace.database import Base
from marketplace.publishers.event_publisher import EventPublisher
from marketplace.schemas.order import OrderCreate
from marketplace.schemas.product import ProductCreate, StoreCreate
from marketplace.security import Actor
from marketplace.services.gateway_client import PaymentGatewayClient
from marketplace.services.inventory_service import InventoryService
from marketplace.services.order_service import OrderService
from marketplace.services.payment_service import PaymentService
from marketplace.services.reconciliation_service import ReconciliationService

BUYER = Actor(user_id=1, role=UserRole.CUSTOMER)
OTHER_BUYER = Actor(user_id=2, role=UserRole.CUSTOMER)
VENDOR = Actor(user_id=10, role=UserRole.VENDOR)
OTHER_VENDOR = Actor(user_id=11, role=UserRole.VENDOR)
MANAGER = Actor(user_id=20, role=UserRole.MANAGER)
ADMIN = Actor(user_id=30, role=UserRole.ADMIN)

SHIPPING_ADDRESS = {
    "full_name": "Ama Mensah",
    "phone": "+22890123456",
    "street": "12 Rue du Commerce",
    "city": "Lome",
    "country": "TG",
}


def sign(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class RecordingPublisher(EventPublisher):
    """Publisher that keeps events in memory instead of sending them to RabbitMQ"""

    def __init__(self):
        super().__init__()
        self.events = []

    def publish(self, event_type, routing_key, data):
        self.events.append((event_type, routing_key, data))
        return True

    def types(self):
        return [event_type for event_type, _, _ in self.events]

    def of_type(self, event_type):
        return [data for kind, _, data in self.events if kind == event_type]


class GatewayStub:
    """Programmable handler for httpx.MockTransport"""

    def __init__(self):
        self.requests = []
        self.status_code = 202
        self.payload = {"status": "PENDING", "provider_reference": "PRV-0001"}
        self.error = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json=self.payload)


@pytest.fixture
def engine():
    """In-memory SQLite database shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def gateway():
    return GatewayStub()


@pytest.fixture
def gateway_client(gateway):
    return PaymentGatewayClient(transport=httpx.MockTransport(gateway))


@pytest.fixture
def no_retry_wait(monkeypatch):
    """Retry gateway calls immediately."""
    from tenacity import wait_none

    monkeypatch.setattr(PaymentGatewayClient.initiate_payment.retry, "wait", wait_none())


@pytest.fixture
def inventory_service(db, publisher):
    return InventoryService(db, publisher)


@pytest.fixture
def order_service(db, publisher):
    return OrderService(db, publisher)


@pytest.fixture
def payment_service(db, publisher, gateway_client):
    return PaymentService(db, publisher, gateway_client)


@pytest.fixture
def reconciliation_service(db, publisher, payment_service):
    return ReconciliationService(db, publisher, payment_service)


@pytest.fixture
def store(inventory_service):
    return inventory_service.create_store(StoreCreate(name="Boutique Lome"), VENDOR)


@pytest.fixture
def products(inventory_service, store):
    """Product A at 15000 (10 in stock) and product B at 25000 (5 in stock)."""
    product_a = inventory_service.create_product(ProductCreate(
        store_id=store.id, name="Pagne Wax", sku="WAX-001",
        price=Decimal("15000"), stock_quantity=10, low_stock_threshold=3,
    ), VENDOR)
    product_b = inventory_service.create_product(ProductCreate(
        store_id=store.id, name="Sac en raphia", sku="SAC-001",
        price=Decimal("25000"), stock_quantity=5, low_stock_threshold=2,
    ), VENDOR)
    return product_a, product_b


def order_payload(lines, **extra):
    payload = {
        "items": [{"product_id": product_id, "quantity": quantity} for product_id, quantity in lines],
        "shipping_address": SHIPPING_ADDRESS,
        "payment_method": PaymentMethod.TMONEY.value,
    }
    payload.update(extra)
    return payload


@pytest.fixture
def place_order(order_service, products):
    """Create an order of 2 x A and 1 x B (total 55000) unless told otherwise."""
    product_a, product_b = products

    def _place(lines=None, actor=BUYER, **extra):
        lines = lines or [(product_a.id, 2), (product_b.id, 1)]
        return order_service.create_order(OrderCreate(**order_payload(lines, **extra)), actor)

    return _place
