"""Tests for order creation and the order lifecycle."""

import re
import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from marketplace.constants import OrderStatus, PaymentMethod, PaymentStatus, UserRole
from marketplace.database import Base
from marketplace.exceptions import (
    InsufficientStockError,
    InvalidTransitionError,
    OrderAlreadyRatedError,
    OrderNotCancellableError,
    PermissionDeniedError,
    ProductNotFoundError,
    ValidationError,
)
from marketplace.models.order import Order
from marketplace.models.product import Product
from marketplace.schemas.order import OrderCreate, OrderStatusUpdate
from marketplace.schemas.product import ProductCreate, StoreCreate
from marketplace.security import Actor
from marketplace.services.inventory_service import InventoryService
from marketplace.services.order_service import OrderService

from conftest import BUYER, MANAGER, OTHER_BUYER, OTHER_VENDOR, VENDOR, order_payload


def stock(db, product_id):
    product = db.get(Product, product_id, populate_existing=True)
    return product.stock_quantity, product.reserved_quantity


class TestCreateOrder:
    def test_total_and_reservation(self, db, place_order, products, publisher):
        product_a, product_b = products
        order = place_order()

        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.subtotal == Decimal("55000.00")
        assert order.total_amount == Decimal("55000.00")
        assert [(i.product_id, i.quantity, i.unit_price) for i in order.items] == [
            (product_a.id, 2, Decimal("15000.00")),
            (product_b.id, 1, Decimal("25000.00")),
        ]
        assert stock(db, product_a.id) == (8, 2)
        assert stock(db, product_b.id) == (4, 1)
        assert publisher.types() == ["OrderCreated"]

    def test_order_number_format(self, place_order):
        order = place_order()
        assert re.fullmatch(r"AFM-\d{8}-\d{6}", order.order_number)

    def test_shipping_fee_added_to_total(self, place_order):
        order = place_order(shipping_fee="2000")
        assert order.shipping_fee == Decimal("2000.00")
        assert order.total_amount == Decimal("57000.00")

    def test_insufficient_stock_reserves_nothing(self, db, place_order, products, publisher):
        product_a, product_b = products
        with pytest.raises(InsufficientStockError):
            place_order([(product_a.id, 2), (product_b.id, 6)])
        assert stock(db, product_a.id) == (10, 0)
        assert stock(db, product_b.id) == (5, 0)
        assert publisher.events == []

    def test_oversell_is_refused(self, db, place_order, products):
        _, product_b = products
        place_order([(product_b.id, 3)])
        place_order([(product_b.id, 2)], actor=OTHER_BUYER)
        with pytest.raises(InsufficientStockError):
            place_order([(product_b.id, 1)])
        assert stock(db, product_b.id) == (0, 5)

    def test_unknown_product(self, place_order):
        with pytest.raises(ProductNotFoundError):
            place_order([(404, 1)])

    def test_items_from_several_stores(self, inventory_service, place_order, products):
        product_a, _ = products
        other_store = inventory_service.create_store(StoreCreate(name="Autre"), OTHER_VENDOR)
        foreign = inventory_service.create_product(ProductCreate(
            store_id=other_store.id, name="Chapeau", price=Decimal("5000"), stock_quantity=3,
        ), OTHER_VENDOR)
        with pytest.raises(ValidationError):
            place_order([(product_a.id, 1), (foreign.id, 1)])

    def test_low_stock_event(self, place_order, products, publisher):
        _, product_b = products
        place_order([(product_b.id, 3)])
        assert publisher.types() == ["OrderCreated", "ProductLowStock"]

    def test_empty_order_rejected_by_schema(self):
        with pytest.raises(ValueError):
            OrderCreate(**order_payload([]))


class TestTransitions:
    def test_full_fulfilment_path(self, db, order_service, place_order, products, publisher):
        product_a, _ = products
        order = place_order()

        order = order_service.confirm_order(order.id, VENDOR)
        assert order.status == "confirmed"
        assert order.confirmed_at is not None

        order = order_service.ship_order(order.id, VENDOR, tracking_number="TRK-1", carrier="DHL")
        assert order.status == "shipped"
        assert order.tracking_number == "TRK-1"

        order = order_service.deliver_order(order.id, VENDOR)
        assert order.status == "delivered"
        assert stock(db, product_a.id) == (8, 0)

        changes = publisher.of_type("OrderStatusChanged")
        assert [(c["old_status"], c["new_status"]) for c in changes] == [
            ("pending", "confirmed"), ("confirmed", "shipped"), ("shipped", "delivered"),
        ]

    def test_update_order_status_dispatch(self, order_service, place_order):
        order = place_order()
        order = order_service.update_order_status(order.id, OrderStatusUpdate(status="confirmed"), MANAGER)
        assert order.status == "confirmed"

    @pytest.mark.parametrize("target", ["shipped", "delivered"])
    def test_skipping_a_step_is_invalid(self, order_service, place_order, target):
        order = place_order()
        with pytest.raises(InvalidTransitionError):
            order_service.update_order_status(order.id, OrderStatusUpdate(status=target), VENDOR)

    def test_second_confirm_is_invalid(self, order_service, place_order):
        order = place_order()
        order_service.confirm_order(order.id, VENDOR)
        with pytest.raises(InvalidTransitionError):
            order_service.confirm_order(order.id, VENDOR)

    def test_buyer_cannot_fulfil(self, order_service, place_order):
        order = place_order()
        with pytest.raises(PermissionDeniedError):
            order_service.confirm_order(order.id, BUYER)


class TestCancel:
    def test_cancel_releases_stock(self, db, order_service, place_order, products, publisher):
        product_a, product_b = products
        order = place_order()
        order = order_service.cancel_order(order.id, BUYER, "Changed my mind")

        assert order.status == "cancelled"
        assert order.cancellation_reason == "Changed my mind"
        assert order.cancelled_at is not None
        assert stock(db, product_a.id) == (10, 0)
        assert stock(db, product_b.id) == (5, 0)
        assert publisher.of_type("OrderStatusChanged")[0]["new_status"] == "cancelled"

    def test_cancel_confirmed_order(self, db, order_service, place_order, products):
        product_a, _ = products
        order = place_order()
        order_service.confirm_order(order.id, VENDOR)
        assert order_service.cancel_order(order.id, VENDOR).status == "cancelled"
        assert stock(db, product_a.id) == (10, 0)

    def test_cancel_closes_open_payments(self, db, order_service, payment_service, place_order):
        order = place_order()
        first = payment_service.create_payment(order.id, PaymentMethod.CARD, BUYER)
        second = payment_service.create_payment(order.id, PaymentMethod.BANK_TRANSFER, BUYER)
        payment_service.update_status(second.id, PaymentStatus.PROCESSING)

        order_service.cancel_order(order.id, BUYER)

        for payment in (first, second):
            db.refresh(payment)
            assert payment.status == "cancelled"
            assert payment.failure_reason == f"Order {order.order_number} cancelled"

    def test_cancel_twice_is_a_noop(self, db, order_service, place_order, products, publisher):
        product_a, _ = products
        order = place_order()
        order_service.cancel_order(order.id, BUYER)
        again = order_service.cancel_order(order.id, BUYER)

        assert again.status == "cancelled"
        assert stock(db, product_a.id) == (10, 0)
        assert len(publisher.of_type("OrderStatusChanged")) == 1

    def test_cannot_cancel_shipped_order(self, db, order_service, place_order, products):
        product_a, _ = products
        order = place_order()
        order_service.confirm_order(order.id, VENDOR)
        order_service.ship_order(order.id, VENDOR)
        with pytest.raises(OrderNotCancellableError):
            order_service.cancel_order(order.id, BUYER)
        assert stock(db, product_a.id) == (8, 2)

    def test_stranger_cannot_cancel(self, order_service, place_order):
        order = place_order()
        with pytest.raises(PermissionDeniedError):
            order_service.cancel_order(order.id, OTHER_BUYER)


class TestRating:
    def deliver(self, order_service, order):
        for step in (order_service.confirm_order, order_service.ship_order, order_service.deliver_order):
            step(order.id, VENDOR)

    def test_rate_delivered_order_once(self, order_service, place_order):
        order = place_order()
        self.deliver(order_service, order)
        rated = order_service.rate_order(order.id, BUYER, 5, "Parfait")
        assert rated.rating == 5
        assert rated.rated_at is not None
        with pytest.raises(OrderAlreadyRatedError):
            order_service.rate_order(order.id, BUYER, 1)

    def test_cannot_rate_undelivered_order(self, order_service, place_order):
        order = place_order()
        with pytest.raises(ValidationError):
            order_service.rate_order(order.id, BUYER, 4)


class TestQueries:
    def test_buyers_only_see_their_orders(self, order_service, place_order, products):
        product_a, _ = products
        place_order([(product_a.id, 1)])
        place_order([(product_a.id, 1)], actor=OTHER_BUYER)

        assert order_service.list_orders(BUYER).total == 1
        assert order_service.list_orders(MANAGER).total == 2

    def test_owner_lists_store_orders(self, order_service, place_order, store):
        place_order()
        listing = order_service.list_orders(VENDOR, store_id=store.id)
        assert listing.total == 1

    def test_filter_by_status(self, order_service, place_order, products):
        product_a, _ = products
        first = place_order([(product_a.id, 1)])
        place_order([(product_a.id, 1)])
        order_service.cancel_order(first.id, BUYER)
        listing = order_service.list_orders(BUYER, status=OrderStatus.CANCELLED)
        assert [o.id for o in listing.orders] == [first.id]

    def test_get_by_number(self, order_service, place_order):
        order = place_order()
        assert order_service.get_order_by_number(order.order_number, BUYER).id == order.id

    def test_other_buyer_cannot_view(self, order_service, place_order):
        order = place_order()
        with pytest.raises(PermissionDeniedError):
            order_service.get_order(order.id, OTHER_BUYER)

    def test_stats(self, order_service, place_order, products, store):
        product_a, _ = products
        first = place_order([(product_a.id, 1)])
        place_order([(product_a.id, 1)])
        order_service.cancel_order(first.id, BUYER)

        stats = order_service.get_stats(VENDOR, store_id=store.id)
        assert stats.total_orders == 2
        assert stats.by_status == {"pending": 1, "cancelled": 1}
        with pytest.raises(PermissionDeniedError):
            order_service.get_stats(BUYER, store_id=store.id)


class TestConcurrentOrders:
    BUYERS = 8
    STOCK = 5

    @pytest.fixture
    def sessions(self, tmp_path):
        """Session factory over a file database so each thread gets its own connection."""
        engine = create_engine(
            f"sqlite:///{tmp_path / 'marketplace.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(bind=engine)
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
        engine.dispose()

    def test_racing_buyers_never_oversell(self, sessions, publisher):
        setup = sessions()
        inventory = InventoryService(setup, publisher)
        store = inventory.create_store(StoreCreate(name="Boutique Kara"), VENDOR)
        product = inventory.create_product(ProductCreate(
            store_id=store.id, name="Calebasse", price=Decimal("3000"), stock_quantity=self.STOCK,
        ), VENDOR)
        setup.close()

        barrier = threading.Barrier(self.BUYERS, timeout=30)

        def buy(user_id):
            session = sessions()
            try:
                service = OrderService(session, publisher)
                barrier.wait()
                service.create_order(
                    OrderCreate(**order_payload([(product.id, 1)])),
                    Actor(user_id=user_id, role=UserRole.CUSTOMER),
                )
                return "ordered"
            except InsufficientStockError:
                return "sold out"
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=self.BUYERS) as pool:
            outcomes = list(pool.map(buy, range(100, 100 + self.BUYERS)))

        assert outcomes.count("ordered") == self.STOCK
        assert outcomes.count("sold out") == self.BUYERS - self.STOCK

        check = sessions()
        try:
            assert stock(check, product.id) == (0, self.STOCK)
            assert check.query(Order).count() == self.STOCK
        finally:
            check.close()
