"""
Order Service - Business Logic Layer

Orders move along pending -> confirmed -> shipped -> delivered, with
cancellation allowed from pending or confirmed. Status writes are
compare-and-swap updates on the previous status, so a duplicate or racing
request can never apply the same side effect twice.
"""
import logging
import secrets
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.orm import Session

from marketplace.config import settings
from marketplace.constants import MONEY_QUANTUM, OrderPaymentStatus, OrderStatus, PaymentStatus
from marketplace.exceptions import (
    InvalidTransitionError,
    OrderAlreadyRatedError,
    OrderNotCancellableError,
    OrderNotFoundError,
    PermissionDeniedError,
    ProductNotFoundError,
    StoreNotFoundError,
    ValidationError,
)
from marketplace.models.order import Order, OrderItem
from marketplace.publishers.event_publisher import EventPublisher
from marketplace.repositories.order_repository import OrderRepository
from marketplace.repositories.payment_repository import PaymentRepository
from marketplace.repositories.product_repository import ProductRepository, StoreRepository
from marketplace.schemas.order import (
    OrderCreate,
    OrderListResponse,
    OrderResponse,
    OrderStatsResponse,
    OrderStatusUpdate,
)
from marketplace.security import Actor
from marketplace.services.inventory_service import InventoryService
from marketplace.services.state_machine import (
    CANCELLABLE_ORDER_STATUSES,
    OPEN_PAYMENT_STATUSES,
    ORDER_TIMESTAMPS,
    ensure_order_transition,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderService:
    """Service layer for order business logic"""

    def __init__(self, db: Session, event_publisher: Optional[EventPublisher] = None):
        self.db = db
        self.repository = OrderRepository(db)
        self.product_repository = ProductRepository(db)
        self.payment_repository = PaymentRepository(db)
        self.store_repository = StoreRepository(db)
        self.event_publisher = event_publisher or EventPublisher()
        self.inventory = InventoryService(db, self.event_publisher)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: int, actor: Actor) -> OrderResponse:
        """Get order by ID (buyer, store owner or staff)"""
        order = self.get_order_model(order_id)
        self._ensure_can_view(order, actor)
        return OrderResponse.model_validate(order)

    def get_order_by_number(self, order_number: str, actor: Actor) -> OrderResponse:
        """Get order by its human-readable number"""
        order = self.repository.get_by_number(order_number)
        if not order:
            raise OrderNotFoundError(f"Order {order_number} not found")
        self._ensure_can_view(order, actor)
        return OrderResponse.model_validate(order)

    def list_orders(self, actor: Actor, skip: int = 0, limit: int = 100,
                    status: Optional[OrderStatus] = None,
                    store_id: Optional[int] = None) -> OrderListResponse:
        """
        List orders visible to the actor

        Staff see every order, store owners see their store's orders when
        they filter by store, everyone else sees their own purchases.
        """
        filters = {"status": status.value if status else None}
        if actor.is_staff:
            filters["store_id"] = store_id
        elif store_id is not None and self.owns_store(store_id, actor):
            filters["store_id"] = store_id
        else:
            filters["buyer_id"] = actor.user_id
            filters["store_id"] = store_id

        orders = self.repository.get_all(skip=skip, limit=limit, **filters)
        total = self.repository.count(**filters)
        return OrderListResponse(
            orders=[OrderResponse.model_validate(o) for o in orders],
            total=total
        )

    def get_stats(self, actor: Actor, store_id: Optional[int] = None) -> OrderStatsResponse:
        """Order counts per status for a store (owner) or the whole marketplace (staff)"""
        if not actor.is_staff:
            if store_id is None or not self.owns_store(store_id, actor):
                raise PermissionDeniedError("Only staff or the store owner can read order statistics")
        by_status = self.repository.count_by_status(store_id=store_id)
        return OrderStatsResponse(total_orders=sum(by_status.values()), by_status=by_status)

    def get_order_model(self, order_id: int) -> Order:
        order = self.repository.get_by_id(order_id)
        if not order:
            raise OrderNotFoundError(f"Order with id={order_id} not found")
        return order

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_order(self, order_data: OrderCreate, actor: Actor) -> OrderResponse:
        """
        Create new order

        Steps:
        1. Validate items and load products
        2. Snapshot unit prices and compute the total
        3. Save order and reserve stock for every line in one transaction
        4. Publish OrderCreated event

        Raises:
            ValidationError: If items are empty, invalid or span several stores
            ProductNotFoundError: If a product is missing or inactive
            InsufficientStockError: If any line exceeds available stock
        """
        if not order_data.items:
            raise ValidationError("Order must contain at least one item")
        for item in order_data.items:
            if item.quantity <= 0:
                raise ValidationError(f"Quantity for product {item.product_id} must be positive")

        product_ids = sorted({item.product_id for item in order_data.items})
        products = {p.id: p for p in self.product_repository.get_many(product_ids)}
        for product_id in product_ids:
            product = products.get(product_id)
            if not product or not product.is_active:
                raise ProductNotFoundError(f"Product {product_id} not found")

        store_ids = {p.store_id for p in products.values()}
        if len(store_ids) != 1:
            raise ValidationError("All items of an order must come from the same store")
        store_id = store_ids.pop()
        store = self.store_repository.get_by_id(store_id)
        if not store or not store.is_active:
            raise StoreNotFoundError(f"Store {store_id} not found")

        items = []
        for item in order_data.items:
            product = products[item.product_id]
            unit_price = Decimal(product.price).quantize(MONEY_QUANTUM)
            items.append(OrderItem(
                product_id=product.id,
                product_name=product.name,
                quantity=item.quantity,
                unit_price=unit_price,
                line_total=unit_price * item.quantity,
            ))

        subtotal = sum((i.line_total for i in items), Decimal("0")).quantize(MONEY_QUANTUM)
        shipping_fee = Decimal(order_data.shipping_fee).quantize(MONEY_QUANTUM)

        order = Order(
            order_number=self._generate_order_number(),
            buyer_id=actor.user_id,
            store_id=store_id,
            status=OrderStatus.PENDING.value,
            payment_status=OrderPaymentStatus.PENDING.value,
            payment_method=order_data.payment_method.value,
            currency=settings.DEFAULT_CURRENCY,
            subtotal=subtotal,
            shipping_fee=shipping_fee,
            total_amount=subtotal + shipping_fee,
            shipping_address=order_data.shipping_address.model_dump(),
            notes=order_data.notes,
            contact_email=order_data.contact_email,
            items=items,
        )

        try:
            self.repository.add(order)
            low_stock = self.inventory.reserve_items(
                (item.product_id, item.quantity) for item in order_data.items
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(order)
        logger.info("Order %s created for buyer %s (total %s)", order.order_number, order.buyer_id, order.total_amount)

        self.event_publisher.publish_order_created(self._event_data(order))
        self.inventory.publish_low_stock(low_stock)

        return OrderResponse.model_validate(order)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def update_order_status(self, order_id: int, status_data: OrderStatusUpdate,
                            actor: Actor) -> OrderResponse:
        """Dispatch a fulfilment status change"""
        target = OrderStatus(status_data.status)
        if target == OrderStatus.CONFIRMED:
            return self.confirm_order(order_id, actor)
        if target == OrderStatus.SHIPPED:
            return self.ship_order(order_id, actor, status_data.tracking_number, status_data.carrier)
        return self.deliver_order(order_id, actor)

    def confirm_order(self, order_id: int, actor: Actor) -> OrderResponse:
        return self._advance(order_id, OrderStatus.CONFIRMED, actor)

    def ship_order(self, order_id: int, actor: Actor, tracking_number: Optional[str] = None,
                   carrier: Optional[str] = None) -> OrderResponse:
        extra = {}
        if tracking_number:
            extra["tracking_number"] = tracking_number
        if carrier:
            extra["carrier"] = carrier
        return self._advance(order_id, OrderStatus.SHIPPED, actor, **extra)

    def deliver_order(self, order_id: int, actor: Actor) -> OrderResponse:
        return self._advance(order_id, OrderStatus.DELIVERED, actor)

    def cancel_order(self, order_id: int, actor: Actor, reason: Optional[str] = None) -> OrderResponse:
        """
        Cancel a pending or confirmed order and release its stock

        Cancelling an already cancelled order is a no-op.

        Raises:
            OrderNotCancellableError: If the order has shipped or reached another terminal status
        """
        order = self.get_order_model(order_id)
        if order.buyer_id != actor.user_id:
            self._ensure_can_fulfil(order, actor)

        if order.status == OrderStatus.CANCELLED.value:
            return OrderResponse.model_validate(order)
        if OrderStatus(order.status) not in CANCELLABLE_ORDER_STATUSES:
            raise OrderNotCancellableError(f"Cannot cancel an order with status: {order.status}")

        previous = order.status
        try:
            cancelled = self.apply_cancellation(order, reason or "Cancelled by request")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if cancelled:
            logger.info("Order %s cancelled by user %s", order.order_number, actor.user_id)
            self.publish_status_changed(order, previous)
        return OrderResponse.model_validate(order)

    def rate_order(self, order_id: int, actor: Actor, rating: int,
                   comment: Optional[str] = None) -> OrderResponse:
        """Attach the buyer's rating to a delivered order, once"""
        order = self.get_order_model(order_id)
        if order.buyer_id != actor.user_id:
            raise PermissionDeniedError("Only the buyer can rate this order")
        if order.status != OrderStatus.DELIVERED.value:
            raise ValidationError("Only delivered orders can be rated")
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")

        try:
            rated = self.repository.set_rating(order, rating, comment, utcnow())
            if not rated:
                raise OrderAlreadyRatedError(f"Order {order.order_number} has already been rated")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return OrderResponse.model_validate(order)

    # ------------------------------------------------------------------
    # Steps shared with the payment workflow (no commit)
    # ------------------------------------------------------------------

    def apply_cancellation(self, order: Order, reason: str) -> bool:
        """
        Cancel the order and release its reservations inside the caller's transaction

        Returns:
            True if this call cancelled the order, False if it was already cancelled
        """
        cancelled = self.repository.transition(
            order,
            [s.value for s in CANCELLABLE_ORDER_STATUSES],
            status=OrderStatus.CANCELLED.value,
            cancelled_at=utcnow(),
            cancellation_reason=reason,
        )
        if not cancelled:
            if order.status == OrderStatus.CANCELLED.value:
                return False
            raise OrderNotCancellableError(f"Cannot cancel an order with status: {order.status}")

        self.inventory.release_items(self._lines(order))
        self._cancel_open_payments(order)
        return True

    def apply_payment_completed(self, order: Order) -> Optional[str]:
        """
        Mark the order paid and auto-confirm it if still pending

        Returns:
            The previous status if the order status changed, else None

        Raises:
            InvalidTransitionError: If the order was cancelled or refunded
        """
        if order.status in (OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value):
            raise InvalidTransitionError(order.status, OrderPaymentStatus.PAID.value)
        self.repository.update_fields(order, payment_status=OrderPaymentStatus.PAID.value)
        if order.status != OrderStatus.PENDING.value:
            return None
        confirmed = self.repository.transition(
            order,
            [OrderStatus.PENDING.value],
            status=OrderStatus.CONFIRMED.value,
            confirmed_at=utcnow(),
        )
        return OrderStatus.PENDING.value if confirmed else None

    def apply_payment_failed(self, order: Order, reason: str) -> Optional[str]:
        """
        Mark the order's payment failed and cancel it if still cancellable

        Returns:
            The previous status if the order was cancelled, else None
        """
        previous = order.status
        self.repository.update_fields(order, payment_status=OrderPaymentStatus.FAILED.value)
        if OrderStatus(order.status) not in CANCELLABLE_ORDER_STATUSES:
            return None
        return previous if self.apply_cancellation(order, reason) else None

    def apply_refund(self, order: Order, full: bool) -> Optional[str]:
        """
        Record a refund on a delivered order

        Returns:
            The previous status if the order moved to refunded, else None
        """
        if not full:
            self.repository.update_fields(order, payment_status=OrderPaymentStatus.PARTIALLY_REFUNDED.value)
            return None

        ensure_order_transition(order.status, OrderStatus.REFUNDED.value)
        previous = order.status
        if not self.repository.transition(
            order,
            [previous],
            status=OrderStatus.REFUNDED.value,
            payment_status=OrderPaymentStatus.REFUNDED.value,
        ):
            raise InvalidTransitionError(order.status, OrderStatus.REFUNDED.value)
        return previous

    def publish_status_changed(self, order: Order, previous: str) -> None:
        event_data = self._event_data(order)
        event_data["old_status"] = previous
        event_data["new_status"] = order.status
        self.event_publisher.publish_order_status_changed(event_data)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _advance(self, order_id: int, target: OrderStatus, actor: Actor, **extra) -> OrderResponse:
        order = self.get_order_model(order_id)
        self._ensure_can_fulfil(order, actor)
        ensure_order_transition(order.status, target.value)

        previous = order.status
        values = {"status": target.value, ORDER_TIMESTAMPS[target]: utcnow(), **extra}
        try:
            if not self.repository.transition(order, [previous], **values):
                # Lost a race with another status change
                raise InvalidTransitionError(order.status, target.value)
            if target == OrderStatus.DELIVERED:
                self.inventory.consume_items(self._lines(order))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Order %s: %s → %s", order.order_number, previous, order.status)
        self.publish_status_changed(order, previous)
        return OrderResponse.model_validate(order)

    def _generate_order_number(self) -> str:
        """PREFIX-YYYYMMDD-NNNNNN with a random suffix, unique"""
        date_part = utcnow().strftime("%Y%m%d")
        while True:
            number = f"{settings.ORDER_NUMBER_PREFIX}-{date_part}-{secrets.randbelow(1_000_000):06d}"
            if not self.repository.number_exists(number):
                return number

    @staticmethod
    def _lines(order: Order) -> List[tuple]:
        return [(item.product_id, item.quantity) for item in order.items]

    def _cancel_open_payments(self, order: Order) -> None:
        """Close pending and processing payments so a late provider success cannot settle them"""
        open_statuses = [s.value for s in OPEN_PAYMENT_STATUSES]
        for payment in self.payment_repository.get_by_order(order.id):
            if payment.status not in open_statuses:
                continue
            closed = self.payment_repository.transition(
                payment,
                open_statuses,
                status=PaymentStatus.CANCELLED.value,
                failure_reason=f"Order {order.order_number} cancelled",
            )
            if closed:
                logger.info("Payment %s cancelled with order %s",
                            payment.transaction_reference, order.order_number)

    def owns_store(self, store_id: int, actor: Actor) -> bool:
        store = self.store_repository.get_by_id(store_id)
        return store is not None and store.owner_id == actor.user_id

    def _ensure_can_view(self, order: Order, actor: Actor) -> None:
        if order.buyer_id == actor.user_id or actor.is_staff:
            return
        if not self.owns_store(order.store_id, actor):
            raise PermissionDeniedError("Access to this order is not allowed")

    def _ensure_can_fulfil(self, order: Order, actor: Actor) -> None:
        if actor.is_staff:
            return
        if not self.owns_store(order.store_id, actor):
            raise PermissionDeniedError("Only the store owner or staff can manage this order")

    @staticmethod
    def _event_data(order: Order) -> dict:
        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "buyer_id": order.buyer_id,
            "contact_email": order.contact_email,
            "store_id": order.store_id,
            "status": order.status,
            "payment_status": order.payment_status,
            "total_amount": str(order.total_amount),
            "currency": order.currency,
            "items": [
                {
                    "product_id": item.product_id,
                    "product_name": item.product_name,
                    "quantity": item.quantity,
                    "unit_price": str(item.unit_price),
                }
                for item in order.items
            ],
        }
