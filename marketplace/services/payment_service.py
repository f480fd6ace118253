"""
Payment Service - payment records, fees, status changes and refunds
"""
import logging
import secrets
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple
from sqlalchemy.orm import Session

from marketplace.config import settings
from marketplace.constants import (
    MOBILE_MONEY_METHODS,
    MONEY_QUANTUM,
    OrderPaymentStatus,
    OrderStatus,
    PAYMENT_FEES,
    PaymentMethod,
    PaymentStatus,
)
from marketplace.exceptions import (
    InvalidRefundAmountError,
    InvalidTransitionError,
    PaymentGatewayError,
    PaymentGatewayUnavailableError,
    PaymentNotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from marketplace.models.order import Order
from marketplace.models.payment import Payment
from marketplace.publishers.event_publisher import EventPublisher
from marketplace.repositories.payment_repository import PaymentRepository
from marketplace.schemas.payment import (
    FeeQuoteResponse,
    PaymentCreate,
    PaymentListResponse,
    PaymentResponse,
    PaymentStatsResponse,
)
from marketplace.security import Actor
from marketplace.services.gateway_client import PaymentGatewayClient
from marketplace.services.order_service import OrderService, utcnow
from marketplace.services.state_machine import (
    OPEN_PAYMENT_STATUSES,
    PAYMENT_TIMESTAMPS,
    ensure_payment_transition,
)

logger = logging.getLogger(__name__)

FAILURE_STATUSES = frozenset({PaymentStatus.FAILED, PaymentStatus.CANCELLED, PaymentStatus.EXPIRED})


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def calculate_fee(amount: Decimal, method: PaymentMethod) -> Decimal:
    """
    Fee for an amount under the method's schedule

    fee = clamp(amount * rate, minimum, maximum), never more than the amount.
    """
    schedule = PAYMENT_FEES[PaymentMethod(method)]
    fee = Decimal(amount) * schedule.rate
    fee = min(max(fee, schedule.minimum), schedule.maximum, Decimal(amount))
    return fee.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


class PaymentService:
    """Service layer for payment business logic"""

    def __init__(self, db: Session, event_publisher: Optional[EventPublisher] = None,
                 gateway_client: Optional[PaymentGatewayClient] = None):
        self.db = db
        self.repository = PaymentRepository(db)
        self.event_publisher = event_publisher or EventPublisher()
        self.gateway_client = gateway_client or PaymentGatewayClient()
        self.order_service = OrderService(db, self.event_publisher)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def quote_fee(amount: Decimal, method: PaymentMethod) -> FeeQuoteResponse:
        """Fee and net amount for an amount paid with a method"""
        amount = Decimal(amount).quantize(MONEY_QUANTUM)
        if amount <= 0:
            raise ValidationError("Amount must be positive")
        fee = calculate_fee(amount, method)
        return FeeQuoteResponse(method=method, amount=amount, fee_amount=fee, net_amount=amount - fee)

    def get_payment(self, payment_id: int, actor: Actor) -> PaymentResponse:
        payment = self.get_payment_model(payment_id)
        self._ensure_can_view(payment, actor)
        return PaymentResponse.model_validate(payment)

    def get_payment_by_reference(self, reference: str, actor: Actor) -> PaymentResponse:
        payment = self.repository.get_by_reference(reference)
        if not payment:
            raise PaymentNotFoundError(f"Payment {reference} not found")
        self._ensure_can_view(payment, actor)
        return PaymentResponse.model_validate(payment)

    def get_payments_for_order(self, order_id: int, actor: Actor) -> List[PaymentResponse]:
        # Raises if the actor may not see the order
        self.order_service.get_order(order_id, actor)
        return [PaymentResponse.model_validate(p) for p in self.repository.get_by_order(order_id)]

    def list_payments(self, actor: Actor, skip: int = 0, limit: int = 100,
                      status: Optional[PaymentStatus] = None,
                      store_id: Optional[int] = None) -> PaymentListResponse:
        """
        Payment history visible to the actor, newest first

        Staff see every payment, store owners their store's payments when
        they filter by store, everyone else their own payments.
        """
        filters = {"status": PaymentStatus(status).value if status else None}
        if actor.is_staff:
            filters["store_id"] = store_id
        elif store_id is not None and self.order_service.owns_store(store_id, actor):
            filters["store_id"] = store_id
        else:
            filters["buyer_id"] = actor.user_id
            filters["store_id"] = store_id

        payments = self.repository.get_all(skip=skip, limit=limit, **filters)
        return PaymentListResponse(
            payments=[PaymentResponse.model_validate(p) for p in payments],
            total=self.repository.count(**filters)
        )

    def get_stats(self, actor: Actor, store_id: Optional[int] = None) -> PaymentStatsResponse:
        """Payment counts and settled totals for a store (owner) or the whole marketplace (staff)"""
        if not actor.is_staff:
            if store_id is None or not self.order_service.owns_store(store_id, actor):
                raise PermissionDeniedError("Only staff or the store owner can read payment statistics")

        by_status = self.repository.count_by_status(store_id=store_id)
        collected, fees, refunded = self.repository.settled_totals(
            [PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value], store_id=store_id
        )
        return PaymentStatsResponse(
            total_payments=sum(by_status.values()),
            by_status=by_status,
            by_method=self.repository.count_by_method(store_id=store_id),
            total_collected=_money(collected),
            total_fees=_money(fees),
            total_refunded=_money(refunded),
        )

    def get_payment_model(self, payment_id: int) -> Payment:
        payment = self.repository.get_by_id(payment_id)
        if not payment:
            raise PaymentNotFoundError(f"Payment with id={payment_id} not found")
        return payment

    # ------------------------------------------------------------------
    # Creation and initiation
    # ------------------------------------------------------------------

    def create_payment(self, order_id: int, method: PaymentMethod, actor: Actor,
                       amount: Optional[Decimal] = None, currency: Optional[str] = None,
                       phone_number: Optional[str] = None) -> Payment:
        """
        Create a pending payment for an order

        Amount defaults to the order total. The fee is computed once here
        and net_amount = amount - fee_amount.

        Raises:
            OrderNotFoundError: If the order does not exist
            PermissionDeniedError: If the actor is neither the buyer nor staff
            ValidationError: If the order cannot take a payment or amount is invalid
        """
        order = self.order_service.get_order_model(order_id)
        if order.buyer_id != actor.user_id and not actor.is_staff:
            raise PermissionDeniedError("Only the buyer can pay for this order")
        if order.status not in (OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value):
            raise ValidationError(f"Cannot pay for an order with status: {order.status}")
        if order.payment_status == OrderPaymentStatus.PAID.value:
            raise ValidationError(f"Order {order.order_number} is already paid")

        amount = Decimal(order.total_amount if amount is None else amount).quantize(MONEY_QUANTUM)
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")
        if amount > order.total_amount:
            raise ValidationError("Payment amount exceeds the order total")

        fee = calculate_fee(amount, method)
        now = utcnow()
        payment = Payment(
            transaction_reference=self._generate_reference(),
            order_id=order.id,
            buyer_id=order.buyer_id,
            store_id=order.store_id,
            method=PaymentMethod(method).value,
            status=PaymentStatus.PENDING.value,
            amount=amount,
            currency=currency or order.currency,
            fee_amount=fee,
            net_amount=amount - fee,
            refund_amount=Decimal("0"),
            phone_number=phone_number,
            retry_count=0,
            initiated_at=now,
            expires_at=now + timedelta(minutes=settings.PAYMENT_EXPIRY_MINUTES),
        )

        try:
            self.repository.add(payment)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(payment)
        logger.info("Payment %s created for order %s (%s %s)",
                    payment.transaction_reference, order.order_number, payment.amount, payment.currency)
        return payment

    async def initiate_payment(self, payment_data: PaymentCreate, actor: Actor) -> PaymentResponse:
        """
        Create the payment and start collection with the provider

        Mobile-money collections are requested from the gateway and move the
        payment to processing; the result arrives later by webhook. Other
        methods stay pending until confirmed by staff.

        Raises:
            PaymentGatewayUnavailableError: If the gateway cannot be reached (payment stays pending)
        """
        method = PaymentMethod(payment_data.method)
        if method in MOBILE_MONEY_METHODS and not payment_data.phone_number:
            raise ValidationError("A phone number is required for mobile-money payments")

        payment = self.create_payment(
            payment_data.order_id, method, actor, phone_number=payment_data.phone_number
        )
        if method not in MOBILE_MONEY_METHODS:
            return PaymentResponse.model_validate(payment)

        try:
            provider_response = await self.gateway_client.initiate_payment(
                provider=method.value,
                reference=payment.transaction_reference,
                amount=payment.amount,
                currency=payment.currency,
                phone_number=payment.phone_number,
            )
        except (PaymentGatewayUnavailableError, PaymentGatewayError) as e:
            self._record_attempt_failure(payment, str(e))
            raise

        return self.update_status(payment.id, PaymentStatus.PROCESSING, provider_response=provider_response)

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def update_status(self, payment_id: int, new_status: PaymentStatus,
                      external_transaction_id: Optional[str] = None,
                      failure_reason: Optional[str] = None,
                      provider_response: Optional[dict] = None,
                      actor: Optional[Actor] = None) -> PaymentResponse:
        """
        Move a payment to a new status and cascade the result to its order

        completed stamps completed_at and records the external transaction id;
        failed stamps failed_at and records the reason. Completed and refunded
        payments only change through process_refund.

        Raises:
            PermissionDeniedError: If an actor is given and is not an admin
            InvalidTransitionError: If the move is not allowed
        """
        if actor is not None and not actor.is_admin:
            raise PermissionDeniedError("Only administrators can change payment status")

        payment = self.get_payment_model(payment_id)
        try:
            order, previous_order_status = self.apply_status(
                payment,
                PaymentStatus(new_status),
                external_transaction_id=external_transaction_id,
                failure_reason=failure_reason,
                provider_response=provider_response,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.publish_result(payment, order, previous_order_status)
        return PaymentResponse.model_validate(payment)

    def apply_status(self, payment: Payment, target: PaymentStatus,
                     external_transaction_id: Optional[str] = None,
                     failure_reason: Optional[str] = None,
                     provider_response: Optional[dict] = None,
                     **extra) -> Tuple[Order, Optional[str]]:
        """
        Apply a status change inside the caller's transaction

        Returns:
            The payment's order and its previous status if the order status changed
        """
        if target == PaymentStatus.REFUNDED:
            raise InvalidTransitionError(payment.status, target.value)
        ensure_payment_transition(payment.status, target.value)

        values = {"status": target.value, **extra}
        timestamp_column = PAYMENT_TIMESTAMPS.get(target)
        if timestamp_column:
            values[timestamp_column] = utcnow()
        if external_transaction_id:
            values["external_transaction_id"] = external_transaction_id
        if failure_reason:
            values["failure_reason"] = failure_reason
        if provider_response is not None:
            values["provider_response"] = provider_response

        current = payment.status
        if not self.repository.transition(payment, [current], **values):
            raise InvalidTransitionError(payment.status, target.value)

        order = self.order_service.get_order_model(payment.order_id)
        previous_order_status = None
        if target == PaymentStatus.COMPLETED:
            previous_order_status = self.order_service.apply_payment_completed(order)
        elif target in FAILURE_STATUSES and order.payment_status != OrderPaymentStatus.PAID.value:
            reason = failure_reason or f"Payment {payment.transaction_reference} {target.value}"
            previous_order_status = self.order_service.apply_payment_failed(order, reason)

        logger.info("Payment %s: %s → %s", payment.transaction_reference, current, target.value)
        return order, previous_order_status

    def process_refund(self, payment_id: int, amount: Decimal, reason: Optional[str],
                       actor: Actor) -> PaymentResponse:
        """
        Refund part or all of a completed payment of a delivered order

        Refunds accumulate in refund_amount. When they reach the payment
        amount the payment becomes refunded and the order moves to refunded;
        otherwise the payment stays completed and the order is marked
        partially refunded.

        Raises:
            InvalidRefundAmountError: If the payment is not completed, the order is not
                delivered, or the refunds would exceed the payment amount
        """
        payment = self.get_payment_model(payment_id)
        order = self.order_service.get_order_model(payment.order_id)
        if not actor.is_staff and not self.order_service.owns_store(order.store_id, actor):
            raise PermissionDeniedError("Only the store owner or staff can refund payments")

        amount = Decimal(amount).quantize(MONEY_QUANTUM)
        if payment.status != PaymentStatus.COMPLETED.value:
            raise InvalidRefundAmountError(f"Cannot refund a payment with status: {payment.status}")
        if amount <= 0:
            raise InvalidRefundAmountError("Refund amount must be positive")
        already_refunded = Decimal(payment.refund_amount or 0)
        if amount + already_refunded > payment.amount:
            raise InvalidRefundAmountError(
                f"Refund of {amount} exceeds refundable amount {payment.amount - already_refunded}"
            )
        if order.status != OrderStatus.DELIVERED.value:
            raise InvalidRefundAmountError(f"Order with status {order.status} is not eligible for refund")

        total_refunded = amount + already_refunded
        full = total_refunded == payment.amount
        values = {
            "refund_amount": total_refunded,
            "refund_reason": reason,
            "refunded_at": utcnow(),
        }
        if full:
            ensure_payment_transition(payment.status, PaymentStatus.REFUNDED.value)
            values["status"] = PaymentStatus.REFUNDED.value

        try:
            if not self.repository.record_refund(payment, already_refunded, **values):
                raise InvalidRefundAmountError("Payment changed while refunding, retry the refund")
            previous_order_status = self.order_service.apply_refund(order, full)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Refunded %s on payment %s (total refunded %s)",
                    amount, payment.transaction_reference, payment.refund_amount)
        self.event_publisher.publish_payment_refunded({
            **self._event_data(payment),
            "refund": str(amount),
            "reason": reason,
        })
        if previous_order_status:
            self.order_service.publish_status_changed(order, previous_order_status)
        return PaymentResponse.model_validate(payment)

    def expire_stale_payments(self, now: Optional[datetime] = None) -> int:
        """
        Expire open payments past their expiry time

        Intended to be called periodically by an external scheduler.

        Returns:
            Number of payments expired
        """
        now = now or utcnow()
        expired = 0
        for payment in self.repository.get_stale([s.value for s in OPEN_PAYMENT_STATUSES], now):
            try:
                order, previous_order_status = self.apply_status(
                    payment, PaymentStatus.EXPIRED, failure_reason="Payment expired"
                )
                self.db.commit()
            except InvalidTransitionError:
                # Settled concurrently by a webhook
                self.db.rollback()
                continue
            except Exception:
                self.db.rollback()
                raise
            expired += 1
            self.publish_result(payment, order, previous_order_status)
        if expired:
            logger.info("Expired %s stale payment(s)", expired)
        return expired

    def publish_result(self, payment: Payment, order: Order, previous_order_status: Optional[str]) -> None:
        """Notify subscribers of a settled payment and any order change"""
        if payment.status == PaymentStatus.COMPLETED.value:
            self.event_publisher.publish_payment_completed(self._event_data(payment))
        elif PaymentStatus(payment.status) in FAILURE_STATUSES:
            self.event_publisher.publish_payment_failed(self._event_data(payment))
        if previous_order_status:
            self.order_service.publish_status_changed(order, previous_order_status)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record_attempt_failure(self, payment: Payment, reason: str) -> None:
        try:
            self.repository.update_fields(
                payment,
                retry_count=payment.retry_count + 1,
                last_retry_at=utcnow(),
                failure_reason=reason,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.warning("Payment %s initiation failed (attempt %s): %s",
                       payment.transaction_reference, payment.retry_count, reason)

    def _generate_reference(self) -> str:
        """PREFIX-YYYYMMDD-XXXXXXXX with an opaque random suffix, unique"""
        date_part = utcnow().strftime("%Y%m%d")
        while True:
            reference = f"{settings.TRANSACTION_PREFIX}-{date_part}-{secrets.token_hex(4).upper()}"
            if not self.repository.reference_exists(reference):
                return reference

    def _ensure_can_view(self, payment: Payment, actor: Actor) -> None:
        if payment.buyer_id == actor.user_id or actor.is_staff:
            return
        if not self.order_service.owns_store(payment.store_id, actor):
            raise PermissionDeniedError("Access to this payment is not allowed")

    @staticmethod
    def _event_data(payment: Payment) -> dict:
        return {
            "payment_id": payment.id,
            "transaction_reference": payment.transaction_reference,
            "order_id": payment.order_id,
            "buyer_id": payment.buyer_id,
            "store_id": payment.store_id,
            "method": payment.method,
            "status": payment.status,
            "amount": str(payment.amount),
            "currency": payment.currency,
            "external_transaction_id": payment.external_transaction_id,
            "failure_reason": payment.failure_reason,
        }
