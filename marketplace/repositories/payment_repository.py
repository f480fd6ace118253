"""
Payment Repository - Data Access Layer
"""
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import desc, func, update

from marketplace.models.payment import Payment


class PaymentRepository:
    """Repository for Payment persistence"""

    def __init__(self, db: Session):
        self.db = db

    def _filtered(self, buyer_id: Optional[int] = None, store_id: Optional[int] = None,
                  status: Optional[str] = None):
        query = self.db.query(Payment)
        if buyer_id is not None:
            query = query.filter(Payment.buyer_id == buyer_id)
        if store_id is not None:
            query = query.filter(Payment.store_id == store_id)
        if status is not None:
            query = query.filter(Payment.status == status)
        return query

    def get_all(self, skip: int = 0, limit: int = 100, **filters) -> List[Payment]:
        """Get payments with pagination and optional buyer/store/status filters, newest first"""
        return self._filtered(**filters).order_by(
            desc(Payment.initiated_at), desc(Payment.id)
        ).offset(skip).limit(limit).all()

    def count(self, **filters) -> int:
        """Count payments matching the filters"""
        return self._filtered(**filters).count()

    def get_by_id(self, payment_id: int) -> Optional[Payment]:
        """Get payment by ID"""
        return self.db.query(Payment).filter(Payment.id == payment_id).first()

    def get_by_reference(self, reference: str) -> Optional[Payment]:
        """Get payment by transaction reference"""
        return self.db.query(Payment).filter(Payment.transaction_reference == reference).first()

    def reference_exists(self, reference: str) -> bool:
        return self.db.query(Payment.id).filter(Payment.transaction_reference == reference).first() is not None

    def get_by_order(self, order_id: int) -> List[Payment]:
        """Get payments of an order, newest first"""
        return self.db.query(Payment).filter(
            Payment.order_id == order_id
        ).order_by(desc(Payment.id)).all()

    def get_stale(self, statuses: Iterable[str], now: datetime) -> List[Payment]:
        """Get payments in the given statuses whose expiry has passed"""
        return self.db.query(Payment).filter(
            Payment.status.in_(list(statuses)),
            Payment.expires_at.isnot(None),
            Payment.expires_at <= now
        ).all()

    def add(self, payment: Payment) -> Payment:
        """Stage a new payment (flushed, not committed)"""
        self.db.add(payment)
        self.db.flush()
        return payment

    def transition(self, payment: Payment, from_statuses: Iterable[str], **values) -> bool:
        """
        Apply values only if the payment is still in one of from_statuses

        Returns:
            True if the row was updated. The instance is refreshed either way.
        """
        result = self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status.in_(list(from_statuses)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(payment)
        return result.rowcount == 1

    def update_fields(self, payment: Payment, **values) -> Payment:
        """Set plain attributes on the payment (flushed, not committed)"""
        for field, value in values.items():
            setattr(payment, field, value)
        self.db.flush()
        return payment

    def record_refund(self, payment: Payment, previous_refund_amount: Decimal, **values) -> bool:
        """
        Apply refund values only if the payment is completed and no other
        refund was recorded since it was read
        """
        result = self.db.execute(
            update(Payment)
            .where(
                Payment.id == payment.id,
                Payment.status == 'completed',
                Payment.refund_amount == previous_refund_amount
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(payment)
        return result.rowcount == 1

    def count_by_status(self, store_id: Optional[int] = None) -> dict:
        """Get count of payments grouped by status"""
        query = self.db.query(Payment.status, func.count(Payment.id))
        if store_id is not None:
            query = query.filter(Payment.store_id == store_id)
        return {status: count for status, count in query.group_by(Payment.status).all()}

    def count_by_method(self, store_id: Optional[int] = None) -> dict:
        """Get count of payments grouped by method"""
        query = self.db.query(Payment.method, func.count(Payment.id))
        if store_id is not None:
            query = query.filter(Payment.store_id == store_id)
        return {method: count for method, count in query.group_by(Payment.method).all()}

    def settled_totals(self, statuses: Iterable[str], store_id: Optional[int] = None) -> Tuple:
        """Sum amount, fee_amount and refund_amount over payments in the given statuses"""
        query = self.db.query(
            func.coalesce(func.sum(Payment.amount), 0),
            func.coalesce(func.sum(Payment.fee_amount), 0),
            func.coalesce(func.sum(Payment.refund_amount), 0),
        ).filter(Payment.status.in_(list(statuses)))
        if store_id is not None:
            query = query.filter(Payment.store_id == store_id)
        return query.one()
