"""
Order Repository - Data Access Layer
"""
from datetime import datetime
from typing import Iterable, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import desc, func, update

from marketplace.models.order import Order


class OrderRepository:
    """Repository for Order persistence"""

    def __init__(self, db: Session):
        self.db = db

    def _filtered(self, buyer_id: Optional[int] = None, store_id: Optional[int] = None,
                  status: Optional[str] = None):
        query = self.db.query(Order)
        if buyer_id is not None:
            query = query.filter(Order.buyer_id == buyer_id)
        if store_id is not None:
            query = query.filter(Order.store_id == store_id)
        if status is not None:
            query = query.filter(Order.status == status)
        return query

    def get_all(self, skip: int = 0, limit: int = 100, **filters) -> List[Order]:
        """Get orders with pagination and optional buyer/store/status filters"""
        return self._filtered(**filters).order_by(
            desc(Order.created_at), desc(Order.id)
        ).offset(skip).limit(limit).all()

    def count(self, **filters) -> int:
        """Count orders matching the filters"""
        return self._filtered(**filters).count()

    def get_by_id(self, order_id: int) -> Optional[Order]:
        """Get order by ID"""
        return self.db.query(Order).filter(Order.id == order_id).first()

    def get_by_number(self, order_number: str) -> Optional[Order]:
        """Get order by its human-readable number"""
        return self.db.query(Order).filter(Order.order_number == order_number).first()

    def number_exists(self, order_number: str) -> bool:
        return self.db.query(Order.id).filter(Order.order_number == order_number).first() is not None

    def add(self, order: Order) -> Order:
        """Stage a new order with its items (flushed, not committed)"""
        self.db.add(order)
        self.db.flush()
        return order

    def transition(self, order: Order, from_statuses: Iterable[str], **values) -> bool:
        """
        Apply values only if the order is still in one of from_statuses

        Returns:
            True if the row was updated. The instance is refreshed either way.
        """
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status.in_(list(from_statuses)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(order)
        return result.rowcount == 1

    def set_rating(self, order: Order, rating: int, comment: Optional[str], rated_at: datetime) -> bool:
        """Store the rating unless the order already carries one"""
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.rating.is_(None))
            .values(rating=rating, rating_comment=comment, rated_at=rated_at)
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(order)
        return result.rowcount == 1

    def update_fields(self, order: Order, **values) -> Order:
        """Set plain attributes on the order (flushed, not committed)"""
        for field, value in values.items():
            setattr(order, field, value)
        self.db.flush()
        return order

    def count_by_status(self, store_id: Optional[int] = None) -> dict:
        """Get count of orders grouped by status"""
        query = self.db.query(Order.status, func.count(Order.id))
        if store_id is not None:
            query = query.filter(Order.store_id == store_id)
        return {status: count for status, count in query.group_by(Order.status).all()}
