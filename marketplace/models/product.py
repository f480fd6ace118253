"""
SQLAlchemy Product model
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, Boolean, ForeignKey, CheckConstraint
from sqlalchemy.sql import func
from marketplace.database import Base


class Product(Base):
    """Product database model

    stock_quantity is the stock available for new orders; reserved_quantity
    is held by orders that are not yet delivered or cancelled.
    """

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False, index=True)
    sku = Column(String(50), nullable=True, unique=True)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    stock_quantity = Column(Integer, nullable=False, default=0)
    reserved_quantity = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False, default=5)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Constraints
    __table_args__ = (
        CheckConstraint('price >= 0', name='check_price_positive'),
        CheckConstraint('stock_quantity >= 0', name='check_stock_non_negative'),
        CheckConstraint('reserved_quantity >= 0', name='check_reserved_non_negative'),
    )

    def __repr__(self):
        return (
            f"<Product(id={self.id}, name='{self.name}', price={self.price}, "
            f"stock={self.stock_quantity}, reserved={self.reserved_quantity})>"
        )


class ProcessedEvent(Base):
    """Table to track consumed RabbitMQ events for idempotency"""

    __tablename__ = "processed_events"

    event_id = Column(String(100), primary_key=True, unique=True, nullable=False)
    event_type = Column(String(100), nullable=False)
    processed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<ProcessedEvent(event_id='{self.event_id}', event_type='{self.event_type}')>"
