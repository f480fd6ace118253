"""
SQLAlchemy Payment model
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, JSON, ForeignKey, CheckConstraint
from sqlalchemy.sql import func
from marketplace.database import Base


class Payment(Base):
    """Payment attempt against an order"""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    transaction_reference = Column(String(100), nullable=False, unique=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    buyer_id = Column(Integer, nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    method = Column(String(30), nullable=False, index=True)
    status = Column(String(30), nullable=False, default='pending', index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(5), nullable=False)
    fee_amount = Column(Numeric(12, 2), nullable=False, default=0)
    net_amount = Column(Numeric(12, 2), nullable=False)
    refund_amount = Column(Numeric(12, 2), nullable=False, default=0)
    refund_reason = Column(Text, nullable=True)

    phone_number = Column(String(20), nullable=True)
    external_transaction_id = Column(String(255), nullable=True, index=True)
    provider_response = Column(JSON, nullable=True)
    failure_reason = Column(Text, nullable=True)

    retry_count = Column(Integer, nullable=False, default=0)
    last_retry_at = Column(DateTime(timezone=True), nullable=True)

    initiated_at = Column(DateTime(timezone=True), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    webhook_received_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Constraints
    __table_args__ = (
        CheckConstraint('amount > 0', name='check_amount_positive'),
        CheckConstraint('refund_amount >= 0 AND refund_amount <= amount', name='check_refund_within_amount'),
    )

    def __repr__(self):
        return (
            f"<Payment(id={self.id}, reference='{self.transaction_reference}', "
            f"amount={self.amount}, status='{self.status}')>"
        )
