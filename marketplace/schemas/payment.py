"""
Pydantic schemas for payments and webhooks
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Dict, List, Optional, Literal
from decimal import Decimal
from datetime import datetime

from marketplace.constants import PaymentMethod


class PaymentCreate(BaseModel):
    """Schema for initiating a payment for an order"""
    order_id: int = Field(..., gt=0, description="Order ID")
    method: PaymentMethod = Field(..., description="Payment method")
    phone_number: Optional[str] = Field(
        None, pattern=r"^\+2[0-9]{1,3}[0-9]{6,10}$", description="Mobile-money wallet number"
    )


class PaymentStatusUpdate(BaseModel):
    """Schema for an administrative payment status change"""
    status: Literal['processing', 'completed', 'failed', 'cancelled', 'expired']
    external_transaction_id: Optional[str] = Field(None, max_length=255)
    failure_reason: Optional[str] = Field(None, max_length=500)


class RefundRequest(BaseModel):
    """Schema for refunding a completed payment"""
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    reason: Optional[str] = Field(None, max_length=500)


class FeeQuoteResponse(BaseModel):
    """Fee computed for an amount and method"""
    method: PaymentMethod
    amount: Decimal
    fee_amount: Decimal
    net_amount: Decimal


class PaymentResponse(BaseModel):
    """Schema for payment response"""
    id: int
    transaction_reference: str
    order_id: int
    buyer_id: int
    store_id: int
    method: str
    status: str
    amount: Decimal
    currency: str
    fee_amount: Decimal
    net_amount: Decimal
    refund_amount: Decimal
    refund_reason: Optional[str]
    external_transaction_id: Optional[str]
    failure_reason: Optional[str]
    retry_count: int
    initiated_at: datetime
    processed_at: Optional[datetime]
    completed_at: Optional[datetime]
    failed_at: Optional[datetime]
    refunded_at: Optional[datetime]
    expires_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class PaymentListResponse(BaseModel):
    """Schema for list of payments response"""
    payments: List[PaymentResponse]
    total: int


class PaymentStatsResponse(BaseModel):
    """Payment counts and settled totals"""
    total_payments: int
    by_status: Dict[str, int]
    by_method: Dict[str, int]
    total_collected: Decimal
    total_fees: Decimal
    total_refunded: Decimal


class WebhookResult(BaseModel):
    """Outcome of webhook reconciliation"""
    transaction_reference: str
    status: str
    applied: bool
    message: str
