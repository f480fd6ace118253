"""
Pydantic schemas for order request/response validation
"""
from pydantic import BaseModel, Field, EmailStr, ConfigDict
from typing import Dict, Optional, List, Literal
from decimal import Decimal
from datetime import datetime

from marketplace.constants import PaymentMethod


class OrderItemCreate(BaseModel):
    """One requested line item"""
    product_id: int = Field(..., gt=0, description="Product ID")
    quantity: int = Field(..., gt=0, description="Quantity to order")


class ShippingAddress(BaseModel):
    """Shipping address snapshot"""
    full_name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field(..., min_length=6, max_length=20)
    street: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    country: str = Field("TG", min_length=2, max_length=2, description="ISO country code")
    postal_code: Optional[str] = Field(None, max_length=20)


class OrderCreate(BaseModel):
    """Schema for creating a new order"""
    items: List[OrderItemCreate] = Field(..., min_length=1, description="Line items")
    shipping_address: ShippingAddress
    shipping_fee: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    payment_method: PaymentMethod = PaymentMethod.TMONEY
    notes: Optional[str] = Field(None, max_length=1000)
    contact_email: Optional[EmailStr] = Field(None, description="Email for order notifications")


class OrderStatusUpdate(BaseModel):
    """Schema for moving an order along its fulfilment path"""
    status: Literal['confirmed', 'shipped', 'delivered'] = Field(..., description="Target status")
    tracking_number: Optional[str] = Field(None, max_length=100)
    carrier: Optional[str] = Field(None, max_length=100)


class OrderCancel(BaseModel):
    """Schema for cancelling an order"""
    reason: Optional[str] = Field(None, max_length=500)


class OrderRating(BaseModel):
    """Schema for rating a delivered order"""
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


class OrderItemResponse(BaseModel):
    """Schema for order line item response"""
    id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    """Schema for order response"""
    id: int
    order_number: str
    buyer_id: int
    store_id: int
    status: str
    payment_status: str
    payment_method: str
    currency: str
    subtotal: Decimal
    shipping_fee: Decimal
    total_amount: Decimal
    shipping_address: dict
    notes: Optional[str]
    contact_email: Optional[str]
    tracking_number: Optional[str]
    carrier: Optional[str]
    cancellation_reason: Optional[str]
    rating: Optional[int]
    rating_comment: Optional[str]
    rated_at: Optional[datetime]
    items: List[OrderItemResponse]
    confirmed_at: Optional[datetime]
    shipped_at: Optional[datetime]
    delivered_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderListResponse(BaseModel):
    """Schema for list of orders response"""
    orders: List[OrderResponse]
    total: int


class OrderStatsResponse(BaseModel):
    """Order counts per status"""
    total_orders: int
    by_status: Dict[str, int]
