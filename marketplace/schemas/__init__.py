"""
Schemas package
"""
from marketplace.schemas.product import (
    StoreCreate,
    StoreResponse,
    ProductCreate,
    ProductResponse,
    StockUpdate,
    InventoryResponse
)
from marketplace.schemas.order import (
    OrderItemCreate,
    ShippingAddress,
    OrderCreate,
    OrderStatusUpdate,
    OrderCancel,
    OrderRating,
    OrderResponse,
    OrderListResponse,
    OrderStatsResponse
)
from marketplace.schemas.payment import (
    PaymentCreate,
    PaymentStatusUpdate,
    RefundRequest,
    FeeQuoteResponse,
    PaymentResponse,
    WebhookResult
)

__all__ = [
    "StoreCreate",
    "StoreResponse",
    "ProductCreate",
    "ProductResponse",
    "StockUpdate",
    "InventoryResponse",
    "OrderItemCreate",
    "ShippingAddress",
    "OrderCreate",
    "OrderStatusUpdate",
    "OrderCancel",
    "OrderRating",
    "OrderResponse",
    "OrderListResponse",
    "OrderStatsResponse",
    "PaymentCreate",
    "PaymentStatusUpdate",
    "RefundRequest",
    "FeeQuoteResponse",
    "PaymentResponse",
    "WebhookResult"
]
