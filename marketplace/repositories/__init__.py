"""
Repositories package
"""
from marketplace.repositories.product_repository import (
    StoreRepository,
    ProductRepository,
    ProcessedEventRepository
)
from marketplace.repositories.order_repository import OrderRepository
from marketplace.repositories.payment_repository import PaymentRepository

__all__ = [
    "StoreRepository",
    "ProductRepository",
    "ProcessedEventRepository",
    "OrderRepository",
    "PaymentRepository"
]
