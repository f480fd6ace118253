"""
Models package
"""
from marketplace.models.store import Store
from marketplace.models.product import Product, ProcessedEvent
from marketplace.models.order import Order, OrderItem
from marketplace.models.payment import Payment

__all__ = ["Store", "Product", "ProcessedEvent", "Order", "OrderItem", "Payment"]
