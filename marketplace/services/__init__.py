"""
Services package
"""
from marketplace.services.inventory_service import InventoryService
from marketplace.services.order_service import OrderService
from marketplace.services.payment_service import PaymentService
from marketplace.services.reconciliation_service import ReconciliationService
from marketplace.services.notification_service import NotificationService

__all__ = [
    "InventoryService",
    "OrderService",
    "PaymentService",
    "ReconciliationService",
    "NotificationService"
]
