"""
Notification Service - renders marketplace events for buyers and vendors
"""
import logging
from typing import Callable, Dict, Optional, Tuple

from marketplace.config import settings

logger = logging.getLogger(__name__)

Message = Tuple[str, str, str]  # (recipient, subject, body)

ORDER_STATUS_MESSAGES = {
    "confirmed": "has been confirmed by the seller",
    "shipped": "is on its way",
    "delivered": "has been delivered",
    "cancelled": "has been cancelled",
    "refunded": "has been refunded",
}


def _buyer(data: Dict) -> str:
    return data.get("contact_email") or f"buyer:{data.get('buyer_id')}"


class NotificationService:
    """Service for sending notifications"""

    def __init__(self, email_service: Optional[str] = None):
        self.email_service = email_service or settings.EMAIL_SERVICE
        self.renderers: Dict[str, Callable[[Dict], Message]] = {
            "OrderCreated": self._order_created,
            "OrderStatusChanged": self._order_status_changed,
            "PaymentCompleted": self._payment_completed,
            "PaymentFailed": self._payment_failed,
            "PaymentRefunded": self._payment_refunded,
            "ProductLowStock": self._low_stock,
        }

    def notify(self, event_type: str, data: Dict) -> bool:
        """
        Send the notification for one event

        Args:
            event_type: Event name, e.g. OrderCreated
            data: Event payload

        Returns:
            True if notification sent successfully
        """
        renderer = self.renderers.get(event_type)
        if renderer is None:
            logger.warning("No notification for event type: %s", event_type)
            return False

        to, subject, body = renderer(data)
        if self.email_service == "console":
            return self._send_console_notification(to, subject, body)

        logger.error("Unknown email service: %s", self.email_service)
        return False

    # ------------------------------------------------------------------
    # Renderers
    # ------------------------------------------------------------------

    @staticmethod
    def _order_created(data: Dict) -> Message:
        lines = "\n".join(
            f"  - {item.get('product_name')} x{item.get('quantity')} @ {item.get('unit_price')}"
            for item in data.get("items", [])
        )
        subject = f"Order {data.get('order_number')} received"
        body = (
            f"Your order {data.get('order_number')} has been placed.\n\n"
            f"{lines}\n\n"
            f"Total: {data.get('total_amount')} {data.get('currency')}\n"
        )
        return _buyer(data), subject, body

    @staticmethod
    def _order_status_changed(data: Dict) -> Message:
        new_status = data.get("new_status")
        phrase = ORDER_STATUS_MESSAGES.get(new_status, f"is now {new_status}")
        subject = f"Order {data.get('order_number')} {new_status}"
        body = (
            f"Your order {data.get('order_number')} {phrase}.\n"
            f"Previous status: {data.get('old_status')}\n"
        )
        return _buyer(data), subject, body

    @staticmethod
    def _payment_completed(data: Dict) -> Message:
        subject = f"Payment {data.get('transaction_reference')} received"
        body = (
            f"We received {data.get('amount')} {data.get('currency')} "
            f"via {data.get('method')}.\n"
            f"Provider reference: {data.get('external_transaction_id')}\n"
        )
        return _buyer(data), subject, body

    @staticmethod
    def _payment_failed(data: Dict) -> Message:
        subject = f"Payment {data.get('transaction_reference')} {data.get('status')}"
        body = (
            f"Your payment of {data.get('amount')} {data.get('currency')} "
            f"via {data.get('method')} did not go through.\n"
            f"Reason: {data.get('failure_reason') or 'unknown'}\n"
        )
        return _buyer(data), subject, body

    @staticmethod
    def _payment_refunded(data: Dict) -> Message:
        subject = f"Refund on payment {data.get('transaction_reference')}"
        body = (
            f"{data.get('refund')} {data.get('currency')} has been refunded.\n"
            f"Reason: {data.get('reason') or 'not given'}\n"
        )
        return _buyer(data), subject, body

    @staticmethod
    def _low_stock(data: Dict) -> Message:
        subject = f"Low stock: {data.get('product_name')}"
        body = (
            f"Only {data.get('available')} left of {data.get('product_name')} "
            f"(threshold {data.get('low_stock_threshold')}).\n"
        )
        return f"store:{data.get('store_id')}", subject, body

    def _send_console_notification(self, to: str, subject: str, body: str) -> bool:
        """
        Simulate email sending by logging the message

        This is for development/testing purposes
        """
        logger.info("📧 EMAIL NOTIFICATION (Console Mode)\nTo: %s\nSubject: %s\n%s", to, subject, body)
        logger.info("✓ Notification sent to %s", to)
        return True
