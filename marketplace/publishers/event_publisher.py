"""
RabbitMQ Event Publisher
"""
import pika
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict

from marketplace.config import settings

logger = logging.getLogger(__name__)


class EventPublisher:
    """Publisher for sending domain events to RabbitMQ

    Publishing is fire-and-forget: failures are logged and reported through
    the return value, never raised to the caller.
    """

    def __init__(self):
        self.rabbitmq_url = settings.RABBITMQ_URL
        self.exchange = settings.RABBITMQ_EXCHANGE

    def publish(self, event_type: str, routing_key: str, data: Dict) -> bool:
        """
        Publish an event to the topic exchange

        Args:
            event_type: Event name, e.g. OrderCreated
            routing_key: Topic routing key, e.g. order.created
            data: Event payload

        Returns:
            True if published successfully, False otherwise
        """
        try:
            # Connect to RabbitMQ
            connection = pika.BlockingConnection(
                pika.URLParameters(self.rabbitmq_url)
            )
            channel = connection.channel()

            # Declare exchange
            channel.exchange_declare(
                exchange=self.exchange,
                exchange_type='topic',
                durable=True
            )

            # Create event payload
            event = {
                "event_type": event_type,
                "event_id": str(uuid.uuid4()),
                "event_version": "1.0",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "source": settings.SERVICE_NAME,
                "data": data
            }

            # Enable publisher confirms
            channel.confirm_delivery()

            channel.basic_publish(
                exchange=self.exchange,
                routing_key=routing_key,
                body=json.dumps(event, default=str),
                properties=pika.BasicProperties(
                    delivery_mode=2,  # Persistent message
                    content_type='application/json',
                    correlation_id=event["event_id"]
                ),
                mandatory=False
            )

            connection.close()

            logger.info("✓ Event published: %s (ID: %s)", event_type, event["event_id"])
            return True

        except pika.exceptions.AMQPError as e:
            logger.error("✗ Error publishing %s event: %s", event_type, e)
            return False
        except Exception:
            logger.exception("✗ Unexpected error publishing %s event", event_type)
            return False

    def publish_order_created(self, order_data: Dict) -> bool:
        return self.publish("OrderCreated", "order.created", order_data)

    def publish_order_status_changed(self, order_data: Dict) -> bool:
        return self.publish("OrderStatusChanged", "order.status.changed", order_data)

    def publish_payment_completed(self, payment_data: Dict) -> bool:
        return self.publish("PaymentCompleted", "payment.completed", payment_data)

    def publish_payment_failed(self, payment_data: Dict) -> bool:
        return self.publish("PaymentFailed", "payment.failed", payment_data)

    def publish_payment_refunded(self, payment_data: Dict) -> bool:
        return self.publish("PaymentRefunded", "payment.refunded", payment_data)

    def publish_low_stock(self, product_data: Dict) -> bool:
        return self.publish("ProductLowStock", "product.low_stock", product_data)
