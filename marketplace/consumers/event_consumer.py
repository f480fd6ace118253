"""
RabbitMQ Consumer for order, payment and stock events
"""
import pika
import json
import logging
import sys

from marketplace.config import settings
from marketplace.database import SessionLocal
from marketplace.repositories.product_repository import ProcessedEventRepository
from marketplace.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

ROUTING_KEYS = ("order.#", "payment.#", "product.#")


def handle_event(db, event: dict, notification_service: NotificationService) -> bool:
    """
    Notify for one event unless it was already handled

    Returns:
        True if the event was handled now or before, False if it failed
    """
    event_id = event.get("event_id")
    event_type = event.get("event_type")
    if not event_id or not event_type:
        logger.error("✗ Event without id or type discarded")
        return False

    processed = ProcessedEventRepository(db)
    if processed.is_processed(event_id):
        logger.info("Event %s already processed, skipping", event_id)
        return True

    if not notification_service.notify(event_type, event.get("data", {})):
        return False
    processed.mark_processed(event_id, event_type)
    return True


def callback(ch, method, properties, body):
    """
    Callback function to process marketplace events

    Args:
        ch: Channel
        method: Method
        properties: Properties
        body: Message body (JSON string)
    """
    db = SessionLocal()

    try:
        event = json.loads(body)
        logger.info("Received event: %s (ID: %s)", event.get("event_type"), event.get("event_id"))

        if handle_event(db, event, NotificationService()):
            ch.basic_ack(delivery_tag=method.delivery_tag)
            logger.info("✓ Event %s processed successfully", event.get("event_id"))
        else:
            # Reject and don't requeue (dead-lettered if configured)
            ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
            logger.error("✗ Event %s processing failed", event.get("event_id"))

    except json.JSONDecodeError as e:
        logger.error("✗ Invalid JSON: %s", e)
        ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
    except Exception:
        logger.exception("✗ Error processing event")
        db.rollback()
        ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
    finally:
        db.close()


def start_consumer():
    """
    Start RabbitMQ consumer

    Connects to RabbitMQ and consumes every marketplace event
    """
    connection = None
    try:
        logger.info("Connecting to RabbitMQ: %s", settings.RABBITMQ_URL)
        connection = pika.BlockingConnection(
            pika.URLParameters(settings.RABBITMQ_URL)
        )
        channel = connection.channel()

        channel.exchange_declare(
            exchange=settings.RABBITMQ_EXCHANGE,
            exchange_type='topic',
            durable=True
        )
        logger.info("✓ Exchange declared: %s", settings.RABBITMQ_EXCHANGE)

        channel.queue_declare(
            queue=settings.RABBITMQ_QUEUE,
            durable=True
        )
        logger.info("✓ Queue declared: %s", settings.RABBITMQ_QUEUE)

        for routing_key in ROUTING_KEYS:
            channel.queue_bind(
                exchange=settings.RABBITMQ_EXCHANGE,
                queue=settings.RABBITMQ_QUEUE,
                routing_key=routing_key
            )
            logger.info("✓ Queue bound with routing key: %s", routing_key)

        # Set prefetch count (QoS)
        channel.basic_qos(prefetch_count=10)

        channel.basic_consume(
            queue=settings.RABBITMQ_QUEUE,
            on_message_callback=callback,
            auto_ack=False  # Manual acknowledgement
        )

        logger.info("✓ %s consumer started, waiting for events on %s", settings.SERVICE_NAME, settings.RABBITMQ_QUEUE)
        channel.start_consuming()

    except KeyboardInterrupt:
        logger.info("Consumer stopped by user")
        if connection is not None and connection.is_open:
            connection.close()
        sys.exit(0)
    except pika.exceptions.AMQPError:
        logger.exception("✗ Error starting consumer")
        sys.exit(1)


if __name__ == "__main__":
    start_consumer()
