"""Tests for notification rendering and the event consumer."""

import json
import logging
from unittest.mock import MagicMock

import pytest

from marketplace.consumers import event_consumer
from marketplace.consumers.event_consumer import handle_event
from marketplace.repositories.product_repository import ProcessedEventRepository
from marketplace.services.notification_service import NotificationService


def event(event_type, data, event_id="evt-1"):
    return {"event_id": event_id, "event_type": event_type, "data": data}


class TestNotificationService:
    def test_order_created_goes_to_contact_email(self, caplog):
        service = NotificationService("console")
        with caplog.at_level(logging.INFO):
            sent = service.notify("OrderCreated", {
                "order_number": "AFM-20240115-000001",
                "buyer_id": 1,
                "contact_email": "ama@example.com",
                "total_amount": "55000.00",
                "currency": "XOF",
                "items": [{"product_name": "Pagne Wax", "quantity": 2, "unit_price": "15000.00"}],
            })
        assert sent is True
        assert "ama@example.com" in caplog.text
        assert "Pagne Wax x2" in caplog.text

    def test_low_stock_goes_to_store(self, caplog):
        with caplog.at_level(logging.INFO):
            NotificationService("console").notify("ProductLowStock", {
                "store_id": 3, "product_name": "Sac", "available": 1, "low_stock_threshold": 2,
            })
        assert "store:3" in caplog.text

    def test_unknown_event_type(self):
        assert NotificationService("console").notify("SomethingElse", {}) is False

    def test_unknown_email_service(self):
        assert NotificationService("pigeon").notify("PaymentFailed", {"buyer_id": 1}) is False


class TestHandleEvent:
    def test_event_is_processed_once(self, db):
        service = MagicMock()
        service.notify.return_value = True
        payload = event("PaymentCompleted", {"buyer_id": 1})

        assert handle_event(db, payload, service) is True
        assert handle_event(db, payload, service) is True

        service.notify.assert_called_once_with("PaymentCompleted", {"buyer_id": 1})
        assert ProcessedEventRepository(db).is_processed("evt-1")

    def test_failed_notification_is_not_marked(self, db):
        service = MagicMock()
        service.notify.return_value = False

        assert handle_event(db, event("OrderCreated", {}), service) is False
        assert not ProcessedEventRepository(db).is_processed("evt-1")

    def test_event_without_id(self, db):
        assert handle_event(db, {"event_type": "OrderCreated"}, MagicMock()) is False


class TestCallback:
    @pytest.fixture
    def channel(self, session_factory, monkeypatch):
        monkeypatch.setattr(event_consumer, "SessionLocal", session_factory)
        return MagicMock()

    def test_ack_on_success(self, channel):
        method = MagicMock(delivery_tag=7)
        body = json.dumps(event("OrderStatusChanged", {"buyer_id": 1, "new_status": "shipped"}))

        event_consumer.callback(channel, method, None, body)

        channel.basic_ack.assert_called_once_with(delivery_tag=7)
        channel.basic_nack.assert_not_called()

    def test_nack_on_invalid_json(self, channel):
        method = MagicMock(delivery_tag=8)
        event_consumer.callback(channel, method, None, b"{broken")
        channel.basic_nack.assert_called_once_with(delivery_tag=8, requeue=False)
