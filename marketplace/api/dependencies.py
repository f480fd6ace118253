"""
Shared FastAPI dependencies: caller identity and service factories
"""
from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from marketplace.constants import UserRole
from marketplace.database import get_db
from marketplace.publishers.event_publisher import EventPublisher
from marketplace.security import Actor
from marketplace.services.gateway_client import PaymentGatewayClient
from marketplace.services.inventory_service import InventoryService
from marketplace.services.order_service import OrderService
from marketplace.services.payment_service import PaymentService
from marketplace.services.reconciliation_service import ReconciliationService


def get_actor(
    x_user_id: Optional[int] = Header(None, description="Authenticated user ID set by the gateway"),
    x_user_role: UserRole = Header(UserRole.CUSTOMER, description="Role of the authenticated user"),
) -> Actor:
    """Caller identity, as asserted by the upstream auth gateway"""
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header"
        )
    return Actor(user_id=x_user_id, role=x_user_role)


def get_event_publisher() -> EventPublisher:
    return EventPublisher()


def get_gateway_client() -> PaymentGatewayClient:
    return PaymentGatewayClient()


def get_inventory_service(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher)
) -> InventoryService:
    """Dependency to get InventoryService instance"""
    return InventoryService(db, publisher)


def get_order_service(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher)
) -> OrderService:
    """Dependency to get OrderService instance"""
    return OrderService(db, publisher)


def get_payment_service(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
    gateway_client: PaymentGatewayClient = Depends(get_gateway_client)
) -> PaymentService:
    """Dependency to get PaymentService instance"""
    return PaymentService(db, publisher, gateway_client)


def get_reconciliation_service(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher)
) -> ReconciliationService:
    """Dependency to get ReconciliationService instance"""
    return ReconciliationService(db, publisher)
